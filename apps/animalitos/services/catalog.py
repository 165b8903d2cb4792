from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Entity:
    id: str
    name: str
    code: str
    icon: str


_CATALOG_ROWS = [
    ('00', 'Delfín', '🐬'),
    ('01', 'Carnero', '🐏'),
    ('02', 'Toro', '🐂'),
    ('03', 'Ciempiés', '🐛'),
    ('04', 'Alacrán', '🦂'),
    ('05', 'León', '🦁'),
    ('06', 'Rana', '🐸'),
    ('07', 'Perico', '🦜'),
    ('08', 'Ratón', '🐭'),
    ('09', 'Águila', '🦅'),
    ('10', 'Tigre', '🐅'),
    ('11', 'Gato', '🐱'),
    ('12', 'Caballo', '🐴'),
    ('13', 'Mono', '🐵'),
    ('14', 'Paloma', '🕊️'),
    ('15', 'Zorro', '🦊'),
    ('16', 'Oso', '🐻'),
    ('17', 'Pavo', '🦃'),
    ('18', 'Burro', '🫏'),
    ('19', 'Chivo', '🐐'),
    ('20', 'Cochino', '🐷'),
    ('21', 'Gallo', '🐓'),
    ('22', 'Camello', '🐪'),
    ('23', 'Cebra', '🦓'),
    ('24', 'Iguana', '🦎'),
    ('25', 'Gallina', '🐔'),
    ('26', 'Vaca', '🐄'),
    ('27', 'Perro', '🐶'),
    ('28', 'Zamuro', '🦅'),
    ('29', 'Elefante', '🐘'),
    ('30', 'Caimán', '🐊'),
    ('31', 'Lapa', '🦜'),
    ('32', 'Ardilla', '🐿️'),
    ('33', 'Pescado', '🐟'),
    ('34', 'Venado', '🦌'),
    ('35', 'Jirafa', '🦒'),
    ('36', 'Culebra', '🐍'),
]

ENTITIES: Tuple[Entity, ...] = tuple(
    Entity(id=code, name=name, code=code, icon=icon) for code, name, icon in _CATALOG_ROWS
)

_BY_ID: Dict[str, Entity] = {entity.id: entity for entity in ENTITIES}
_BY_CODE: Dict[str, Entity] = {entity.code: entity for entity in ENTITIES}


def get_entity(entity_id: str) -> Optional[Entity]:
    return _BY_ID.get(entity_id)


def get_entity_by_code(code: str) -> Optional[Entity]:
    return _BY_CODE.get(code.zfill(2)) if code else None


def catalog_size() -> int:
    return len(ENTITIES)


def entity_to_dict(entity: Entity) -> dict:
    return {'id': entity.id, 'name': entity.name, 'code': entity.code, 'icon': entity.icon}
