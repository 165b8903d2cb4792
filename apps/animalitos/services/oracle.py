from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from django.conf import settings
from django.utils.module_loading import import_string

from .catalog import get_entity
from .history import DrawRecord
from .resolver import resolve
from .scoring import ScoredEntity

logger = logging.getLogger('animalitos')

MAX_PICKS = 5
MIN_PROBABILITY = 1.0
MAX_PROBABILITY = 25.0
LINE_SPLIT_PATTERN = re.compile(r'[\n;]+')
LINE_PREFIX_PATTERN = re.compile(r'^\s*(?:[-*•]|\d+[.)])\s*')


@dataclass(frozen=True)
class OraclePick:
    entity_id: str
    probability: Optional[float] = None
    confidence: Optional[str] = None
    reasoning: str = ''

    def to_dict(self) -> dict:
        data = asdict(self)
        entity = get_entity(self.entity_id)
        data['name'] = entity.name if entity else None
        return data


class SupplementaryPredictor(Protocol):
    def predict(
        self,
        lottery_id: str,
        history: Sequence[DrawRecord],
        ranking: Sequence[ScoredEntity],
    ) -> List[OraclePick]:
        ...


def _clamp_probability(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(number, MIN_PROBABILITY), MAX_PROBABILITY)


def _json_envelope(text: str) -> Optional[dict]:
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_oracle_text(text: str) -> List[OraclePick]:
    """Best-effort picks from free-form oracle output.

    A JSON object with a ``predictions`` list wins. Otherwise every line is
    resolved as an entity token. Unresolvable and repeated entities are dropped.
    """
    text = text or ''
    picks: List[OraclePick] = []
    seen = set()

    envelope = _json_envelope(text)
    if envelope is not None and isinstance(envelope.get('predictions'), list):
        for item in envelope['predictions']:
            if not isinstance(item, dict):
                continue
            entity = resolve(str(item.get('animalId') or item.get('entity_id') or ''))
            if entity is None or entity.id in seen:
                continue
            seen.add(entity.id)
            picks.append(
                OraclePick(
                    entity_id=entity.id,
                    probability=_clamp_probability(item.get('probability')),
                    confidence=item.get('confidence'),
                    reasoning=str(item.get('reasoning') or ''),
                )
            )
            if len(picks) == MAX_PICKS:
                break
        return picks

    for line in LINE_SPLIT_PATTERN.split(text):
        token = LINE_PREFIX_PATTERN.sub('', line).strip()
        if not token:
            continue
        entity = resolve(token.split(':')[0].split(' - ')[0])
        if entity is None or entity.id in seen:
            continue
        seen.add(entity.id)
        picks.append(OraclePick(entity_id=entity.id, reasoning=token))
        if len(picks) == MAX_PICKS:
            break
    return picks


def build_prompt(lottery_id: str, history: Sequence[DrawRecord], ranking: Sequence[ScoredEntity]) -> str:
    recent = ' -> '.join(record.entity_id for record in history[:10])
    lines = [
        f"Lottery: {lottery_id}",
        f"Recent draws (newest first): {recent}",
        'Statistical ranking:',
    ]
    for item in ranking[:8]:
        entity = get_entity(item.entity_id)
        name = entity.name if entity else item.entity_id
        lines.append(f"{name} (#{item.entity_id}): {item.score:.1f} - {item.explanation}")
    lines.append(
        'Reply with JSON {"predictions": [{"animalId", "probability", "confidence", "reasoning"}]} '
        'containing exactly 5 picks.'
    )
    return '\n'.join(lines)


class TextOraclePredictor:
    """Adapts any prompt -> text callable into a supplementary predictor."""

    def __init__(self, complete: Callable[[str], str]):
        self.complete = complete

    def predict(
        self,
        lottery_id: str,
        history: Sequence[DrawRecord],
        ranking: Sequence[ScoredEntity],
    ) -> List[OraclePick]:
        text = self.complete(build_prompt(lottery_id, history, ranking))
        picks = parse_oracle_text(text)
        logger.info('Oracle returned %s usable picks for %s', len(picks), lottery_id)
        return picks


def load_predictor() -> Optional[SupplementaryPredictor]:
    path = settings.ANIMALITOS_CONFIG.get('SUPPLEMENTARY_PREDICTOR')
    if not path:
        return None
    factory = import_string(path)
    return factory()
