from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .cache import now_ms
from django.utils.timezone import is_naive, make_aware

from .catalog import Entity, get_entity
from .storage import Storage

logger = logging.getLogger('animalitos')

HOUR_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


class DrawSource(str, Enum):
    PRIMARY = 'PrimarySource'
    SECONDARY = 'SecondarySource'
    MANUAL = 'Manual'


@dataclass(frozen=True)
class DrawRecord:
    date: str
    hour: str
    entity_id: str
    source: DrawSource
    recorded_at: int

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.date, self.hour, self.entity_id)

    @property
    def slot(self) -> tuple[str, str]:
        return (self.date, self.hour)

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'hour': self.hour,
            'entity_id': self.entity_id,
            'source': self.source.value,
            'recorded_at': self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DrawRecord':
        draw_date, hour = validate_slot(str(data['date']), str(data['hour']))
        entity_id = str(data['entity_id'])
        if get_entity(entity_id) is None:
            raise ValueError(f'Unknown entity id {entity_id!r}')
        return cls(
            date=draw_date,
            hour=hour,
            entity_id=entity_id,
            source=DrawSource(data['source']),
            recorded_at=int(data['recorded_at']),
        )


def sort_records(records: Iterable[DrawRecord]) -> List[DrawRecord]:
    return sorted(records, key=lambda record: (record.date, record.hour), reverse=True)


def validate_slot(draw_date: str | date, hour: str) -> tuple[str, str]:
    if isinstance(draw_date, date):
        draw_date = draw_date.isoformat()
    try:
        date.fromisoformat(draw_date)
    except (TypeError, ValueError) as exc:
        raise ValueError(f'Invalid draw date {draw_date!r}, expected YYYY-MM-DD') from exc
    if not HOUR_PATTERN.match(hour or ''):
        raise ValueError(f'Invalid draw hour {hour!r}, expected HH:MM')
    return draw_date, hour


class HistoricalStore:
    """Append-only draw history per lottery, persisted as one JSON array per key."""

    def __init__(self, storage: Storage, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.clock = clock

    def history_key(self, lottery_id: str) -> str:
        return f"history:{lottery_id}"

    def backfill_key(self, lottery_id: str) -> str:
        return f"backfill:{lottery_id}"

    def get_history(self, lottery_id: str) -> List[DrawRecord]:
        return sort_records(self._load(lottery_id))

    def merge_new_records(self, lottery_id: str, candidates: Iterable[DrawRecord]) -> dict:
        with self.storage.lock(self.history_key(lottery_id)):
            records = self._load(lottery_id)
            seen = {record.dedup_key for record in records}
            added = 0
            duplicates = 0
            for candidate in candidates:
                if candidate.dedup_key in seen:
                    duplicates += 1
                    continue
                seen.add(candidate.dedup_key)
                records.append(candidate)
                added += 1
            if added:
                self._save(lottery_id, sort_records(records))
        logger.info('Merged history for %s: added %s, duplicates %s', lottery_id, added, duplicates)
        return {'added': added, 'duplicates': duplicates}

    def add_manual_record(self, lottery_id: str, draw_date: str | date, hour: str, entity: Entity) -> bool:
        draw_date, hour = validate_slot(draw_date, hour)
        with self.storage.lock(self.history_key(lottery_id)):
            records = self._load(lottery_id)
            if any(record.slot == (draw_date, hour) for record in records):
                logger.warning('Entry already exists for %s %s %s', lottery_id, draw_date, hour)
                return False
            records.append(
                DrawRecord(
                    date=draw_date,
                    hour=hour,
                    entity_id=entity.id,
                    source=DrawSource.MANUAL,
                    recorded_at=self.clock(),
                )
            )
            self._save(lottery_id, sort_records(records))
        logger.info('Added manual entry for %s: %s %s - %s', lottery_id, draw_date, hour, entity.name)
        return True

    def get_stats(self, lottery_id: str) -> dict:
        records = self._load(lottery_id)
        if not records:
            return {
                'total_entries': 0,
                'date_range': {'from': None, 'to': None},
                'sources': [],
                'last_update': None,
            }
        dates = [record.date for record in records]
        sources = list(dict.fromkeys(record.source.value for record in records))
        last_recorded = max(record.recorded_at for record in records)
        return {
            'total_entries': len(records),
            'date_range': {'from': min(dates), 'to': max(dates)},
            'sources': sources,
            'last_update': datetime.fromtimestamp(last_recorded / 1000, tz=timezone.utc).isoformat(),
        }

    def get_last_backfill(self, lottery_id: str) -> Optional[datetime]:
        raw = self.storage.get(self.backfill_key(lottery_id))
        if not raw:
            return None
        try:
            last = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning('Ignoring unreadable backfill marker for %s: %r', lottery_id, raw)
            return None
        return make_aware(last) if is_naive(last) else last

    def mark_backfill(self, lottery_id: str, when: datetime) -> None:
        self.storage.set(self.backfill_key(lottery_id), when.isoformat())

    def _load(self, lottery_id: str) -> List[DrawRecord]:
        raw = self.storage.get(self.history_key(lottery_id))
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.warning('Persisted history for %s is unreadable, treating as empty: %s', lottery_id, exc)
            return []
        if not isinstance(data, list):
            logger.warning('Persisted history for %s is not a list, treating as empty', lottery_id)
            return []
        records: List[DrawRecord] = []
        skipped = 0
        for item in data:
            try:
                records.append(DrawRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            logger.warning(
                'Skipped %s malformed history entries for %s, they will be discarded on the next write',
                skipped,
                lottery_id,
            )
        return records

    def _save(self, lottery_id: str, records: List[DrawRecord]) -> None:
        payload = json.dumps([record.to_dict() for record in records], ensure_ascii=False)
        self.storage.set(self.history_key(lottery_id), payload)
