from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional

from .cache import now_ms
from .history import DrawRecord
from .storage import Storage

logger = logging.getLogger('animalitos')

DEFAULT_MAX_OUTCOMES = 200
TRACKED_POSITIONS = 5
MISS_POSITION = TRACKED_POSITIONS + 1
CONFIDENCE_LEVELS = ('high', 'medium', 'low')
TREND_DAYS = 3
TREND_MARGIN = 5.0


@dataclass(frozen=True)
class PredictionOutcome:
    lottery_id: str
    date: str
    hour: str
    actual_entity_id: str
    ranked_ids: List[str] = field(default_factory=list)
    top_confidence: Optional[str] = None
    recorded_at: int = 0

    @property
    def position(self) -> Optional[int]:
        try:
            return self.ranked_ids.index(self.actual_entity_id) + 1
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: dict) -> 'PredictionOutcome':
        return cls(
            lottery_id=data['lottery_id'],
            date=data['date'],
            hour=data['hour'],
            actual_entity_id=data['actual_entity_id'],
            ranked_ids=list(data.get('ranked_ids', [])),
            top_confidence=data.get('top_confidence'),
            recorded_at=int(data.get('recorded_at', 0)),
        )


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class OutcomeTracker:
    """Keeps the last N prediction outcomes per lottery and scores them."""

    def __init__(self, storage: Storage, clock: Callable[[], int] = now_ms, limit: int = DEFAULT_MAX_OUTCOMES):
        self.storage = storage
        self.clock = clock
        self.limit = limit

    def outcomes_key(self, lottery_id: str) -> str:
        return f"outcomes:{lottery_id}"

    def get_outcomes(self, lottery_id: str) -> List[PredictionOutcome]:
        raw = self.storage.get(self.outcomes_key(lottery_id))
        if not raw:
            return []
        try:
            return [PredictionOutcome.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning('Stored outcomes for %s are unreadable, ignoring: %s', lottery_id, exc)
            return []

    def record_outcomes(
        self,
        lottery_id: str,
        records: Iterable[DrawRecord],
        ranked_ids: List[str],
        top_confidence: Optional[str],
    ) -> int:
        ranked_ids = list(ranked_ids[:TRACKED_POSITIONS])
        new_outcomes = [
            PredictionOutcome(
                lottery_id=lottery_id,
                date=record.date,
                hour=record.hour,
                actual_entity_id=record.entity_id,
                ranked_ids=ranked_ids,
                top_confidence=top_confidence,
                recorded_at=self.clock(),
            )
            for record in records
        ]
        if not new_outcomes:
            return 0
        key = self.outcomes_key(lottery_id)
        with self.storage.lock(key):
            outcomes = self.get_outcomes(lottery_id) + new_outcomes
            outcomes = outcomes[-self.limit:]
            self.storage.set(key, json.dumps([asdict(outcome) for outcome in outcomes]))
        logger.info('Recorded %s prediction outcomes for %s', len(new_outcomes), lottery_id)
        return len(new_outcomes)

    def calculate_accuracy(self, lottery_id: str) -> dict:
        outcomes = self.get_outcomes(lottery_id)
        total = len(outcomes)
        exact_hits = top3_hits = top5_hits = 0
        position_sum = 0
        breakdown = {level: {'total': 0, 'hits': 0} for level in CONFIDENCE_LEVELS}

        for outcome in outcomes:
            position = outcome.position
            position_sum += position if position is not None else MISS_POSITION
            if position == 1:
                exact_hits += 1
            if position is not None and position <= 3:
                top3_hits += 1
            if position is not None and position <= 5:
                top5_hits += 1
            bucket = breakdown.get(outcome.top_confidence or '')
            if bucket is not None:
                bucket['total'] += 1
                if position == 1:
                    bucket['hits'] += 1

        return {
            'lottery_id': lottery_id,
            'total_predictions': total,
            'exact_hits': exact_hits,
            'top3_hits': top3_hits,
            'top5_hits': top5_hits,
            'exact_accuracy': _percent(exact_hits, total),
            'top3_accuracy': _percent(top3_hits, total),
            'top5_accuracy': _percent(top5_hits, total),
            'average_position': round(position_sum / total, 2) if total else 0.0,
            'confidence_breakdown': {
                level: {**stats, 'accuracy': _percent(stats['hits'], stats['total'])}
                for level, stats in breakdown.items()
            },
        }

    def recent_performance(self, lottery_id: str, today: date, days: int = 7) -> dict:
        """Daily exact-hit accuracy over the last ``days`` draw dates and its direction.

        The trend compares the mean of the last three days against the mean of the
        days before them and only moves past a five point margin.
        """
        cutoff = (today - timedelta(days=days)).isoformat()
        daily_stats: dict = {}
        for outcome in self.get_outcomes(lottery_id):
            if outcome.date < cutoff:
                continue
            stats = daily_stats.setdefault(outcome.date, {'hits': 0, 'total': 0})
            stats['total'] += 1
            if outcome.position == 1:
                stats['hits'] += 1

        daily = [
            {'date': day, 'accuracy': _percent(stats['hits'], stats['total']), 'predictions': stats['total']}
            for day, stats in sorted(daily_stats.items())
        ]

        trend = 'stable'
        if len(daily) >= TREND_DAYS:
            recent = sum(item['accuracy'] for item in daily[-TREND_DAYS:]) / TREND_DAYS
            older_days = daily[:-TREND_DAYS]
            older = sum(item['accuracy'] for item in older_days) / max(1, len(older_days))
            if recent > older + TREND_MARGIN:
                trend = 'improving'
            elif recent < older - TREND_MARGIN:
                trend = 'declining'

        return {'days': days, 'daily': daily, 'trend': trend}
