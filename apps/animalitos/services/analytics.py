from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from .catalog import ENTITIES, Entity
from .history import DrawRecord, sort_records

RECENT_WINDOWS = (5, 10, 20)
TREND_WINDOW = 10
NEVER_SEEN_DAYS = 999
HOT_FACTOR = 1.5
COLD_FACTOR = 0.5


@dataclass
class AnalysisSnapshot:
    entity_id: str
    total_appearances: int
    total_frequency: float
    recent_appearances: Dict[int, int] = field(default_factory=dict)
    recent_frequency: Dict[int, float] = field(default_factory=dict)
    days_since_last_appearance: int = NEVER_SEEN_DAYS
    last_appearance_date: Optional[str] = None
    is_hot: bool = False
    is_cold: bool = False

    @property
    def trend_frequency(self) -> float:
        return self.recent_frequency.get(TREND_WINDOW, 0.0)


def _percent(count: int, total: int) -> float:
    return count / total * 100 if total else 0.0


def analyze(
    history: Sequence[DrawRecord],
    today: date,
    catalog: Sequence[Entity] = ENTITIES,
) -> List[AnalysisSnapshot]:
    """Per-entity frequency and recency figures, one snapshot per catalog entry.

    Recent windows take the ``w`` most recent draws, so the history is sorted
    by (date, hour) descending first. Entities that never appeared get
    ``NEVER_SEEN_DAYS``.
    """
    records = sort_records(history)
    total = len(records)
    total_counts = Counter(record.entity_id for record in records)
    window_counts = {w: Counter(record.entity_id for record in records[:w]) for w in RECENT_WINDOWS}
    window_sizes = {w: min(w, total) for w in RECENT_WINDOWS}

    last_seen: Dict[str, str] = {}
    for record in records:
        last_seen.setdefault(record.entity_id, record.date)

    expected = 100 / len(catalog) if catalog else 0.0
    snapshots: List[AnalysisSnapshot] = []
    for entity in catalog:
        recent_appearances = {w: window_counts[w].get(entity.id, 0) for w in RECENT_WINDOWS}
        recent_frequency = {w: _percent(recent_appearances[w], window_sizes[w]) for w in RECENT_WINDOWS}
        last_date = last_seen.get(entity.id)
        if last_date is None:
            days_since = NEVER_SEEN_DAYS
        else:
            days_since = max(0, (today - date.fromisoformat(last_date)).days)
        trend = recent_frequency[TREND_WINDOW]
        snapshots.append(
            AnalysisSnapshot(
                entity_id=entity.id,
                total_appearances=total_counts.get(entity.id, 0),
                total_frequency=_percent(total_counts.get(entity.id, 0), total),
                recent_appearances=recent_appearances,
                recent_frequency=recent_frequency,
                days_since_last_appearance=days_since,
                last_appearance_date=last_date,
                is_hot=trend > expected * HOT_FACTOR,
                is_cold=trend < expected * COLD_FACTOR,
            )
        )
    return snapshots


def analysis_windows(total_results: int) -> Dict[str, int]:
    return {f"recent{w}": min(w, total_results) for w in RECENT_WINDOWS}
