from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date
from typing import List, Optional, Sequence

from django.conf import settings

from .analytics import AnalysisSnapshot, analysis_windows
from .catalog import entity_to_dict, get_entity

HOT_RANK = 5
WARM_RANK = 15
COLD_RANK = 25


@dataclass(frozen=True)
class ScoringWeights:
    recent: float = 0.5
    total: float = 0.3
    absence: float = 0.2

    def __post_init__(self):
        for name in ('recent', 'total', 'absence'):
            value = getattr(self, name)
            if not (math.isfinite(value) and value >= 0):
                raise ValueError(f'Weight {name!r} must be a finite non-negative number')

    @classmethod
    def from_settings(cls) -> 'ScoringWeights':
        weights = settings.ANIMALITOS_CONFIG.get('WEIGHTS', {})
        return cls(
            recent=float(weights.get('recent', 0.5)),
            total=float(weights.get('total', 0.3)),
            absence=float(weights.get('absence', 0.2)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScoredEntity:
    entity_id: str
    score: float
    rank: int
    category: str
    confidence: str
    explanation: str
    total_frequency: float
    recent_frequency: float
    total_appearances: int
    days_since_last_appearance: int
    is_hot: bool
    is_cold: bool

    def to_dict(self) -> dict:
        entity = get_entity(self.entity_id)
        return {
            'entity': entity_to_dict(entity) if entity else None,
            'entity_id': self.entity_id,
            'score': round(self.score, 2),
            'rank': self.rank,
            'category': self.category,
            'confidence': self.confidence,
            'explanation': self.explanation,
            'total_frequency': round(self.total_frequency, 2),
            'recent_frequency': round(self.recent_frequency, 2),
            'total_appearances': self.total_appearances,
            'days_since_last_appearance': self.days_since_last_appearance,
            'is_hot': self.is_hot,
            'is_cold': self.is_cold,
        }


def _lang_text(lang: str, es: str, en: str) -> str:
    return en if lang == 'en' else es


def category_for_rank(rank: int) -> str:
    if rank <= HOT_RANK:
        return 'hot'
    if rank <= WARM_RANK:
        return 'warm'
    if rank <= COLD_RANK:
        return 'cold'
    return 'frozen'


def confidence_for(score_value: float, total_appearances: int) -> str:
    if score_value > 70 and total_appearances > 10:
        return 'high'
    if score_value > 40 and total_appearances > 5:
        return 'medium'
    return 'low'


def explain(snapshot: AnalysisSnapshot, lang: str = 'es') -> str:
    fragments = []
    if snapshot.trend_frequency > 15:
        fragments.append(_lang_text(lang, 'tendencia reciente alta', 'strong recent trend'))
    elif snapshot.trend_frequency < 5:
        fragments.append(_lang_text(lang, 'tendencia reciente baja', 'weak recent trend'))

    if snapshot.days_since_last_appearance > 30:
        fragments.append(_lang_text(lang, 'mucho tiempo sin salir', 'long time without appearing'))
    elif snapshot.days_since_last_appearance < 7:
        fragments.append(_lang_text(lang, 'salió recientemente', 'appeared recently'))

    if snapshot.total_frequency > 4:
        fragments.append(_lang_text(lang, 'frecuencia histórica alta', 'high historical frequency'))
    elif snapshot.total_frequency < 2:
        fragments.append(_lang_text(lang, 'frecuencia histórica baja', 'low historical frequency'))

    if not fragments:
        return _lang_text(
            lang,
            'comportamiento promedio según análisis histórico',
            'average behaviour according to historical analysis',
        )
    return ', '.join(fragments)


def _normalized(value: float, maximum: float) -> float:
    return value / maximum if maximum > 0 else 0.0


def _code_for(entity_id: str) -> str:
    entity = get_entity(entity_id)
    return entity.code if entity else entity_id


def score(
    snapshots: Sequence[AnalysisSnapshot],
    weights: Optional[ScoringWeights] = None,
    lang: str = 'es',
) -> List[ScoredEntity]:
    """Weighted ranking of every analysed entity.

    Each input is scaled by its maximum over the run, so the score lands in
    0..100 when the weights sum to 1. Equal scores are ordered by entity code.
    """
    weights = weights or ScoringWeights()
    if not snapshots:
        return []
    max_recent = max(s.trend_frequency for s in snapshots)
    max_total = max(s.total_frequency for s in snapshots)
    max_days = max(s.days_since_last_appearance for s in snapshots)
    if not any(s.total_appearances for s in snapshots):
        # no draws at all, absence carries no signal
        max_days = 0

    scored = []
    for snapshot in snapshots:
        value = (
            _normalized(snapshot.trend_frequency, max_recent) * weights.recent
            + _normalized(snapshot.total_frequency, max_total) * weights.total
            + _normalized(snapshot.days_since_last_appearance, max_days) * weights.absence
        ) * 100
        scored.append((value, snapshot))

    scored.sort(key=lambda item: (-item[0], _code_for(item[1].entity_id)))

    ranking: List[ScoredEntity] = []
    for rank, (value, snapshot) in enumerate(scored, start=1):
        ranking.append(
            ScoredEntity(
                entity_id=snapshot.entity_id,
                score=value,
                rank=rank,
                category=category_for_rank(rank),
                confidence=confidence_for(value, snapshot.total_appearances),
                explanation=explain(snapshot, lang),
                total_frequency=snapshot.total_frequency,
                recent_frequency=snapshot.trend_frequency,
                total_appearances=snapshot.total_appearances,
                days_since_last_appearance=snapshot.days_since_last_appearance,
                is_hot=snapshot.is_hot,
                is_cold=snapshot.is_cold,
            )
        )
    return ranking


def disclaimer(lang: str = 'es') -> str:
    return _lang_text(
        lang,
        'Este análisis estadístico se basa en resultados históricos. '
        'No garantiza premios ni resultados futuros. La lotería es un proceso aleatorio.',
        'This statistical analysis is based on historical results. '
        'It does not guarantee prizes or future results. The lottery is a random process.',
    )


def quick_summary(ranking: Sequence[ScoredEntity], total_results: int, lang: str = 'es') -> dict:
    if not ranking:
        return {'hottest': None, 'coldest': None, 'trending': [], 'summary': ''}
    hottest = ranking[0]
    coldest = ranking[-1]
    trending = [item for item in ranking if item.recent_frequency > item.total_frequency][:3]
    entity = get_entity(hottest.entity_id)
    name = entity.name if entity else hottest.entity_id
    return {
        'hottest': hottest.to_dict(),
        'coldest': coldest.to_dict(),
        'trending': [item.to_dict() for item in trending],
        'summary': _lang_text(
            lang,
            f"Análisis de {total_results} sorteos. Mayor puntuación: {name} ({hottest.score:.1f} pts)",
            f"Analysis of {total_results} draws. Highest score: {name} ({hottest.score:.1f} pts)",
        ),
    }


def build_prediction(
    lottery_id: str,
    ranking: Sequence[ScoredEntity],
    total_results: int,
    weights: ScoringWeights,
    analysis_date: date,
    lang: str = 'es',
) -> dict:
    lang = 'en' if lang == 'en' else 'es'
    return {
        'lottery_id': lottery_id,
        'analysis_date': analysis_date.isoformat(),
        'total_results': total_results,
        'analysis_window': analysis_windows(total_results),
        'weights': weights.to_dict(),
        'top5': [item.to_dict() for item in ranking[:5]],
        'top10': [item.to_dict() for item in ranking[:10]],
        'hot': [item.to_dict() for item in ranking if item.category == 'hot'],
        'cold': [item.to_dict() for item in ranking if item.category in ('cold', 'frozen')],
        'ranking': [item.to_dict() for item in ranking],
        'quick_summary': quick_summary(ranking, total_results, lang),
        'disclaimer': disclaimer(lang),
        'lang': lang,
    }
