from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from django.conf import settings
from django.utils import timezone

from .analytics import analyze
from .cache import TimedCache, now_ms
from .catalog import entity_to_dict, get_entity, get_entity_by_code
from .evaluation import DEFAULT_MAX_OUTCOMES, OutcomeTracker
from .history import DrawRecord, DrawSource, HistoricalStore
from .lottery_config import LotteryConfig, UnknownLotteryError, get_lottery_config
from .oracle import SupplementaryPredictor, load_predictor
from .resolver import resolve
from .scoring import ScoredEntity, ScoringWeights, build_prediction, score
from .scrapers.base import FetchConfig, ScrapeError
from .scrapers.loteriadehoy import ArchiveRow
from .scrapers.registry import SCRAPERS, extract_today, get_archive_scraper
from .storage import DatabaseStorage, Storage

logger = logging.getLogger('animalitos')


class PipelineError(RuntimeError):
    def __init__(self, stage: str, lottery_id: str, detail: str):
        super().__init__(f'{stage} failed for {lottery_id}: {detail}')
        self.stage = stage
        self.lottery_id = lottery_id
        self.detail = detail

    def to_dict(self) -> dict:
        return {'stage': self.stage, 'lottery_id': self.lottery_id, 'detail': self.detail}


class InsufficientHistoryError(PipelineError):
    def __init__(self, lottery_id: str, available: int, required: int):
        super().__init__(
            'analysis',
            lottery_id,
            f'{available} historical results available, at least {required} required',
        )
        self.available = available
        self.required = required

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({'available': self.available, 'required': self.required})
        return data


@dataclass(frozen=True)
class PipelineConfig:
    fetch: FetchConfig = field(default_factory=FetchConfig)
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    today_ttl: int = 120
    score_ttl: int = 300
    min_history: int = 10
    backfill_interval_days: int = 7
    backfill_max_pages: int = 10
    max_outcomes: int = DEFAULT_MAX_OUTCOMES

    @classmethod
    def from_settings(cls) -> 'PipelineConfig':
        config = settings.ANIMALITOS_CONFIG
        return cls(
            fetch=FetchConfig.from_settings(),
            weights=ScoringWeights.from_settings(),
            today_ttl=int(config.get('TODAY_CACHE_TTL', 120)),
            score_ttl=int(config.get('SCORE_CACHE_TTL', 300)),
            min_history=int(config.get('MIN_HISTORY_REQUIRED', 10)),
            backfill_interval_days=int(config.get('BACKFILL_INTERVAL_DAYS', 7)),
            backfill_max_pages=int(config.get('BACKFILL_MAX_PAGES', 10)),
            max_outcomes=int(config.get('MAX_TRACKED_OUTCOMES', DEFAULT_MAX_OUTCOMES)),
        )


def resolve_archive_row(row: ArchiveRow):
    code = row.code.strip()
    entity = get_entity_by_code(code) if code.isdigit() else None
    return entity or resolve(row.name)


class Pipeline:
    """Extraction -> history -> analysis -> ranking, one lottery at a time."""

    def __init__(
        self,
        storage: Storage,
        config: PipelineConfig | None = None,
        predictor: SupplementaryPredictor | None = None,
        session=None,
        sleep: Callable[[float], None] = time.sleep,
        today_fn: Callable[[], date] = timezone.localdate,
        now_fn: Callable[[], datetime] = timezone.now,
        clock: Callable[[], int] = now_ms,
    ):
        self.storage = storage
        self.config = config or PipelineConfig()
        self.predictor = predictor
        self.session = session
        self.sleep = sleep
        self.today_fn = today_fn
        self.now_fn = now_fn
        self.clock = clock
        self.store = HistoricalStore(storage, clock)
        self.today_cache = TimedCache(storage, 'today', self.config.today_ttl, clock)
        self.score_cache = TimedCache(storage, 'scores', self.config.score_ttl, clock)
        self.outcomes = OutcomeTracker(storage, clock, self.config.max_outcomes)

    def _lottery(self, lottery_id: str) -> LotteryConfig:
        try:
            return get_lottery_config(lottery_id)
        except UnknownLotteryError as exc:
            raise PipelineError('config', lottery_id, str(exc)) from exc

    def refresh(self, lottery_id: str) -> dict:
        lottery = self._lottery(lottery_id)
        result = extract_today(lottery, self.today_cache, self.config.fetch, self.session, self.sleep)
        if not result.draws:
            logger.warning('Refresh for %s found no draws: %s', lottery_id, '; '.join(result.sources))
            return {
                'lottery_id': lottery_id,
                'status': 'failed',
                'added': 0,
                'duplicates': 0,
                'unresolved': 0,
                'sources': result.sources,
            }

        scraper_cls = SCRAPERS.get(result.source_name or '')
        source = DrawSource(scraper_cls.record_source) if scraper_cls else DrawSource.PRIMARY
        draw_date = self.today_fn().isoformat()
        records: List[DrawRecord] = []
        unresolved = 0
        for draw in result.draws:
            if not draw.is_completed:
                continue
            if draw.entity_id is None:
                unresolved += 1
                logger.warning('Dropping unresolved token %r at %s for %s', draw.raw_token, draw.hour, lottery_id)
                continue
            records.append(
                DrawRecord(
                    date=draw_date,
                    hour=draw.hour,
                    entity_id=draw.entity_id,
                    source=source,
                    recorded_at=self.clock(),
                )
            )

        existing = {record.dedup_key for record in self.store.get_history(lottery_id)}
        fresh = [record for record in records if record.dedup_key not in existing]
        merged = self.store.merge_new_records(lottery_id, records)
        if merged['added']:
            self._track_outcomes(lottery_id, fresh)
            self.score_cache.invalidate(lottery_id)

        status = 'success' if unresolved == 0 else 'partial'
        logger.info(
            'Refresh for %s: %s added, %s duplicates, %s unresolved',
            lottery_id,
            merged['added'],
            merged['duplicates'],
            unresolved,
        )
        return {
            'lottery_id': lottery_id,
            'status': status,
            'added': merged['added'],
            'duplicates': merged['duplicates'],
            'unresolved': unresolved,
            'sources': result.sources,
        }

    def _track_outcomes(self, lottery_id: str, records: List[DrawRecord]) -> None:
        cached = self.score_cache.get(lottery_id)
        if not cached or not cached.get('top5'):
            return
        top5 = cached['top5']
        self.outcomes.record_outcomes(
            lottery_id,
            records,
            [item['entity_id'] for item in top5],
            top5[0].get('confidence'),
        )

    def predict(
        self,
        lottery_id: str,
        weights: ScoringWeights | None = None,
        lang: str = 'es',
        refresh: bool = True,
        use_cache: bool = True,
    ) -> dict:
        self._lottery(lottery_id)
        lang = 'en' if lang == 'en' else 'es'
        refresh_result = None
        if refresh:
            refresh_result = self.refresh(lottery_id)
            if refresh_result['status'] == 'failed':
                logger.warning('Scoring %s from stored history only', lottery_id)

        default_weights = weights is None or weights == self.config.weights
        weights = weights or self.config.weights

        if use_cache and default_weights:
            cached = self.score_cache.get(lottery_id)
            if cached is not None and cached.get('lang') == lang:
                logger.info('Using cached ranking for %s', lottery_id)
                return {**cached, 'cached': True, 'refresh': refresh_result}

        history = self.store.get_history(lottery_id)
        if len(history) < self.config.min_history:
            raise InsufficientHistoryError(lottery_id, len(history), self.config.min_history)

        today = self.today_fn()
        ranking = score(analyze(history, today), weights, lang)
        payload = build_prediction(lottery_id, ranking, len(history), weights, today, lang)
        payload['supplementary'] = self._supplementary(lottery_id, history, ranking)
        if default_weights:
            self.score_cache.set(lottery_id, payload)
        logger.info('Scored %s entities for %s from %s results', len(ranking), lottery_id, len(history))
        return {**payload, 'cached': False, 'refresh': refresh_result}

    def _supplementary(self, lottery_id: str, history: List[DrawRecord], ranking: List[ScoredEntity]) -> list:
        if self.predictor is None:
            return []
        try:
            picks = self.predictor.predict(lottery_id, history, ranking)
        except Exception as exc:
            logger.warning('Supplementary predictor failed for %s: %s', lottery_id, exc)
            return []
        return [pick.to_dict() for pick in picks]

    def backfill(self, lottery_id: str, max_pages: Optional[int] = None, force: bool = False) -> dict:
        lottery = self._lottery(lottery_id)
        max_pages = max_pages or self.config.backfill_max_pages
        summary = {'loaded': 0, 'duplicates': 0, 'errors': 0, 'pages': 0, 'skipped': False}

        now = self.now_fn()
        last = self.store.get_last_backfill(lottery_id)
        if not force and last and now - last < timedelta(days=self.config.backfill_interval_days):
            logger.info('Backfill for %s skipped, last run at %s', lottery_id, last.isoformat())
            summary['skipped'] = True
            return summary

        scraper = get_archive_scraper(lottery, self.config.fetch, self.session, self.sleep)
        if scraper is None:
            raise PipelineError('backfill', lottery_id, 'No archive source configured')

        for page in range(1, max_pages + 1):
            try:
                rows = scraper.fetch_archive_page(page)
            except ScrapeError as exc:
                logger.warning('Archive page %s for %s failed: %s (%s)', page, lottery_id, exc, exc.detail)
                summary['errors'] += 1
                continue
            if not rows:
                logger.info('Archive for %s exhausted at page %s', lottery_id, page)
                break
            summary['pages'] += 1

            records: List[DrawRecord] = []
            for row in rows:
                entity = resolve_archive_row(row)
                if entity is None:
                    logger.warning('Archive row %s %s has unknown entity %r/%r', row.date, row.hour, row.code, row.name)
                    summary['errors'] += 1
                    continue
                records.append(
                    DrawRecord(
                        date=row.date,
                        hour=row.hour,
                        entity_id=entity.id,
                        source=DrawSource.SECONDARY,
                        recorded_at=self.clock(),
                    )
                )
            merged = self.store.merge_new_records(lottery_id, records)
            summary['loaded'] += merged['added']
            summary['duplicates'] += merged['duplicates']

        if summary['pages']:
            self.store.mark_backfill(lottery_id, now)
        if summary['loaded']:
            self.score_cache.invalidate(lottery_id)
        logger.info(
            'Backfill for %s: loaded %s, duplicates %s, errors %s, pages %s',
            lottery_id,
            summary['loaded'],
            summary['duplicates'],
            summary['errors'],
            summary['pages'],
        )
        return summary

    def add_manual_result(self, lottery_id: str, draw_date, hour: str, token: str) -> dict:
        self._lottery(lottery_id)
        entity = resolve(token or '')
        if entity is None:
            raise PipelineError('resolve', lottery_id, f'Unknown entity {token!r}')
        try:
            added = self.store.add_manual_record(lottery_id, draw_date, hour, entity)
        except ValueError as exc:
            raise PipelineError('validate', lottery_id, str(exc)) from exc
        if added:
            self.score_cache.invalidate(lottery_id)
        return {
            'lottery_id': lottery_id,
            'added': added,
            'date': str(draw_date),
            'hour': hour,
            'entity': entity_to_dict(entity),
        }

    def stats(self, lottery_id: str) -> dict:
        lottery = self._lottery(lottery_id)
        stats = self.store.get_stats(lottery_id)
        last_backfill = self.store.get_last_backfill(lottery_id)
        stats.update(
            {
                'lottery_id': lottery_id,
                'lottery_name': lottery.name,
                'last_backfill': last_backfill.isoformat() if last_backfill else None,
            }
        )
        return stats

    def history(self, lottery_id: str, limit: Optional[int] = None) -> List[dict]:
        self._lottery(lottery_id)
        records = self.store.get_history(lottery_id)
        if limit:
            records = records[:limit]
        items = []
        for record in records:
            entity = get_entity(record.entity_id)
            item = record.to_dict()
            item['entity'] = entity_to_dict(entity) if entity else None
            items.append(item)
        return items

    def accuracy(self, lottery_id: str, days: int = 7) -> dict:
        self._lottery(lottery_id)
        accuracy = self.outcomes.calculate_accuracy(lottery_id)
        accuracy['recent_performance'] = self.outcomes.recent_performance(lottery_id, self.today_fn(), days)
        return accuracy

    def invalidate(self, lottery_id: str | None = None) -> None:
        self.today_cache.invalidate(lottery_id)
        self.score_cache.invalidate(lottery_id)
        logger.info('Invalidated caches for %s', lottery_id or 'all lotteries')


def build_pipeline(**kwargs) -> Pipeline:
    kwargs.setdefault('config', PipelineConfig.from_settings())
    kwargs.setdefault('predictor', load_predictor())
    return Pipeline(DatabaseStorage(), **kwargs)
