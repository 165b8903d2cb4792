import json
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

import requests
from django.test import SimpleTestCase

from apps.animalitos.services.history import DrawRecord, DrawSource
from apps.animalitos.services.oracle import OraclePick
from apps.animalitos.services.pipeline import (
    InsufficientHistoryError,
    Pipeline,
    PipelineConfig,
    PipelineError,
)
from apps.animalitos.services.scoring import ScoringWeights
from apps.animalitos.services.scrapers.base import FetchConfig
from apps.animalitos.services.storage import MemoryStorage

FIXTURES = Path(__file__).parent / 'fixtures'
LOTTERY = 'LOTTO_ACTIVO'
TODAY = date(2024, 3, 15)
NOW = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)


def fixture(name):
    return (FIXTURES / name).read_text(encoding='utf-8')


def seed_records(count=12):
    codes = ['05', '05', '05', '10', '11', '12', '13', '14', '20', '21', '22', '23', '24', '25']
    return [
        DrawRecord(
            date=f"2024-03-{1 + i:02d}",
            hour='10:00',
            entity_id=codes[i % len(codes)],
            source=DrawSource.SECONDARY,
            recorded_at=0,
        )
        for i in range(count)
    ]


class PipelineTestMixin:
    def make_pipeline(self, get=None, predictor=None, **kwargs):
        self.session = mock.Mock()
        if get is not None:
            self.session.get.side_effect = get
        else:
            self.session.get.return_value = mock.Mock(text=fixture('lotoven_sample.html'))
        self.now = [1_710_000_000_000]
        self.storage = MemoryStorage()
        return Pipeline(
            self.storage,
            PipelineConfig(fetch=FetchConfig(max_retries=1, budget_seconds=None)),
            predictor=predictor,
            session=self.session,
            sleep=mock.Mock(),
            today_fn=lambda: TODAY,
            now_fn=kwargs.get('now_fn', lambda: NOW),
            clock=lambda: self.now[0],
        )


class RefreshTests(PipelineTestMixin, SimpleTestCase):
    def test_refresh_merges_today_results(self):
        pipeline = self.make_pipeline()
        result = pipeline.refresh(LOTTERY)
        assert result['status'] == 'success'
        assert result['added'] == 3
        assert result['sources'] == ['LotoVen (3 results)']

        history = pipeline.store.get_history(LOTTERY)
        assert {(item.date, item.hour, item.entity_id) for item in history} == {
            ('2024-03-15', '08:00', '05'),
            ('2024-03-15', '09:00', '00'),
            ('2024-03-15', '13:00', '12'),
        }
        assert all(item.source == DrawSource.PRIMARY for item in history)

    def test_second_refresh_uses_cache_and_adds_nothing(self):
        pipeline = self.make_pipeline()
        pipeline.refresh(LOTTERY)
        result = pipeline.refresh(LOTTERY)
        assert result['added'] == 0
        assert result['duplicates'] == 3
        assert result['sources'] == ['LotoVen (3 results) (cached)']
        assert self.session.get.call_count == 1

    def test_unresolved_tokens_are_dropped(self):
        def get(url, **kwargs):
            if 'lotoven' in url:
                raise requests.ConnectionError('down')
            return mock.Mock(text=fixture('loteriadehoy_results.html'))

        pipeline = self.make_pipeline(get=get)
        result = pipeline.refresh(LOTTERY)
        assert result['status'] == 'partial'
        assert result['added'] == 1
        assert result['unresolved'] == 1
        assert pipeline.store.get_history(LOTTERY)[0].source == DrawSource.SECONDARY

    def test_failed_extraction_does_not_raise(self):
        pipeline = self.make_pipeline(get=mock.Mock(side_effect=requests.ConnectionError('down')))
        result = pipeline.refresh(LOTTERY)
        assert result['status'] == 'failed'
        assert result['added'] == 0
        assert len(result['sources']) == 2

    def test_unknown_lottery(self):
        pipeline = self.make_pipeline()
        with self.assertRaises(PipelineError) as ctx:
            pipeline.refresh('NOPE')
        assert ctx.exception.stage == 'config'


class PredictTests(PipelineTestMixin, SimpleTestCase):
    def test_insufficient_history(self):
        pipeline = self.make_pipeline()
        with self.assertRaises(InsufficientHistoryError) as ctx:
            pipeline.predict(LOTTERY, refresh=False)
        assert ctx.exception.available == 0
        assert ctx.exception.required == 10
        assert ctx.exception.to_dict()['stage'] == 'analysis'

    def test_predict_scores_and_caches(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())

        first = pipeline.predict(LOTTERY, refresh=False)
        assert first['cached'] is False
        assert first['total_results'] == 12
        assert len(first['ranking']) == 37
        assert first['top5'][0]['entity_id'] == '05'
        assert first['supplementary'] == []

        second = pipeline.predict(LOTTERY, refresh=False)
        assert second['cached'] is True
        assert second['ranking'] == first['ranking']

    def test_custom_weights_bypass_cache(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        pipeline.predict(LOTTERY, refresh=False)

        custom = pipeline.predict(LOTTERY, weights=ScoringWeights(recent=0, total=0, absence=1), refresh=False)
        assert custom['cached'] is False
        assert custom['weights'] == {'recent': 0, 'total': 0, 'absence': 1}
        assert pipeline.predict(LOTTERY, refresh=False)['weights'] == {'recent': 0.5, 'total': 0.3, 'absence': 0.2}

    def test_language_switch_recomputes(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        pipeline.predict(LOTTERY, refresh=False)
        english = pipeline.predict(LOTTERY, lang='en', refresh=False)
        assert english['cached'] is False
        assert english['lang'] == 'en'

    def test_predict_refreshes_first(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records(9))
        payload = pipeline.predict(LOTTERY)
        assert payload['refresh']['added'] == 3
        assert payload['total_results'] == 12

    def test_degraded_mode_when_refresh_fails(self):
        pipeline = self.make_pipeline(get=mock.Mock(side_effect=requests.ConnectionError('down')))
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        payload = pipeline.predict(LOTTERY)
        assert payload['refresh']['status'] == 'failed'
        assert payload['total_results'] == 12

    def test_supplementary_picks_are_attached(self):
        predictor = mock.Mock()
        predictor.predict.return_value = [OraclePick(entity_id='36', probability=12.0)]
        pipeline = self.make_pipeline(predictor=predictor)
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        payload = pipeline.predict(LOTTERY, refresh=False)
        assert payload['supplementary'][0]['entity_id'] == '36'
        assert payload['supplementary'][0]['name'] == 'Culebra'

    def test_supplementary_failure_is_ignored(self):
        predictor = mock.Mock()
        predictor.predict.side_effect = RuntimeError('oracle offline')
        pipeline = self.make_pipeline(predictor=predictor)
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        with self.assertLogs('animalitos', level='WARNING'):
            payload = pipeline.predict(LOTTERY, refresh=False)
        assert payload['supplementary'] == []
        assert len(payload['ranking']) == 37

    def test_new_results_invalidate_scores_and_record_outcomes(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        pipeline.predict(LOTTERY, refresh=False)

        pipeline.refresh(LOTTERY)
        accuracy = pipeline.accuracy(LOTTERY)
        assert accuracy['total_predictions'] == 3
        assert accuracy['exact_hits'] == 1
        assert pipeline.predict(LOTTERY, refresh=False)['cached'] is False

    def test_malformed_history_entry_does_not_break_scoring(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        stored = json.loads(self.storage.get('history:LOTTO_ACTIVO'))
        stored.append({'date': 'garbage', 'hour': '10:00', 'entity_id': '05', 'source': 'Manual', 'recorded_at': 0})
        self.storage.set('history:LOTTO_ACTIVO', json.dumps(stored))

        with self.assertLogs('animalitos', level='WARNING'):
            payload = pipeline.predict(LOTTERY, refresh=False)
        assert payload['total_results'] == 12
        assert len(payload['ranking']) == 37

    def test_unreadable_score_cache_is_recomputed(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        self.storage.set('scores:LOTTO_ACTIVO', json.dumps({'timestamp': self.now[0], 'data': 'oops'}))

        with self.assertLogs('animalitos', level='WARNING'):
            payload = pipeline.predict(LOTTERY, refresh=False)
        assert payload['cached'] is False
        assert payload['top5'][0]['entity_id'] == '05'

        self.storage.set('scores:LOTTO_ACTIVO', json.dumps({'timestamp': self.now[0], 'data': 'oops'}))
        assert pipeline.refresh(LOTTERY)['added'] == 3
        assert pipeline.accuracy(LOTTERY)['total_predictions'] == 0


class BackfillTests(PipelineTestMixin, SimpleTestCase):
    def archive_get(self, failing_pages=()):
        def get(url, **kwargs):
            page = int(url.rsplit('=', 1)[1])
            if page in failing_pages:
                raise requests.ConnectionError('page down')
            if page == 1 or (failing_pages and page == max(failing_pages) + 1):
                return mock.Mock(text=fixture('loteriadehoy_archive.html'))
            return mock.Mock(text=fixture('loteriadehoy_archive_empty.html'))
        return get

    def test_backfill_loads_until_empty_page(self):
        pipeline = self.make_pipeline(get=self.archive_get())
        result = pipeline.backfill(LOTTERY, max_pages=5)
        assert result == {'loaded': 3, 'duplicates': 0, 'errors': 0, 'pages': 1, 'skipped': False}
        assert self.session.get.call_count == 2
        history = pipeline.store.get_history(LOTTERY)
        assert [(item.date, item.hour, item.entity_id) for item in history] == [
            ('2024-04-03', '09:00', '36'),
            ('2024-04-03', '08:00', '05'),
            ('2024-04-02', '19:00', '10'),
        ]
        assert all(item.source == DrawSource.SECONDARY for item in history)

    def test_backfill_is_rate_limited(self):
        pipeline = self.make_pipeline(get=self.archive_get())
        pipeline.backfill(LOTTERY, max_pages=5)
        assert pipeline.backfill(LOTTERY, max_pages=5)['skipped'] is True

        forced = pipeline.backfill(LOTTERY, max_pages=5, force=True)
        assert forced['skipped'] is False
        assert forced['loaded'] == 0
        assert forced['duplicates'] == 3

    def test_backfill_runs_again_after_interval(self):
        moments = [NOW, NOW + timedelta(days=8)]
        pipeline = self.make_pipeline(get=self.archive_get(), now_fn=lambda: moments[0])
        pipeline.backfill(LOTTERY, max_pages=5)
        moments.pop(0)
        assert pipeline.backfill(LOTTERY, max_pages=5)['skipped'] is False

    def test_failed_page_counts_as_error(self):
        pipeline = self.make_pipeline(get=self.archive_get(failing_pages=(1,)))
        result = pipeline.backfill(LOTTERY, max_pages=5)
        assert result['errors'] == 1
        assert result['loaded'] == 3
        assert result['pages'] == 1

    def test_naive_backfill_marker_is_honoured(self):
        pipeline = self.make_pipeline(get=self.archive_get())
        self.storage.set('backfill:LOTTO_ACTIVO', '2024-03-15T12:00:00')
        assert pipeline.backfill(LOTTERY, max_pages=5)['skipped'] is True
        assert self.session.get.call_count == 0


class ManualResultTests(PipelineTestMixin, SimpleTestCase):
    def test_manual_result_and_slot_exclusivity(self):
        pipeline = self.make_pipeline()
        result = pipeline.add_manual_result(LOTTERY, '2024-03-15', '10:00', 'leon')
        assert result['added'] is True
        assert result['entity']['id'] == '05'
        assert pipeline.add_manual_result(LOTTERY, '2024-03-15', '10:00', 'Tigre')['added'] is False
        assert pipeline.stats(LOTTERY)['total_entries'] == 1
        assert pipeline.stats(LOTTERY)['sources'] == ['Manual']

    def test_manual_result_invalidates_scores(self):
        pipeline = self.make_pipeline()
        pipeline.store.merge_new_records(LOTTERY, seed_records())
        pipeline.predict(LOTTERY, refresh=False)
        pipeline.add_manual_result(LOTTERY, '2024-03-15', '19:00', '36')
        payload = pipeline.predict(LOTTERY, refresh=False)
        assert payload['cached'] is False
        assert payload['total_results'] == 13

    def test_manual_result_errors(self):
        pipeline = self.make_pipeline()
        with self.assertRaises(PipelineError) as ctx:
            pipeline.add_manual_result(LOTTERY, '2024-03-15', '10:00', 'Unicornio')
        assert ctx.exception.stage == 'resolve'
        with self.assertRaises(PipelineError) as ctx:
            pipeline.add_manual_result(LOTTERY, '2024-03-15', '7pm', 'Tigre')
        assert ctx.exception.stage == 'validate'

    def test_history_and_invalidate(self):
        pipeline = self.make_pipeline()
        pipeline.refresh(LOTTERY)
        items = pipeline.history(LOTTERY, limit=2)
        assert [item['hour'] for item in items] == ['13:00', '09:00']
        assert items[0]['entity']['name'] == 'Caballo'

        pipeline.invalidate(LOTTERY)
        assert self.storage.keys('today:') == []
        pipeline.refresh(LOTTERY)
        assert self.session.get.call_count == 2
