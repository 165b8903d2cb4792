from datetime import date

from django.test import SimpleTestCase

from apps.animalitos.services.analytics import NEVER_SEEN_DAYS, analyze
from apps.animalitos.services.catalog import ENTITIES
from apps.animalitos.services.history import DrawRecord, DrawSource
from apps.animalitos.services.scoring import ScoringWeights, build_prediction, score

TODAY = date(2024, 3, 1)
CATEGORY_ORDER = ['hot', 'warm', 'cold', 'frozen']


def record(draw_date, hour, entity_id):
    return DrawRecord(
        date=draw_date,
        hour=hour,
        entity_id=entity_id,
        source=DrawSource.PRIMARY,
        recorded_at=0,
    )


def dominant_history():
    """Eleven recent draws of León plus one draw each for 26 other entities."""
    history = [record('2024-02-29', f"{8 + i:02d}:00", '05') for i in range(11)]
    others = [f"{n:02d}" for n in range(10, 36)]
    history.extend(record('2024-02-01', f"{8 + i % 12:02d}:00", code) for i, code in enumerate(others))
    return history


class AnalyzerTests(SimpleTestCase):
    def test_snapshot_per_catalog_entry(self):
        snapshots = analyze(dominant_history(), TODAY)
        assert [s.entity_id for s in snapshots] == [e.id for e in ENTITIES]

    def test_frequencies_add_up(self):
        history = dominant_history()
        snapshots = analyze(history, TODAY)
        assert sum(s.total_appearances for s in snapshots) == len(history)
        self.assertAlmostEqual(sum(s.total_frequency for s in snapshots), 100.0)
        for window in (5, 10, 20):
            assert sum(s.recent_appearances[window] for s in snapshots) == min(window, len(history))

    def test_recent_window_uses_latest_draws(self):
        snapshots = {s.entity_id: s for s in analyze(dominant_history(), TODAY)}
        assert snapshots['05'].recent_appearances[10] == 10
        assert snapshots['05'].recent_frequency[10] == 100.0
        assert snapshots['05'].recent_appearances[20] == 11
        assert snapshots['10'].recent_appearances[10] == 0

    def test_recency_and_flags(self):
        snapshots = {s.entity_id: s for s in analyze(dominant_history(), TODAY)}
        assert snapshots['05'].days_since_last_appearance == 1
        assert snapshots['05'].last_appearance_date == '2024-02-29'
        assert snapshots['10'].days_since_last_appearance == 29
        assert snapshots['00'].days_since_last_appearance == NEVER_SEEN_DAYS
        assert snapshots['00'].last_appearance_date is None
        assert snapshots['05'].is_hot and not snapshots['05'].is_cold
        assert snapshots['10'].is_cold and not snapshots['10'].is_hot

    def test_future_dates_clamp_to_zero(self):
        snapshots = {s.entity_id: s for s in analyze([record('2024-03-05', '08:00', '07')], TODAY)}
        assert snapshots['07'].days_since_last_appearance == 0

    def test_empty_history(self):
        snapshots = analyze([], TODAY)
        assert len(snapshots) == 37
        assert all(s.total_frequency == 0 and s.total_appearances == 0 for s in snapshots)
        assert all(s.days_since_last_appearance == NEVER_SEEN_DAYS for s in snapshots)


class ScoringTests(SimpleTestCase):
    def test_dominant_entity_ranks_first(self):
        ranking = score(analyze(dominant_history(), TODAY))
        top = ranking[0]
        assert top.entity_id == '05'
        assert top.rank == 1
        assert top.category == 'hot'
        assert top.score > 70
        assert top.confidence == 'high'
        assert top.explanation == 'tendencia reciente alta, salió recientemente, frecuencia histórica alta'

    def test_ranks_are_dense_and_categories_monotonic(self):
        ranking = score(analyze(dominant_history(), TODAY))
        assert [item.rank for item in ranking] == list(range(1, 38))
        assert sorted(item.entity_id for item in ranking) == [e.id for e in ENTITIES]
        assert ranking[-1].category == 'frozen'
        order = [CATEGORY_ORDER.index(item.category) for item in ranking]
        assert order == sorted(order)
        assert [item.score for item in ranking] == sorted((item.score for item in ranking), reverse=True)

    def test_ties_break_on_entity_code(self):
        ranking = score(analyze(dominant_history(), TODAY))
        never_seen = [item.entity_id for item in ranking[1:11]]
        assert never_seen == ['00', '01', '02', '03', '04', '06', '07', '08', '09', '36']

    def test_empty_history_ranks_in_catalog_order(self):
        ranking = score(analyze([], TODAY))
        assert [item.rank for item in ranking] == list(range(1, 38))
        assert [item.entity_id for item in ranking] == [e.id for e in ENTITIES]
        assert all(item.score == 0 for item in ranking)
        assert all(item.days_since_last_appearance == NEVER_SEEN_DAYS for item in ranking)

    def test_both_hot_signals_are_kept(self):
        ranking = score(analyze(dominant_history(), TODAY))
        second = ranking[1]
        assert second.category == 'hot'
        assert second.is_cold and not second.is_hot

    def test_custom_weights(self):
        ranking = score(analyze(dominant_history(), TODAY), ScoringWeights(recent=0, total=0, absence=1))
        assert ranking[0].entity_id == '00'
        assert ranking[0].score == 100
        assert ranking[-1].entity_id == '05'

    def test_invalid_weights_are_rejected(self):
        for bad in (-0.1, float('nan'), float('inf')):
            with self.assertRaises(ValueError):
                ScoringWeights(recent=bad)
            with self.assertRaises(ValueError):
                ScoringWeights(absence=bad)

    def test_english_explanations(self):
        ranking = score(analyze(dominant_history(), TODAY), lang='en')
        assert ranking[0].explanation == 'strong recent trend, appeared recently, high historical frequency'


class PredictionPayloadTests(SimpleTestCase):
    def test_payload_shape(self):
        history = dominant_history()
        ranking = score(analyze(history, TODAY))
        payload = build_prediction('LOTTO_ACTIVO', ranking, len(history), ScoringWeights(), TODAY)

        assert payload['analysis_date'] == '2024-03-01'
        assert payload['total_results'] == 37
        assert payload['analysis_window'] == {'recent5': 5, 'recent10': 10, 'recent20': 20}
        assert payload['weights'] == {'recent': 0.5, 'total': 0.3, 'absence': 0.2}
        assert len(payload['top5']) == 5
        assert len(payload['top10']) == 10
        assert len(payload['hot']) == 5
        assert len(payload['cold']) == 22
        assert len(payload['ranking']) == 37
        assert payload['top5'][0]['entity']['name'] == 'León'
        assert payload['quick_summary']['hottest']['entity_id'] == '05'
        assert payload['quick_summary']['trending'][0]['entity_id'] == '05'
        assert 'No garantiza' in payload['disclaimer']

    def test_english_payload(self):
        ranking = score(analyze([], TODAY), lang='en')
        payload = build_prediction('GUACHARO', ranking, 0, ScoringWeights(), TODAY, lang='en')
        assert payload['analysis_window'] == {'recent5': 0, 'recent10': 0, 'recent20': 0}
        assert payload['disclaimer'].startswith('This statistical analysis')
