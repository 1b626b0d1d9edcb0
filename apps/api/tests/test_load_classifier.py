"""
Tests for the ACWR Load Classifier

Band boundaries, under-training flag, insufficient-data handling and
persistence.
"""

import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

from models import LoadRecord
from services.load_classifier import (
    LoadBand,
    LoadClassifier,
    band_for_acwr,
    compute_acwr,
    is_under_training,
)
from services.metric_store import MetricStore, MetricType
from services.rolling_aggregator import RollingAggregator


class TestBandForAcwr:

    @pytest.mark.parametrize("acwr,band", [
        (0.5, LoadBand.OPTIMAL),
        (0.8, LoadBand.OPTIMAL),
        (1.0, LoadBand.OPTIMAL),
        (1.3, LoadBand.OPTIMAL),
        (1.31, LoadBand.CAUTION),
        (1.5, LoadBand.CAUTION),
        (1.51, LoadBand.DANGER),
        (3.0, LoadBand.DANGER),
        (None, LoadBand.INSUFFICIENT_DATA),
    ])
    def test_bands(self, acwr, band):
        assert band_for_acwr(acwr) == band

    def test_under_training_flag(self):
        assert is_under_training(0.79) is True
        assert is_under_training(0.8) is False
        assert is_under_training(None) is False


class TestComputeAcwr:

    def test_ratio(self):
        assert compute_acwr(150.0, 100.0) == 1.5

    def test_zero_chronic_is_undefined(self):
        assert compute_acwr(100.0, 0.0) is None

    def test_missing_sides_are_undefined(self):
        assert compute_acwr(None, 100.0) is None
        assert compute_acwr(100.0, None) is None


class TestLoadClassifier:

    @pytest.fixture
    def classifier(self, db_session):
        return LoadClassifier(RollingAggregator(MetricStore(db_session)))

    def test_exactly_one_point_five_is_caution(self, classifier, seed_daily_load, athlete_id, target_date):
        # acute = 180, chronic = (7*180 + 21*100) / 28 = 120 -> 1.5
        seed_daily_load(athlete_id, target_date, acute=180.0, chronic_rest=100.0)

        result = classifier.classify(athlete_id, target_date)

        assert result.acute_7d == 180.0
        assert result.chronic_28d == 120.0
        assert result.acwr == 1.5
        assert result.band == LoadBand.CAUTION

    def test_spike_is_danger(self, classifier, seed_daily_load, athlete_id, target_date):
        seed_daily_load(athlete_id, target_date, acute=300.0, chronic_rest=100.0)
        result = classifier.classify(athlete_id, target_date)
        assert result.acwr == pytest.approx(2.0)
        assert result.band == LoadBand.DANGER

    def test_steady_load_is_optimal(self, classifier, seed_daily_load, athlete_id, target_date):
        seed_daily_load(athlete_id, target_date, acute=100.0, chronic_rest=100.0)
        result = classifier.classify(athlete_id, target_date)
        assert result.acwr == pytest.approx(1.0)
        assert result.band == LoadBand.OPTIMAL
        assert result.under_training is False
        assert result.daily_load == 100.0

    def test_deload_is_optimal_and_flagged(self, classifier, seed_daily_load, athlete_id, target_date):
        seed_daily_load(athlete_id, target_date, acute=50.0, chronic_rest=100.0)
        result = classifier.classify(athlete_id, target_date)
        assert result.acwr < 0.8
        assert result.band == LoadBand.OPTIMAL
        assert result.under_training is True

    def test_no_history_is_insufficient_data(self, classifier, athlete_id, target_date):
        result = classifier.classify(athlete_id, target_date)
        assert result.acwr is None
        assert result.band == LoadBand.INSUFFICIENT_DATA
        assert result.has_data is False

    def test_zero_chronic_is_insufficient_not_danger(self, classifier, seed_daily_load, athlete_id, target_date):
        seed_daily_load(athlete_id, target_date, acute=0.0, chronic_rest=0.0)
        result = classifier.classify(athlete_id, target_date)
        assert result.acwr is None
        assert result.band == LoadBand.INSUFFICIENT_DATA

    def test_uses_acute_and_chronic_windows(self, athlete_id, target_date):
        aggregator = MagicMock()
        aggregator.average.side_effect = lambda a, m, d, days: {7: 130.0, 28: 100.0, 1: 90.0}[days]

        result = LoadClassifier(aggregator).classify(athlete_id, target_date)

        assert result.acwr == pytest.approx(1.3)
        assert result.band == LoadBand.OPTIMAL
        windows = sorted(call.args[3] for call in aggregator.average.call_args_list)
        assert windows == [1, 7, 28]
        assert all(call.args[1] == MetricType.TRAINING_LOAD for call in aggregator.average.call_args_list)


class TestLoadPersistence:

    def test_insufficient_data_day_is_stored(self, db_session, athlete_id, target_date):
        classifier = LoadClassifier(RollingAggregator(MetricStore(db_session)))
        LoadClassifier.persist(classifier.classify(athlete_id, target_date), db_session)

        row = db_session.query(LoadRecord).filter(LoadRecord.athlete_id == athlete_id).one()
        assert row.acwr is None
        assert row.band == "insufficient_data"

    def test_recompute_overwrites(self, db_session, seed_daily_load, athlete_id, target_date):
        classifier = LoadClassifier(RollingAggregator(MetricStore(db_session)))
        LoadClassifier.persist(classifier.classify(athlete_id, target_date), db_session)

        seed_daily_load(athlete_id, target_date, acute=300.0, chronic_rest=100.0)
        LoadClassifier.persist(classifier.classify(athlete_id, target_date), db_session)

        rows = db_session.query(LoadRecord).filter(LoadRecord.athlete_id == athlete_id).all()
        assert len(rows) == 1
        assert rows[0].band == "danger"

    def test_days_are_independent(self, db_session, seed_daily_load, athlete_id, target_date):
        seed_daily_load(athlete_id, target_date, acute=100.0, chronic_rest=100.0)
        classifier = LoadClassifier(RollingAggregator(MetricStore(db_session)))
        for day in (target_date - timedelta(days=1), target_date):
            LoadClassifier.persist(classifier.classify(athlete_id, day), db_session)

        assert db_session.query(LoadRecord).filter(LoadRecord.athlete_id == athlete_id).count() == 2
        assert db_session.query(LoadRecord).filter(LoadRecord.athlete_id == uuid4()).count() == 0
