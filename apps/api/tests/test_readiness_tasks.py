"""
Tests for the daily readiness / load / adjustment Celery tasks.

Per-athlete error isolation, summary shape and single-athlete runs.
"""

from datetime import date, timedelta
from unittest.mock import patch
from uuid import uuid4

from celery.schedules import crontab

from celerybeat_schedule import beat_schedule
from core.database import SessionLocal
from models import DailyReadiness, LoadRecord, PlannedSession
from services.adjustment_engine import run_athlete_pipeline as real_pipeline
from services.metric_store import MetricStore, MetricType
from tasks.readiness_tasks import evaluate_athlete_session, run_daily_pipeline

DAY = date(2024, 3, 15)


def _seed_athlete(hrv=40.0, with_session=False):
    athlete_id = uuid4()
    db = SessionLocal()
    try:
        store = MetricStore(db)
        store.upsert(athlete_id, MetricType.HRV, DAY, hrv)
        for offset in range(28):
            store.upsert(athlete_id, MetricType.TRAINING_LOAD, DAY - timedelta(days=offset), 100.0)
        if with_session:
            db.add(PlannedSession(
                athlete_id=athlete_id,
                scheduled_date=DAY + timedelta(days=1),
                payload={"planned_load": 1000},
            ))
        db.commit()
    finally:
        db.close()
    return athlete_id


class TestRunDailyPipeline:

    def test_processes_every_athlete_with_samples(self):
        a = _seed_athlete(with_session=True)
        b = _seed_athlete(hrv=60.0)

        result = run_daily_pipeline.run(target_date="2024-03-15")

        assert result["status"] == "ok"
        assert result["athletes_processed"] == 2
        assert result["athletes_errored"] == 0
        by_athlete = {r["athlete_id"]: r for r in result["results"]}
        # HRV 40 alone normalizes to 50 -> low readiness
        assert by_athlete[str(a)]["adjustment_reason"] == "low_readiness"
        assert by_athlete[str(b)]["session_id"] is None

        db = SessionLocal()
        try:
            assert db.query(DailyReadiness).count() == 2
            assert db.query(LoadRecord).count() == 2
        finally:
            db.close()

    def test_one_athlete_failure_does_not_block_others(self):
        bad = _seed_athlete()
        good = _seed_athlete()

        def flaky(db, athlete_id, target_date):
            if athlete_id == bad:
                raise RuntimeError("boom")
            return real_pipeline(db, athlete_id, target_date)

        with patch("tasks.readiness_tasks.run_athlete_pipeline", side_effect=flaky):
            result = run_daily_pipeline.run(target_date="2024-03-15")

        assert result["athletes_processed"] == 1
        assert result["athletes_errored"] == 1
        assert result["errors"][0]["athlete_id"] == str(bad)
        assert result["results"][0]["athlete_id"] == str(good)

        db = SessionLocal()
        try:
            assert db.query(DailyReadiness).filter(DailyReadiness.athlete_id == good).count() == 1
            assert db.query(DailyReadiness).filter(DailyReadiness.athlete_id == bad).count() == 0
        finally:
            db.close()

    def test_no_athletes(self):
        result = run_daily_pipeline.run(target_date="2024-03-15")
        assert result["status"] == "ok"
        assert result["athletes_processed"] == 0


class TestEvaluateAthleteSession:

    def test_single_athlete(self):
        athlete_id = _seed_athlete(with_session=True)
        result = evaluate_athlete_session.run(str(athlete_id), target_date="2024-03-15")
        assert result["status"] == "ok"
        assert result["readiness_band"] == "low"
        assert result["load_band"] == "optimal"
        assert result["adjustment_factor"] == 0.8

    def test_invalid_athlete_id_reports_error(self):
        result = evaluate_athlete_session.run("not-a-uuid", target_date="2024-03-15")
        assert result["status"] == "error"


class TestBeatSchedule:

    def test_daily_pipeline_scheduled(self):
        entry = beat_schedule["daily-readiness-pipeline"]
        assert entry["task"] == "tasks.run_daily_pipeline"
        assert isinstance(entry["schedule"], crontab)
