"""
Daily Readiness / Load / Adjustment Tasks

Celery Beat runs `run_daily_pipeline` once a day (DAILY_PIPELINE_HOUR_UTC).
For every athlete with samples in the chronic window it runs, in order:

    readiness score -> load classification -> adjust next planned session

Design:
    - Steps for one athlete are strictly sequential.
    - Athletes are independent: each gets its own commit, and one
      athlete's failure is rolled back and logged without blocking others.
    - Rerunning a day overwrites readiness/load rows (upserts) and appends
      a new adjustment row; the latest adjustment is the effective one.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

from celery import Task
from sqlalchemy.orm import Session

from tasks import celery_app
from core.database import get_db_sync
from services.adjustment_engine import PipelineResult, run_athlete_pipeline
from services.metric_store import MetricStore
from services.rolling_aggregator import CHRONIC_WINDOW_DAYS

import logging

logger = logging.getLogger(__name__)


def _summarize(result: PipelineResult) -> Dict:
    adjustment = result.adjustment
    return {
        "athlete_id": str(result.athlete_id),
        "date": str(result.target_date),
        "readiness_score": result.readiness.score,
        "readiness_band": result.readiness.band.value if result.readiness.band else None,
        "acwr": round(result.load.acwr, 3) if result.load.acwr is not None else None,
        "load_band": result.load.band.value,
        "session_id": str(result.session.id) if result.session else None,
        "adjustment_reason": adjustment.reason if adjustment else None,
        "adjustment_factor": adjustment.adjustment_factor if adjustment else None,
    }


def _run_pipeline_for_athlete(athlete_id: UUID, target_date: date, db: Session) -> Dict:
    """Run and commit one athlete's pipeline. Rolls back on failure."""
    try:
        result = run_athlete_pipeline(db, athlete_id, target_date)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return _summarize(result)


@celery_app.task(
    name="tasks.run_daily_pipeline",
    bind=True,
    max_retries=0,      # Athletes are isolated; the batch is not retried
    soft_time_limit=1500,
    time_limit=1800,
)
def run_daily_pipeline(self: Task, target_date: Optional[str] = None) -> Dict:
    """
    Daily pipeline over every athlete with recent samples.

    Args:
        target_date: ISO date string (defaults to today UTC)

    Returns:
        Summary dict with per-athlete results and errors.
    """
    db: Session = get_db_sync()
    td = date.fromisoformat(target_date) if target_date else datetime.now(timezone.utc).date()

    try:
        window_start = td - timedelta(days=CHRONIC_WINDOW_DAYS - 1)
        athlete_ids = MetricStore(db).athletes_with_samples(window_start, td)
        logger.info(f"Daily pipeline for {td}: {len(athlete_ids)} athletes")

        results = []
        errors = []

        for athlete_id in athlete_ids:
            try:
                results.append(_run_pipeline_for_athlete(athlete_id, td, db))
            except Exception as e:
                error_msg = f"Failed for athlete {athlete_id}: {type(e).__name__}: {e}"
                logger.error(
                    error_msg,
                    exc_info=True,
                    extra={"extra_fields": {"athlete_id": str(athlete_id), "date": str(td)}},
                )
                errors.append({"athlete_id": str(athlete_id), "error": str(e)})

        return {
            "status": "ok",
            "date": str(td),
            "athletes_processed": len(results),
            "athletes_errored": len(errors),
            "adjustments": sum(1 for r in results if r["adjustment_reason"]),
            "results": results,
            "errors": errors if errors else None,
        }

    except Exception as e:
        logger.error(f"Daily pipeline task failed: {e}", exc_info=True)
        return {"status": "error", "date": str(td), "message": str(e)}
    finally:
        db.close()


@celery_app.task(
    name="tasks.evaluate_athlete_session",
    bind=True,
    max_retries=1,
    soft_time_limit=60,
    time_limit=90,
)
def evaluate_athlete_session(
    self: Task, athlete_id: str, target_date: Optional[str] = None,
) -> Dict:
    """
    Run the pipeline for a single athlete. Called on demand, e.g. after a
    late check-in changes the day's readiness inputs.

    Args:
        athlete_id: UUID string
        target_date: ISO date string (defaults to today UTC)
    """
    db: Session = get_db_sync()

    try:
        aid = UUID(athlete_id)
        td = date.fromisoformat(target_date) if target_date else datetime.now(timezone.utc).date()
        result = _run_pipeline_for_athlete(aid, td, db)
        return {"status": "ok", **result}

    except Exception as e:
        logger.error(f"Pipeline task failed for {athlete_id}: {e}", exc_info=True)
        return {"status": "error", "athlete_id": athlete_id, "message": str(e)}
    finally:
        db.close()
