"""
Readiness Router

Compute-and-store and read endpoints for the daily readiness score.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import NotFoundError
from models import DailyReadiness
from schemas import ReadinessResponse
from services.metric_store import MetricStore
from services.readiness_score import ReadinessResult, ReadinessScorer
from services.rolling_aggregator import RollingAggregator

router = APIRouter(prefix="/v1/athletes/{athlete_id}/readiness", tags=["Readiness"])


def readiness_response(result: ReadinessResult) -> ReadinessResponse:
    return ReadinessResponse(
        athlete_id=result.athlete_id,
        date=result.target_date,
        status="ok" if result.has_data else "no_data",
        score=result.score,
        band=result.band.value if result.band else None,
        component_breakdown=result.component_breakdown,
        weights_used=result.weights_used,
        signals_available=result.signals_available,
    )


@router.post("/{target_date}", response_model=ReadinessResponse)
async def compute_readiness(
    athlete_id: UUID,
    target_date: date,
    db: Session = Depends(get_db),
):
    """
    Score the athlete for a day and store the result.

    A day without any readiness signal returns status "no_data" and stores
    nothing.
    """
    result = ReadinessScorer(RollingAggregator(MetricStore(db))).score(athlete_id, target_date)
    ReadinessScorer.persist(result, db)
    return readiness_response(result)


@router.get("/{target_date}", response_model=ReadinessResponse)
async def get_readiness(
    athlete_id: UUID,
    target_date: date,
    db: Session = Depends(get_db),
):
    """Stored readiness for a day."""
    row = (
        db.query(DailyReadiness)
        .filter(
            DailyReadiness.athlete_id == athlete_id,
            DailyReadiness.date == target_date,
        )
        .first()
    )
    if not row:
        raise NotFoundError("Readiness", f"{athlete_id} on {target_date}")

    return ReadinessResponse(
        athlete_id=row.athlete_id,
        date=row.date,
        status="ok",
        score=row.score,
        band=row.band,
        component_breakdown=row.components or {},
        weights_used=row.weights_used or {},
        signals_available=row.signals_available,
    )
