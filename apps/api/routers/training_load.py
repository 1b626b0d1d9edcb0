"""
Training Load Router

Exposes the acute:chronic workload ratio:
- Classify and store a day
- Read a stored day
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import NotFoundError
from models import LoadRecord
from schemas import LoadRecordResponse
from services.load_classifier import LoadBand, LoadClassifier, LoadResult
from services.metric_store import MetricStore
from services.rolling_aggregator import RollingAggregator

router = APIRouter(prefix="/v1/athletes/{athlete_id}/training-load", tags=["Training Load"])


def load_response(result: LoadResult) -> LoadRecordResponse:
    return LoadRecordResponse(
        athlete_id=result.athlete_id,
        date=result.target_date,
        status="ok" if result.has_data else "no_data",
        daily_load=result.daily_load,
        acute_7d=result.acute_7d,
        chronic_28d=result.chronic_28d,
        acwr=round(result.acwr, 3) if result.acwr is not None else None,
        band=result.band.value,
        under_training=result.under_training,
    )


@router.post("/{target_date}", response_model=LoadRecordResponse)
async def classify_training_load(
    athlete_id: UUID,
    target_date: date,
    db: Session = Depends(get_db),
):
    """
    Compute ACWR for a day and store it.

    - optimal: 0.8 - 1.3 (below 0.8 is also flagged under_training)
    - caution: above 1.3 up to 1.5
    - danger: above 1.5
    - insufficient_data: no chronic load yet (status "no_data")
    """
    result = LoadClassifier(RollingAggregator(MetricStore(db))).classify(athlete_id, target_date)
    LoadClassifier.persist(result, db)
    return load_response(result)


@router.get("/{target_date}", response_model=LoadRecordResponse)
async def get_training_load(
    athlete_id: UUID,
    target_date: date,
    db: Session = Depends(get_db),
):
    """Stored load record for a day."""
    row = (
        db.query(LoadRecord)
        .filter(
            LoadRecord.athlete_id == athlete_id,
            LoadRecord.date == target_date,
        )
        .first()
    )
    if not row:
        raise NotFoundError("Training load", f"{athlete_id} on {target_date}")

    return LoadRecordResponse(
        athlete_id=row.athlete_id,
        date=row.date,
        status="no_data" if row.band == LoadBand.INSUFFICIENT_DATA.value else "ok",
        daily_load=row.daily_load,
        acute_7d=row.acute_7d,
        chronic_28d=row.chronic_28d,
        acwr=round(row.acwr, 3) if row.acwr is not None else None,
        band=row.band,
        under_training=row.under_training,
    )
