"""
Metrics Router

Upstream ingestion (wearables, manual check-ins) writes samples here;
dashboards read rolling averages.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import ValidationError
from schemas import (
    MetricSampleResponse,
    MetricSampleUpsert,
    RollingAveragesResponse,
    RollingWindowResponse,
)
from services.metric_store import MetricStore, MetricType
from services.rolling_aggregator import STANDARD_WINDOWS, RollingAggregator

router = APIRouter(tags=["Metrics"])

MAX_WINDOW_DAYS = 365


@router.put("/v1/metrics", response_model=MetricSampleResponse)
async def upsert_metric(
    sample: MetricSampleUpsert,
    db: Session = Depends(get_db),
):
    """Write one sample. An existing sample for the same athlete, metric and day is overwritten."""
    row = MetricStore(db).upsert(
        athlete_id=sample.athlete_id,
        metric_type=sample.metric_type,
        sample_date=sample.date,
        value=sample.value,
    )
    return row


@router.get(
    "/v1/athletes/{athlete_id}/metrics/{metric_type}/rolling",
    response_model=RollingAveragesResponse,
)
async def get_rolling_averages(
    athlete_id: UUID,
    metric_type: MetricType,
    as_of: Optional[date] = None,
    windows: Optional[List[int]] = Query(default=None),
    db: Session = Depends(get_db),
):
    """
    Trailing averages ending on as_of (default today).

    Windows default to 7, 28, 30 and 90 days. A window with no samples has
    status "no_data" and a null average.
    """
    as_of = as_of or date.today()
    windows = windows or list(STANDARD_WINDOWS)
    for days in windows:
        if days < 1 or days > MAX_WINDOW_DAYS:
            raise ValidationError(
                f"Window must be between 1 and {MAX_WINDOW_DAYS} days, got {days}",
                field="windows",
            )

    aggregator = RollingAggregator(MetricStore(db))
    results = aggregator.rolling_averages(athlete_id, metric_type, as_of, windows)

    return RollingAveragesResponse(
        athlete_id=athlete_id,
        metric_type=metric_type.value,
        as_of=as_of,
        windows=[
            RollingWindowResponse(
                window_days=w.window_days,
                average=round(w.average, 2) if w.has_data else None,
                sample_count=w.sample_count,
                status="ok" if w.has_data else "no_data",
            )
            for w in results
        ],
    )
