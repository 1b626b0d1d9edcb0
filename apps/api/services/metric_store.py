"""
Metric Store

Per-athlete, per-day, per-metric samples. The single read/write surface the
engine uses for biometric and training-load inputs.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Union
from uuid import UUID

from sqlalchemy.orm import Session

from models import MetricSample

import logging

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    """Metric types accepted from upstream ingestion."""
    HRV = "hrv"                        # rMSSD, ms
    RESTING_HR = "resting_hr"          # bpm
    SLEEP_MINUTES = "sleep_minutes"    # total sleep, minutes
    SORENESS = "soreness"              # 0 (none) - 10 (worst)
    JUMP_HEIGHT = "jump_height"        # countermovement jump, cm
    TRAINING_LOAD = "training_load"    # daily load, arbitrary units (e.g. sRPE x minutes)


@dataclass(frozen=True)
class MetricValue:
    """A sample as seen by the engine (decoupled from the ORM row)."""
    athlete_id: UUID
    metric_type: MetricType
    date: date
    value: float


def _metric_key(metric_type: Union[MetricType, str]) -> str:
    return MetricType(metric_type).value


class MetricStore:
    """SQL-backed metric store. Upsert is the only mutation."""

    def __init__(self, db: Session):
        self.db = db

    def read(
        self,
        athlete_id: UUID,
        metric_type: Union[MetricType, str],
        start_date: date,
        end_date: date,
    ) -> List[MetricValue]:
        """Samples in [start_date, end_date] inclusive, oldest first."""
        key = _metric_key(metric_type)
        rows = (
            self.db.query(MetricSample)
            .filter(
                MetricSample.athlete_id == athlete_id,
                MetricSample.metric_type == key,
                MetricSample.date >= start_date,
                MetricSample.date <= end_date,
            )
            .order_by(MetricSample.date)
            .all()
        )
        return [
            MetricValue(
                athlete_id=row.athlete_id,
                metric_type=MetricType(row.metric_type),
                date=row.date,
                value=float(row.value),
            )
            for row in rows
        ]

    def upsert(
        self,
        athlete_id: UUID,
        metric_type: Union[MetricType, str],
        sample_date: date,
        value: float,
    ) -> MetricSample:
        """
        Write a sample; an existing row for the same key is overwritten.

        Flushes but does not commit, the caller owns the transaction.
        """
        key = _metric_key(metric_type)
        existing = (
            self.db.query(MetricSample)
            .filter(
                MetricSample.athlete_id == athlete_id,
                MetricSample.metric_type == key,
                MetricSample.date == sample_date,
            )
            .first()
        )

        if existing:
            existing.value = float(value)
            row = existing
        else:
            row = MetricSample(
                athlete_id=athlete_id,
                metric_type=key,
                date=sample_date,
                value=float(value),
            )
            self.db.add(row)

        self.db.flush()
        logger.debug(f"Upserted {key}={value} for {athlete_id} on {sample_date}")
        return row

    def athletes_with_samples(self, start_date: date, end_date: date) -> List[UUID]:
        """Distinct athletes with any sample in the date range."""
        rows = (
            self.db.query(MetricSample.athlete_id)
            .filter(
                MetricSample.date >= start_date,
                MetricSample.date <= end_date,
            )
            .distinct()
            .all()
        )
        return [r[0] for r in rows]
