"""
Load Classifier

Acute:chronic workload ratio (ACWR) and its risk band.

    acute   = mean daily training load over the trailing 7 days
    chronic = mean daily training load over the trailing 28 days
    ACWR    = acute / chronic

Bands (risk):
    0.8 <= ACWR <= 1.3   optimal
    1.3 <  ACWR <= 1.5   caution
    ACWR > 1.5           danger
    ACWR < 0.8           optimal for risk purposes, flagged under_training

When chronic load is zero or missing (or acute load is missing) the ratio
is undefined and the band is insufficient_data. That band means "no
signal", never "danger".
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from services.metric_store import MetricType
from services.rolling_aggregator import (
    ACUTE_WINDOW_DAYS,
    CHRONIC_WINDOW_DAYS,
    RollingAggregator,
)

import logging

logger = logging.getLogger(__name__)


class LoadBand(str, Enum):
    OPTIMAL = "optimal"
    CAUTION = "caution"
    DANGER = "danger"
    INSUFFICIENT_DATA = "insufficient_data"


UNDER_TRAINING_MAX = 0.8      # ratio below this = under-training
OPTIMAL_MAX = 1.3             # inclusive
CAUTION_MAX = 1.5             # inclusive; above = danger


@dataclass
class LoadResult:
    athlete_id: UUID
    target_date: date
    daily_load: Optional[float]
    acute_7d: Optional[float]
    chronic_28d: Optional[float]
    acwr: Optional[float]
    band: LoadBand

    @property
    def has_data(self) -> bool:
        return self.acwr is not None

    @property
    def under_training(self) -> bool:
        return is_under_training(self.acwr)


def compute_acwr(acute: Optional[float], chronic: Optional[float]) -> Optional[float]:
    """acute / chronic, or None when either side is missing or chronic is zero."""
    if acute is None or chronic is None or chronic == 0:
        return None
    return acute / chronic


def band_for_acwr(acwr: Optional[float]) -> LoadBand:
    """The only place ACWR thresholds live."""
    if acwr is None:
        return LoadBand.INSUFFICIENT_DATA
    if acwr > CAUTION_MAX:
        return LoadBand.DANGER
    if acwr > OPTIMAL_MAX:
        return LoadBand.CAUTION
    return LoadBand.OPTIMAL


def is_under_training(acwr: Optional[float]) -> bool:
    return acwr is not None and acwr < UNDER_TRAINING_MAX


class LoadClassifier:

    def __init__(self, aggregator: RollingAggregator):
        self.aggregator = aggregator

    def classify(self, athlete_id: UUID, target_date: date) -> LoadResult:
        acute = self.aggregator.average(
            athlete_id, MetricType.TRAINING_LOAD, target_date, ACUTE_WINDOW_DAYS
        )
        chronic = self.aggregator.average(
            athlete_id, MetricType.TRAINING_LOAD, target_date, CHRONIC_WINDOW_DAYS
        )
        daily = self.aggregator.average(
            athlete_id, MetricType.TRAINING_LOAD, target_date, 1
        )

        acwr = compute_acwr(acute, chronic)
        band = band_for_acwr(acwr)

        if acwr is None:
            logger.info(
                f"ACWR {athlete_id} on {target_date}: insufficient data "
                f"(acute={acute}, chronic={chronic})"
            )
        else:
            logger.info(
                f"ACWR {athlete_id} on {target_date}: {acwr:.3f} band={band.value}"
                + (" under_training" if is_under_training(acwr) else "")
            )

        return LoadResult(
            athlete_id=athlete_id,
            target_date=target_date,
            daily_load=daily,
            acute_7d=acute,
            chronic_28d=chronic,
            acwr=acwr,
            band=band,
        )

    @staticmethod
    def persist(result: LoadResult, db: Session):
        """Upsert the load record for athlete+date, including insufficient-data days."""
        from models import LoadRecord

        existing = (
            db.query(LoadRecord)
            .filter(
                LoadRecord.athlete_id == result.athlete_id,
                LoadRecord.date == result.target_date,
            )
            .first()
        )

        values = {
            "daily_load": result.daily_load,
            "acute_7d": result.acute_7d,
            "chronic_28d": result.chronic_28d,
            "acwr": result.acwr,
            "band": result.band.value,
            "under_training": result.under_training,
        }

        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            record = existing
        else:
            record = LoadRecord(
                athlete_id=result.athlete_id,
                date=result.target_date,
                **values,
            )
            db.add(record)

        db.flush()
        return record
