"""
Readiness Score Calculator

Composite 0-100 signal from same-day biometrics, computed daily per athlete.

Architecture:
    same-day samples (HRV, sleep, soreness, jump height)
             ↓
    linear normalization to 0-100 (NORMALIZATION_RANGES), clamped
             ↓
    weighted sum (READINESS_WEIGHTS), renormalized over present components
             ↓
    band: high >= 85, moderate >= 70, low < 70

Missing components are dropped and the remaining weights rescaled to sum
to 1.0. If every component is missing the result carries no score and no
band: a day without data is never reported as a day with a low score.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Mapping, Optional
from uuid import UUID
import math

from sqlalchemy.orm import Session

from services.metric_store import MetricType
from services.rolling_aggregator import RollingAggregator

import logging

logger = logging.getLogger(__name__)


class ReadinessBand(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


HIGH_BAND_MIN = 85.0
MODERATE_BAND_MIN = 70.0


# Component weights. Must sum to 1.0.
READINESS_WEIGHTS: Dict[str, float] = {
    "hrv": 0.30,
    "sleep": 0.30,
    "soreness": 0.20,
    "jump": 0.20,
}

# Which metric feeds each component
COMPONENT_METRICS: Dict[str, MetricType] = {
    "hrv": MetricType.HRV,
    "sleep": MetricType.SLEEP_MINUTES,
    "soreness": MetricType.SORENESS,
    "jump": MetricType.JUMP_HEIGHT,
}


@dataclass(frozen=True)
class NormalizationRange:
    """Linear map of a raw value onto 0-100: floor -> 0, ceiling -> 100 (reversed when inverted)."""
    floor: float
    ceiling: float
    inverted: bool = False

    def normalize(self, value: float) -> float:
        span = self.ceiling - self.floor
        if span <= 0:
            raise ValueError(f"ceiling must exceed floor ({self.floor}, {self.ceiling})")
        if self.inverted:
            score = (self.ceiling - value) / span * 100.0
        else:
            score = (value - self.floor) / span * 100.0
        return max(0.0, min(100.0, score))


NORMALIZATION_RANGES: Dict[str, NormalizationRange] = {
    "hrv": NormalizationRange(floor=20.0, ceiling=60.0),          # rMSSD ms
    "sleep": NormalizationRange(floor=210.0, ceiling=510.0),      # 3.5h - 8.5h
    "soreness": NormalizationRange(floor=0.0, ceiling=10.0, inverted=True),
    "jump": NormalizationRange(floor=25.0, ceiling=75.0),         # cm
}


@dataclass
class ReadinessResult:
    """Result of a daily readiness computation. score/band are None when no component had data."""
    athlete_id: UUID
    target_date: date
    score: Optional[float]
    band: Optional[ReadinessBand]
    raw_values: Dict[str, float] = field(default_factory=dict)
    normalized: Dict[str, float] = field(default_factory=dict)
    component_breakdown: Dict[str, float] = field(default_factory=dict)  # weighted contribution
    weights_used: Dict[str, float] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        return self.score is not None

    @property
    def signals_available(self) -> int:
        return len(self.normalized)


def band_for_score(score: float) -> ReadinessBand:
    """The only place readiness thresholds live."""
    if score >= HIGH_BAND_MIN:
        return ReadinessBand.HIGH
    if score >= MODERATE_BAND_MIN:
        return ReadinessBand.MODERATE
    return ReadinessBand.LOW


def validate_weights(weights: Mapping[str, float]) -> None:
    if any(w < 0 for w in weights.values()):
        raise ValueError(f"Readiness weights must be non-negative: {dict(weights)}")
    total = sum(weights.values())
    if not math.isclose(total, 1.0, abs_tol=1e-6):
        raise ValueError(f"Readiness weights must sum to 1.0, got {total}")


def renormalize_weights(weights: Mapping[str, float], present: set) -> Dict[str, float]:
    """Restrict weights to the present components and rescale them to sum to 1.0."""
    active = {k: w for k, w in weights.items() if k in present}
    total = sum(active.values())
    if total <= 0:
        return {}
    return {k: w / total for k, w in active.items()}


def composite_score(
    normalized: Mapping[str, float],
    weights: Mapping[str, float] = READINESS_WEIGHTS,
) -> Optional[tuple]:
    """
    Weighted composite of already-normalized (0-100) components.

    Returns (score, contributions, weights_used), or None when no component
    with a positive weight is present.
    """
    clamped = {k: max(0.0, min(100.0, float(v))) for k, v in normalized.items()}
    weights_used = renormalize_weights(weights, set(clamped))
    if not weights_used:
        return None

    contributions = {k: clamped[k] * w for k, w in weights_used.items()}
    score = max(0.0, min(100.0, sum(contributions.values())))
    return score, contributions, weights_used


class ReadinessScorer:
    """
    Compute the daily readiness score for an athlete.

    The score is a signal; acting on it is the adjustment engine's job.
    """

    def __init__(
        self,
        aggregator: RollingAggregator,
        weights: Optional[Dict[str, float]] = None,
        ranges: Optional[Dict[str, NormalizationRange]] = None,
    ):
        self.aggregator = aggregator
        self.weights = dict(weights or READINESS_WEIGHTS)
        self.ranges = dict(ranges or NORMALIZATION_RANGES)
        validate_weights(self.weights)
        missing = set(self.weights) - set(self.ranges)
        if missing:
            raise ValueError(f"No normalization range for components: {sorted(missing)}")

    def score(self, athlete_id: UUID, target_date: date) -> ReadinessResult:
        """
        Score an athlete on a given date from that day's samples.

        Args:
            athlete_id: The athlete's UUID
            target_date: Day to score

        Returns:
            ReadinessResult; has_data is False when no component had a sample.
        """
        raw: Dict[str, float] = {}
        normalized: Dict[str, float] = {}

        for component in self.weights:
            metric = COMPONENT_METRICS[component]
            value = self.aggregator.average(athlete_id, metric, target_date, 1)
            if value is None:
                continue
            raw[component] = value
            normalized[component] = self.ranges[component].normalize(value)

        composite = composite_score(normalized, self.weights)
        if composite is None:
            logger.info(f"Readiness {athlete_id} on {target_date}: no components available")
            return ReadinessResult(
                athlete_id=athlete_id,
                target_date=target_date,
                score=None,
                band=None,
                raw_values=raw,
            )

        # Unrounded: rounding first would lift 69.96 into moderate
        score, contributions, weights_used = composite
        band = band_for_score(score)

        logger.info(
            f"Readiness {athlete_id} on {target_date}: score={score:.2f} band={band.value} "
            f"components={len(normalized)}/{len(self.weights)}"
        )

        return ReadinessResult(
            athlete_id=athlete_id,
            target_date=target_date,
            score=score,
            band=band,
            raw_values=raw,
            normalized={k: round(v, 2) for k, v in normalized.items()},
            component_breakdown={k: round(v, 2) for k, v in contributions.items()},
            weights_used={k: round(v, 4) for k, v in weights_used.items()},
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def persist(result: ReadinessResult, db: Session):
        """
        Upsert the result for athlete+date.

        Results without data are not stored. Returns the row, or None.
        """
        from models import DailyReadiness

        if not result.has_data:
            return None

        existing = (
            db.query(DailyReadiness)
            .filter(
                DailyReadiness.athlete_id == result.athlete_id,
                DailyReadiness.date == result.target_date,
            )
            .first()
        )

        if existing:
            existing.score = result.score
            existing.band = result.band.value
            existing.components = result.component_breakdown
            existing.weights_used = result.weights_used
            existing.signals_available = result.signals_available
            record = existing
        else:
            record = DailyReadiness(
                athlete_id=result.athlete_id,
                date=result.target_date,
                score=result.score,
                band=result.band.value,
                components=result.component_breakdown,
                weights_used=result.weights_used,
                signals_available=result.signals_available,
            )
            db.add(record)

        db.flush()
        return record
