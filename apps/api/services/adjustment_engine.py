"""
Adjustment Engine

Turns the day's readiness and load signals into a decision about the
athlete's next planned session, and records every decision in the
append-only ProgramAdjustment log.

Decision table (first match wins):

    1. readiness low                        -> low_readiness   x0.80
    2. load danger                          -> over_strain     x0.85
    3. readiness high and ACWR < 0.8        -> under_strain    x1.10
    4. readiness high and load optimal      -> high_readiness  x1.05
    5. otherwise                            -> no adjustment

The table is data (ADJUSTMENT_RULES) so its order can be audited and
tested on its own. Low readiness outranks dangerous load; both reduce
load, and the larger reduction is the conservative pick.

Missing signals never trigger a rule: a NO_DATA readiness has no band and
an insufficient_data load band matches nothing. A rule that matches while
one of its required signals is missing is a programming error: raised in
development, converted to "no adjustment" in production.
"""

from copy import deepcopy
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import DecisionInvariantError
from services.load_classifier import (
    LoadBand,
    LoadClassifier,
    LoadResult,
    UNDER_TRAINING_MAX,
)
from services.metric_store import MetricStore
from services.readiness_score import ReadinessBand, ReadinessResult, ReadinessScorer
from services.rolling_aggregator import RollingAggregator
from services.session_store import PlannedSessionData, SessionStore

import logging

logger = logging.getLogger(__name__)


class AdjustmentReason(str, Enum):
    LOW_READINESS = "low_readiness"
    HIGH_READINESS = "high_readiness"
    OVER_STRAIN = "over_strain"
    UNDER_STRAIN = "under_strain"


@dataclass(frozen=True)
class Signals:
    """The inputs a rule may look at."""
    readiness_score: Optional[float]
    readiness_band: Optional[ReadinessBand]
    acwr: Optional[float]
    load_band: LoadBand

    @classmethod
    def from_results(cls, readiness: ReadinessResult, load: LoadResult) -> "Signals":
        return cls(
            readiness_score=readiness.score,
            readiness_band=readiness.band,
            acwr=load.acwr,
            load_band=load.band,
        )

    @property
    def has_readiness(self) -> bool:
        return self.readiness_band is not None

    @property
    def has_load(self) -> bool:
        return self.acwr is not None and self.load_band != LoadBand.INSUFFICIENT_DATA


@dataclass(frozen=True)
class AdjustmentRule:
    reason: AdjustmentReason
    factor: float
    matches: Callable[[Signals], bool]
    requires_readiness: bool = False
    requires_load: bool = False


ADJUSTMENT_RULES: Sequence[AdjustmentRule] = (
    AdjustmentRule(
        reason=AdjustmentReason.LOW_READINESS,
        factor=0.80,
        matches=lambda s: s.readiness_band == ReadinessBand.LOW,
        requires_readiness=True,
    ),
    AdjustmentRule(
        reason=AdjustmentReason.OVER_STRAIN,
        factor=0.85,
        matches=lambda s: s.load_band == LoadBand.DANGER,
        requires_load=True,
    ),
    AdjustmentRule(
        reason=AdjustmentReason.UNDER_STRAIN,
        factor=1.10,
        matches=lambda s: (
            s.readiness_band == ReadinessBand.HIGH
            and s.acwr is not None
            and s.acwr < UNDER_TRAINING_MAX
        ),
        requires_readiness=True,
        requires_load=True,
    ),
    AdjustmentRule(
        reason=AdjustmentReason.HIGH_READINESS,
        factor=1.05,
        matches=lambda s: (
            s.readiness_band == ReadinessBand.HIGH
            and s.load_band == LoadBand.OPTIMAL
        ),
        requires_readiness=True,
        requires_load=True,
    ),
)

# Payload keys scaled by the adjustment factor. Counts (sets, reps) are left alone.
LOAD_BEARING_FIELDS = frozenset({
    "weight",
    "weight_kg",
    "load",
    "planned_load",
    "volume",
    "target_volume",
})


def select_rule(
    signals: Signals,
    rules: Sequence[AdjustmentRule] = ADJUSTMENT_RULES,
) -> Optional[AdjustmentRule]:
    for rule in rules:
        if rule.matches(signals):
            return rule
    return None


def check_rule_signals(rule: AdjustmentRule, signals: Signals) -> None:
    missing = []
    if rule.requires_readiness and not signals.has_readiness:
        missing.append("readiness")
    if rule.requires_load and not signals.has_load:
        missing.append("load")
    if not (signals.has_readiness or signals.has_load):
        missing.append("all signals")
    if missing:
        raise DecisionInvariantError(
            f"Rule {rule.reason.value} matched without {', '.join(missing)}"
        )


def scale_payload(payload: Mapping[str, Any], factor: float) -> Dict[str, Any]:
    """Copy of the payload with every load-bearing number multiplied by factor."""

    def _scale(node: Any, key: Optional[str]) -> Any:
        if isinstance(node, Mapping):
            return {k: _scale(v, k) for k, v in node.items()}
        if isinstance(node, list):
            return [_scale(v, key) for v in node]
        if (
            key in LOAD_BEARING_FIELDS
            and isinstance(node, (int, float))
            and not isinstance(node, bool)
        ):
            return round(node * factor, 2)
        return node

    return _scale(deepcopy(dict(payload)), None)


class AdjustmentEngine:
    """
    Decide on and record session adjustments.

    evaluate() appends a new ProgramAdjustment on every call that selects a
    rule; repeating it with the same signals yields the same reason and
    factor in a new row.
    """

    def __init__(
        self,
        db: Session,
        rules: Sequence[AdjustmentRule] = ADJUSTMENT_RULES,
        fail_closed: Optional[bool] = None,
    ):
        self.db = db
        self.rules = tuple(rules)
        self.fail_closed = settings.is_production if fail_closed is None else fail_closed

    def _signals_for(self, athlete_id: UUID, target_date: date):
        aggregator = RollingAggregator(MetricStore(self.db))
        readiness = ReadinessScorer(aggregator).score(athlete_id, target_date)
        load = LoadClassifier(aggregator).classify(athlete_id, target_date)
        return readiness, load

    def decide(self, readiness: ReadinessResult, load: LoadResult) -> Optional[AdjustmentRule]:
        """Pure decision step. Returns the winning rule, or None for no adjustment."""
        signals = Signals.from_results(readiness, load)
        rule = select_rule(signals, self.rules)
        if rule is None:
            return None

        try:
            check_rule_signals(rule, signals)
        except DecisionInvariantError:
            if not self.fail_closed:
                raise
            logger.error(
                f"Decision invariant violated for {readiness.athlete_id}; "
                f"failing closed (rule={rule.reason.value}, signals={signals})",
                exc_info=True,
            )
            return None
        return rule

    def evaluate(
        self,
        athlete_id: UUID,
        session_id: UUID,
        planned_session: Mapping[str, Any],
        target_date: Optional[date] = None,
        readiness: Optional[ReadinessResult] = None,
        load: Optional[LoadResult] = None,
    ):
        """
        Evaluate a planned session and append an adjustment if a rule fires.

        Args:
            athlete_id: The athlete's UUID
            session_id: The planned session being evaluated
            planned_session: Session payload (prescription) before adjustment
            target_date: Day whose signals drive the decision (default: today)
            readiness, load: Precomputed signals; computed from the store when omitted

        Returns:
            The new ProgramAdjustment row, or None for no adjustment.
        """
        from models import ProgramAdjustment

        target_date = target_date or date.today()
        if readiness is None or load is None:
            computed_readiness, computed_load = self._signals_for(athlete_id, target_date)
            readiness = readiness or computed_readiness
            load = load or computed_load

        rule = self.decide(readiness, load)
        if rule is None:
            logger.info(
                f"No adjustment for session {session_id} (athlete {athlete_id}): "
                f"readiness={readiness.band.value if readiness.band else 'no_data'} "
                f"load={load.band.value}"
            )
            return None

        old_payload = deepcopy(dict(planned_session))
        new_payload = scale_payload(old_payload, rule.factor)

        record = ProgramAdjustment(
            session_id=session_id,
            athlete_id=athlete_id,
            reason=rule.reason.value,
            adjustment_factor=rule.factor,
            old_payload=old_payload,
            new_payload=new_payload,
            readiness_score=readiness.score,
            readiness_band=readiness.band.value if readiness.band else None,
            acwr=load.acwr,
            load_band=load.band.value,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(record)
        self.db.flush()

        logger.info(
            f"Adjusted session {session_id} for {athlete_id}: "
            f"reason={rule.reason.value} factor={rule.factor}"
        )
        return record


# ----------------------------------------------------------------------
# Read side
# ----------------------------------------------------------------------

def adjustment_history(db: Session, session_id: UUID) -> List:
    """All adjustments for a session, newest first."""
    from models import ProgramAdjustment

    return (
        db.query(ProgramAdjustment)
        .filter(ProgramAdjustment.session_id == session_id)
        .order_by(ProgramAdjustment.created_at.desc(), ProgramAdjustment.id.desc())
        .all()
    )


def current_adjustment(db: Session, session_id: UUID):
    """The effective (most recent) adjustment for a session, or None."""
    history = adjustment_history(db, session_id)
    return history[0] if history else None


# ----------------------------------------------------------------------
# Per-athlete pipeline
# ----------------------------------------------------------------------

@dataclass
class PipelineResult:
    athlete_id: UUID
    target_date: date
    readiness: ReadinessResult
    load: LoadResult
    session: Optional[PlannedSessionData] = None
    adjustment: Optional[Any] = None


def run_athlete_pipeline(
    db: Session,
    athlete_id: UUID,
    target_date: date,
    evaluate_session: bool = True,
) -> PipelineResult:
    """
    Score, classify and persist one athlete's day, then evaluate their next session.

    Steps run strictly in order. Flushes but does not commit.
    """
    aggregator = RollingAggregator(MetricStore(db))

    readiness = ReadinessScorer(aggregator).score(athlete_id, target_date)
    ReadinessScorer.persist(readiness, db)

    load = LoadClassifier(aggregator).classify(athlete_id, target_date)
    LoadClassifier.persist(load, db)

    result = PipelineResult(
        athlete_id=athlete_id,
        target_date=target_date,
        readiness=readiness,
        load=load,
    )
    if not evaluate_session:
        return result

    session = SessionStore(db).get_next_planned_session(athlete_id, on_or_after=target_date)
    result.session = session
    if session is None:
        logger.info(f"No planned session for {athlete_id} on or after {target_date}")
        return result

    result.adjustment = AdjustmentEngine(db).evaluate(
        athlete_id=athlete_id,
        session_id=session.id,
        planned_session=session.payload,
        target_date=target_date,
        readiness=readiness,
        load=load,
    )
    return result
