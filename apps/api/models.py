from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, Text, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricSample(Base):
    """
    One biometric or training-load value per athlete, metric type and day.

    Supplied by upstream wearable ingestion and manual check-ins. Writes for
    an existing (athlete, metric_type, date) key overwrite the value.
    """
    __tablename__ = "metric_sample"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), nullable=False)
    metric_type = Column(Text, nullable=False)  # see services.metric_store.MetricType
    date = Column(Date, nullable=False)
    value = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("athlete_id", "metric_type", "date", name="uq_metric_sample_athlete_type_date"),
        Index("ix_metric_sample_athlete_type_date", "athlete_id", "metric_type", "date"),
    )


class DailyReadiness(Base):
    """
    Daily readiness computation result.

    One row per athlete per day; recomputation overwrites. Band is always
    derived from score, never set on its own. Days with no readiness
    signals have no row at all.
    """
    __tablename__ = "daily_readiness"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    date = Column(Date, nullable=False)
    score = Column(Float, nullable=False)                    # 0-100 composite
    band = Column(Text, nullable=False)                      # low | moderate | high
    components = Column(JSONType, nullable=True)             # metric -> weighted contribution
    weights_used = Column(JSONType, nullable=True)           # renormalized weights
    signals_available = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("athlete_id", "date", name="uq_daily_readiness_athlete_date"),
    )


class LoadRecord(Base):
    """
    Acute:chronic workload ratio for one athlete on one day.

    acwr is NULL when chronic load is zero or missing; band is then
    'insufficient_data'.
    """
    __tablename__ = "load_record"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    date = Column(Date, nullable=False)
    daily_load = Column(Float, nullable=True)
    acute_7d = Column(Float, nullable=True)
    chronic_28d = Column(Float, nullable=True)
    acwr = Column(Float, nullable=True)
    band = Column(Text, nullable=False)          # optimal | caution | danger | insufficient_data
    under_training = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("athlete_id", "date", name="uq_load_record_athlete_date"),
    )


class PlannedSession(Base):
    """
    A scheduled strength/conditioning session.

    Owned by the session scheduler; the engine only reads it. The payload
    holds the prescription, e.g.
    {"planned_load": 5200, "exercises": [{"name": "squat", "sets": 5, "reps": 5, "weight": 120}]}.
    """
    __tablename__ = "planned_session"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    status = Column(Text, default="planned", nullable=False)  # planned | active | completed | skipped
    payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_planned_session_athlete_date", "athlete_id", "scheduled_date"),
    )


class ProgramAdjustment(Base):
    """
    Audit log of automatic session scaling decisions.

    Append-only: rows are never updated or deleted. A session may collect
    several rows; the most recent by created_at (then id) is the effective one.
    """
    __tablename__ = "program_adjustment"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid(as_uuid=True), nullable=False)
    athlete_id = Column(Uuid(as_uuid=True), nullable=False)

    reason = Column(Text, nullable=False)  # low_readiness | high_readiness | over_strain | under_strain
    adjustment_factor = Column(Float, nullable=False)

    # Snapshots
    old_payload = Column(JSONType, nullable=False)
    new_payload = Column(JSONType, nullable=False)

    # Signals at decision time
    readiness_score = Column(Float, nullable=True)
    readiness_band = Column(Text, nullable=True)
    acwr = Column(Float, nullable=True)
    load_band = Column(Text, nullable=True)

    # Set in Python so ordering within the same second is preserved.
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_program_adjustment_session_created", "session_id", "created_at"),
        Index("ix_program_adjustment_athlete_id", "athlete_id"),
    )


class LoggedSet(Base):
    """
    A completed set accepted from a device.

    idempotency_key is the client-generated local id; a retried upload with
    the same key resolves to the existing row.
    """
    __tablename__ = "logged_set"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    idempotency_key = Column(Text, nullable=False, unique=True)
    session_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    exercise = Column(Text, nullable=False)
    weight = Column(Float, nullable=False)
    reps = Column(Integer, nullable=False)
    rpe = Column(Float, nullable=True)
    tempo = Column(Text, nullable=True)
    velocity = Column(Float, nullable=True)
    client_created_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
