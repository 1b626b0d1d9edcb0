from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Dict, Any

from services.metric_store import MetricType


# ============ Metrics ============

class MetricSampleUpsert(BaseModel):
    athlete_id: UUID
    metric_type: MetricType
    date: date
    value: float


class MetricSampleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    athlete_id: UUID
    metric_type: str
    date: date
    value: float


class RollingWindowResponse(BaseModel):
    window_days: int
    average: Optional[float] = None   # None = no samples in window
    sample_count: int
    status: str                       # "ok" | "no_data"


class RollingAveragesResponse(BaseModel):
    athlete_id: UUID
    metric_type: str
    as_of: date
    windows: List[RollingWindowResponse]


# ============ Readiness ============

class ReadinessResponse(BaseModel):
    """status is "no_data" (score and band null) when no component had a sample."""
    athlete_id: UUID
    date: date
    status: str
    score: Optional[float] = None
    band: Optional[str] = None
    component_breakdown: Dict[str, float] = {}
    weights_used: Dict[str, float] = {}
    signals_available: int = 0


# ============ Training load ============

class LoadRecordResponse(BaseModel):
    """status is "no_data" when the ACWR is undefined (band insufficient_data)."""
    athlete_id: UUID
    date: date
    status: str
    daily_load: Optional[float] = None
    acute_7d: Optional[float] = None
    chronic_28d: Optional[float] = None
    acwr: Optional[float] = None
    band: str
    under_training: bool = False


# ============ Adjustments ============

class ProgramAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    athlete_id: UUID
    reason: str
    adjustment_factor: float
    old_payload: Dict[str, Any]
    new_payload: Dict[str, Any]
    readiness_score: Optional[float] = None
    readiness_band: Optional[str] = None
    acwr: Optional[float] = None
    load_band: Optional[str] = None
    created_at: datetime


class EvaluateRequest(BaseModel):
    target_date: Optional[date] = None   # defaults to today


class EvaluateResponse(BaseModel):
    athlete_id: UUID
    date: date
    readiness: ReadinessResponse
    load: LoadRecordResponse
    session_id: Optional[UUID] = None
    decision: str                 # "adjusted" | "no_adjustment" | "no_session"
    adjustment: Optional[ProgramAdjustmentResponse] = None


# ============ Sets ============

class LoggedSetCreate(BaseModel):
    session_id: UUID
    exercise: str = Field(min_length=1)
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)
    rpe: Optional[float] = Field(default=None, ge=0, le=10)
    tempo: Optional[str] = None
    velocity: Optional[float] = None
    created_at: Optional[datetime] = None   # device capture time


class LoggedSetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    idempotency_key: str
    session_id: UUID
    exercise: str
    weight: float
    reps: int
    rpe: Optional[float] = None
    tempo: Optional[str] = None
    velocity: Optional[float] = None
    client_created_at: Optional[datetime] = None
    received_at: datetime
