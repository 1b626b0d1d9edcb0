"""
Adjustments Router

Run the daily pipeline for an athlete on demand and read the adjustment
log for a session. The log is append-only; the most recent row is the
effective adjustment.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import NotFoundError
from routers.readiness import readiness_response
from routers.training_load import load_response
from schemas import EvaluateRequest, EvaluateResponse, ProgramAdjustmentResponse
from services.adjustment_engine import (
    adjustment_history,
    current_adjustment,
    run_athlete_pipeline,
)

router = APIRouter(tags=["Adjustments"])


@router.post("/v1/athletes/{athlete_id}/adjustments/evaluate", response_model=EvaluateResponse)
async def evaluate_adjustment(
    athlete_id: UUID,
    request: Optional[EvaluateRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """
    Score readiness, classify load, and evaluate the athlete's next planned session.

    Every call that selects a rule appends a new adjustment row.
    """
    target_date = (request.target_date if request else None) or date.today()
    result = run_athlete_pipeline(db, athlete_id, target_date)

    if result.session is None:
        decision = "no_session"
    elif result.adjustment is None:
        decision = "no_adjustment"
    else:
        decision = "adjusted"

    return EvaluateResponse(
        athlete_id=athlete_id,
        date=target_date,
        readiness=readiness_response(result.readiness),
        load=load_response(result.load),
        session_id=result.session.id if result.session else None,
        decision=decision,
        adjustment=(
            ProgramAdjustmentResponse.model_validate(result.adjustment)
            if result.adjustment else None
        ),
    )


@router.get("/v1/sessions/{session_id}/adjustments", response_model=List[ProgramAdjustmentResponse])
async def list_session_adjustments(
    session_id: UUID,
    db: Session = Depends(get_db),
):
    """All adjustments for a session, newest first."""
    return adjustment_history(db, session_id)


@router.get("/v1/sessions/{session_id}/adjustments/current", response_model=ProgramAdjustmentResponse)
async def get_current_adjustment(
    session_id: UUID,
    db: Session = Depends(get_db),
):
    """The effective adjustment for a session."""
    adjustment = current_adjustment(db, session_id)
    if not adjustment:
        raise NotFoundError("Adjustment", str(session_id))
    return adjustment
