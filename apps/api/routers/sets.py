"""
Set Logging Router

Receives completed sets replayed by the device sync queue. The
Idempotency-Key header (the device's local id) makes retries safe:

- 201: set accepted
- 200: replay of an already accepted set, original row returned
- 409: key already used for a different set
"""

from fastapi import APIRouter, Depends, Header, Response, status
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import ValidationError
from schemas import LoggedSetCreate, LoggedSetResponse
from services.set_logging import record_set

router = APIRouter(prefix="/v1/sets", tags=["Sets"])


@router.post("", response_model=LoggedSetResponse, status_code=status.HTTP_201_CREATED)
async def log_set(
    payload: LoggedSetCreate,
    response: Response,
    idempotency_key: str = Header(..., alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    key = idempotency_key.strip()
    if not key or len(key) > 128:
        raise ValidationError("Idempotency-Key must be 1-128 characters", field="idempotency_key")

    row, created = record_set(
        db,
        idempotency_key=key,
        session_id=payload.session_id,
        exercise=payload.exercise,
        weight=payload.weight,
        reps=payload.reps,
        rpe=payload.rpe,
        tempo=payload.tempo,
        velocity=payload.velocity,
        client_created_at=payload.created_at,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return row
