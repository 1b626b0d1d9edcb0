"""
Set Logging Receiver

Server side of the offline set sync. Devices replay pending sets with the
client-generated local id as idempotency key; a replay of an already
accepted set returns the original row instead of creating a duplicate.
"""

from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError
from models import LoggedSet

import logging

logger = logging.getLogger(__name__)

# Fields that must match for a replay to count as the same set
_COMPARED_FIELDS = ("session_id", "exercise", "weight", "reps", "rpe", "tempo", "velocity")


def _same_set(existing: LoggedSet, incoming: dict) -> bool:
    for name in _COMPARED_FIELDS:
        current = getattr(existing, name)
        new = incoming[name]
        if isinstance(current, float) or isinstance(new, float):
            if current is None or new is None:
                if current is not new:
                    return False
            elif abs(float(current) - float(new)) > 1e-9:
                return False
        elif current != new:
            return False
    return True


def get_by_idempotency_key(db: Session, idempotency_key: str) -> Optional[LoggedSet]:
    return db.query(LoggedSet).filter(LoggedSet.idempotency_key == idempotency_key).first()


def record_set(
    db: Session,
    idempotency_key: str,
    session_id: UUID,
    exercise: str,
    weight: float,
    reps: int,
    rpe: Optional[float] = None,
    tempo: Optional[str] = None,
    velocity: Optional[float] = None,
    client_created_at: Optional[datetime] = None,
) -> Tuple[LoggedSet, bool]:
    """
    Accept a completed set exactly once per idempotency key.

    Returns:
        (row, created). created is False when the key was already accepted
        with the same payload.

    Raises:
        ConflictError: the key was already used for a different set.
    """
    incoming = {
        "session_id": session_id,
        "exercise": exercise,
        "weight": weight,
        "reps": reps,
        "rpe": rpe,
        "tempo": tempo,
        "velocity": velocity,
    }

    existing = get_by_idempotency_key(db, idempotency_key)
    if existing:
        if not _same_set(existing, incoming):
            raise ConflictError(
                f"Idempotency key {idempotency_key} already used for a different set"
            )
        logger.info(f"Set replay {idempotency_key} resolved to {existing.id}")
        return existing, False

    row = LoggedSet(
        idempotency_key=idempotency_key,
        client_created_at=client_created_at,
        **incoming,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent upload of the same key
        db.rollback()
        existing = get_by_idempotency_key(db, idempotency_key)
        if existing is None:
            raise
        if not _same_set(existing, incoming):
            raise ConflictError(
                f"Idempotency key {idempotency_key} already used for a different set"
            )
        return existing, False

    logger.info(f"Logged set {row.id} ({exercise} {weight}x{reps}) for session {session_id}")
    return row, True
