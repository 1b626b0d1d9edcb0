"""
Session Store

Read access to planned sessions owned by the session scheduler.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import PlannedSession

# Sessions in these states can still be scaled
ADJUSTABLE_STATUSES = ("planned", "active")


@dataclass(frozen=True)
class PlannedSessionData:
    id: UUID
    athlete_id: UUID
    scheduled_date: date
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)


class SessionStore:

    def __init__(self, db: Session):
        self.db = db

    def get_next_planned_session(
        self,
        athlete_id: UUID,
        on_or_after: Optional[date] = None,
    ) -> Optional[PlannedSessionData]:
        """Earliest adjustable session scheduled on or after the given date."""
        on_or_after = on_or_after or date.today()
        row = (
            self.db.query(PlannedSession)
            .filter(
                PlannedSession.athlete_id == athlete_id,
                PlannedSession.scheduled_date >= on_or_after,
                PlannedSession.status.in_(ADJUSTABLE_STATUSES),
            )
            .order_by(PlannedSession.scheduled_date, PlannedSession.created_at)
            .first()
        )
        if not row:
            return None
        return PlannedSessionData(
            id=row.id,
            athlete_id=row.athlete_id,
            scheduled_date=row.scheduled_date,
            status=row.status,
            payload=dict(row.payload or {}),
        )
