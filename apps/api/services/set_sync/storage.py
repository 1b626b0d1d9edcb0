"""
Durable local storage for pending sets.

A completed set is written here before any network attempt and removed
only after the remote store acknowledges it. Entries never expire.

Failed uploads are recorded on the entry (attempt count, last error, and
whether the server rejected it outright) so a sync details view can show
why a set is still pending.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    literal_column,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


@dataclass(frozen=True)
class PendingSetEntry:
    """A captured set awaiting upload. local_id doubles as the idempotency key."""
    session_id: str
    exercise: str
    weight: float
    reps: int
    rpe: Optional[float] = None
    tempo: Optional[str] = None
    velocity: Optional[float] = None
    local_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Upload bookkeeping, never sent to the server
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    rejected: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the set-logging endpoint."""
        data = asdict(self)
        for name in _LOCAL_ONLY_FIELDS:
            data.pop(name)
        data["created_at"] = self.created_at.isoformat()
        return data


_LOCAL_ONLY_FIELDS = ("local_id", "attempt_count", "last_attempt_at", "last_error", "rejected")


class DurableLocalStorage(ABC):
    """
    Storage that survives process restarts.

    Implementations must have written the entry durably when append()
    returns, and must raise when they cannot.
    """

    @abstractmethod
    def append(self, entry: PendingSetEntry) -> None:
        pass

    @abstractmethod
    def remove(self, local_id: str) -> None:
        pass

    @abstractmethod
    def list_all(self) -> List[PendingSetEntry]:
        """All entries in created_at order."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def record_failure(
        self,
        local_id: str,
        error: str,
        rejected: bool,
        attempted_at: datetime,
    ) -> None:
        """Bump the attempt count and remember the latest failure."""
        pass


metadata = MetaData()

pending_sets = Table(
    "pending_sets",
    metadata,
    Column("local_id", Text, primary_key=True),
    Column("session_id", Text, nullable=False),
    Column("exercise", Text, nullable=False),
    Column("weight", Float, nullable=False),
    Column("reps", Integer, nullable=False),
    Column("rpe", Float, nullable=True),
    Column("tempo", Text, nullable=True),
    Column("velocity", Float, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("last_attempt_at", DateTime(timezone=True), nullable=True),
    Column("last_error", Text, nullable=True),
    Column("rejected", Boolean, nullable=False, default=False),
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlitePendingSetStore(DurableLocalStorage):
    """
    Pending sets in an embedded SQLite file.

    Pass ":memory:" for a process-local store (tests).
    """

    def __init__(self, path: str = None, engine: Optional[Engine] = None):
        if engine is None:
            from core.config import settings

            path = path or settings.SYNC_LOCAL_DB_PATH
            if path == ":memory:":
                engine = create_engine(
                    "sqlite://",
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                engine = create_engine(
                    f"sqlite:///{path}",
                    connect_args={"check_same_thread": False},
                )
        self.engine = engine
        metadata.create_all(self.engine)

    def append(self, entry: PendingSetEntry) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(pending_sets).values(
                    local_id=entry.local_id,
                    session_id=entry.session_id,
                    exercise=entry.exercise,
                    weight=entry.weight,
                    reps=entry.reps,
                    rpe=entry.rpe,
                    tempo=entry.tempo,
                    velocity=entry.velocity,
                    created_at=entry.created_at,
                    attempt_count=entry.attempt_count,
                    last_attempt_at=entry.last_attempt_at,
                    last_error=entry.last_error,
                    rejected=entry.rejected,
                )
            )

    def remove(self, local_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(pending_sets).where(pending_sets.c.local_id == local_id))

    def record_failure(
        self,
        local_id: str,
        error: str,
        rejected: bool,
        attempted_at: datetime,
    ) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(pending_sets)
                .where(pending_sets.c.local_id == local_id)
                .values(
                    attempt_count=pending_sets.c.attempt_count + 1,
                    last_attempt_at=attempted_at,
                    last_error=error[:500],
                    rejected=rejected,
                )
            )

    def list_all(self) -> List[PendingSetEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(pending_sets).order_by(
                    pending_sets.c.created_at, literal_column("rowid")
                )
            ).mappings().all()

        return [
            PendingSetEntry(
                local_id=row["local_id"],
                session_id=row["session_id"],
                exercise=row["exercise"],
                weight=row["weight"],
                reps=row["reps"],
                rpe=row["rpe"],
                tempo=row["tempo"],
                velocity=row["velocity"],
                created_at=_as_utc(row["created_at"]),
                attempt_count=row["attempt_count"],
                last_attempt_at=_as_utc(row["last_attempt_at"]),
                last_error=row["last_error"],
                rejected=bool(row["rejected"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(pending_sets)).scalar_one()
