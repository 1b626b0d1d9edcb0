"""
Offline-first set sync queue.

Entry lifecycle:

    capture() -> durable local storage -> upload -> acknowledged -> removed
                                               |-> failed -> kept, retried next flush

A set exists in local storage until the remote store has accepted it, so
nothing is lost across crashes, restarts or long offline periods. Delivery
is at-least-once; the Idempotency-Key (local_id) makes it effectively
exactly-once on the server.

capture() checks the set against the same schema the server validates
with, so a set the server can never accept is refused up front instead of
sitting in the queue.

Flush triggers:
    - capture() while online
    - offline -> online transition reported by the NetworkMonitor
    - start() while already online
    - explicit flush()

Triggered flushes run on the queue's own flush thread, never on the
caller's or the monitor's thread, so connectivity keeps being tracked
while uploads are in flight. Only one flush runs at a time. Entries are
grouped by session: a session's sets upload one after another in capture
order, different sessions upload concurrently up to SYNC_MAX_CONCURRENCY.

Failures are recorded on the entry (attempt count, last error). Entries
the server rejected outright (4xx) are counted separately in
SyncState.rejected_count; they stay queued like every other entry.
"""

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import threading

from pydantic import ValidationError as SchemaValidationError

from core.config import settings
from core.exceptions import PendingSetCaptureError
from schemas import LoggedSetCreate
from services.set_sync.network import NetworkMonitor
from services.set_sync.storage import DurableLocalStorage, PendingSetEntry
from services.set_sync.transport import SetLoggingEndpoint

import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncState:
    """Snapshot for a sync indicator."""
    is_online: bool
    is_syncing: bool
    pending_count: int
    failure_count: int = 0
    rejected_count: int = 0
    last_flush_at: Optional[datetime] = None


@dataclass
class FlushResult:
    attempted: int = 0
    uploaded: int = 0
    failed: int = 0
    rejected: int = 0           # subset of failed: 4xx, will not succeed unchanged
    skipped_offline: int = 0
    skipped: bool = False      # another flush was already running


@dataclass
class _SessionOutcome:
    attempted: int = 0
    uploaded: int = 0
    failed: int = 0
    rejected: int = 0
    skipped_offline: int = 0


StateListener = Callable[[SyncState], None]


class SyncQueue:

    def __init__(
        self,
        storage: DurableLocalStorage,
        endpoint: SetLoggingEndpoint,
        monitor: NetworkMonitor,
        max_concurrency: Optional[int] = None,
    ):
        self.storage = storage
        self.endpoint = endpoint
        self.monitor = monitor
        self.max_concurrency = max(1, max_concurrency or settings.SYNC_MAX_CONCURRENCY)

        self._flush_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._is_syncing = False
        self._pending_count = 0
        self._failure_count = 0
        self._rejected_count = 0
        self._last_flush_at: Optional[datetime] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: List[StateListener] = []
        self._flush_executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return SyncState(
                is_online=self.monitor.is_online,
                is_syncing=self._is_syncing,
                pending_count=self._pending_count,
                failure_count=self._failure_count,
                rejected_count=self._rejected_count,
                last_flush_at=self._last_flush_at,
            )

    def pending_entries(self) -> List[PendingSetEntry]:
        """Every queued set with its upload bookkeeping, oldest first."""
        return self.storage.list_all()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Call listener with a fresh SyncState whenever the state changes.

        Listeners may be called from the flush threads and must be
        thread-safe. Returns a function that unsubscribes the listener.
        """
        with self._state_lock:
            self._listeners.append(listener)
        return lambda: self._remove_listener(listener)

    def _remove_listener(self, listener: StateListener) -> None:
        with self._state_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self) -> None:
        with self._state_lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snapshot = self.state
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Sync state listener {listener!r} failed: {e}", exc_info=True)

    def _adjust_pending(self, delta: int) -> None:
        with self._state_lock:
            self._pending_count = max(0, self._pending_count + delta)

    def _adjust_rejected(self, delta: int) -> None:
        with self._state_lock:
            self._rejected_count = max(0, self._rejected_count + delta)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Rehydrate from storage, follow connectivity, and flush if online."""
        entries = self.storage.list_all()
        with self._state_lock:
            self._pending_count = len(entries)
            self._rejected_count = sum(1 for e in entries if e.rejected)
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_network_change)

        logger.info(f"Set sync started with {len(entries)} pending sets")
        self._notify()
        if self.monitor.is_online:
            self._schedule_flush()

    def stop(self) -> None:
        """Stop following connectivity and wait for a running flush to end."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._executor_lock:
            executor, self._flush_executor = self._flush_executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every flush scheduled so far has finished."""
        with self._executor_lock:
            executor = self._flush_executor
        if executor is not None:
            # Single worker: a no-op queued now runs after everything before it
            executor.submit(lambda: None).result(timeout=timeout)

    def _on_network_change(self, online: bool) -> None:
        self._notify()
        if online:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        with self._executor_lock:
            if self._flush_executor is None:
                self._flush_executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="set-sync-flush"
                )
            self._flush_executor.submit(self._flush_quietly)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(
        self,
        session_id: str,
        exercise: str,
        weight: float,
        reps: int,
        rpe: Optional[float] = None,
        tempo: Optional[str] = None,
        velocity: Optional[float] = None,
    ) -> PendingSetEntry:
        """
        Durably record a completed set, then schedule an upload if online.

        Raises:
            PendingSetCaptureError: the set is not one the server accepts, or
                local storage rejected the write. The set was not recorded
                and the caller must surface that.
        """
        try:
            validated = LoggedSetCreate(
                session_id=session_id,
                exercise=exercise,
                weight=weight,
                reps=reps,
                rpe=rpe,
                tempo=tempo,
                velocity=velocity,
            )
        except SchemaValidationError as e:
            logger.warning(
                f"Refused invalid set for session {session_id}: {e.error_count()} errors",
                extra={"extra_fields": {
                    "session_id": str(session_id),
                    "errors": e.errors(include_url=False, include_input=False),
                }},
            )
            raise PendingSetCaptureError(f"Set is not valid: {e}") from e

        entry = PendingSetEntry(
            session_id=str(validated.session_id),
            exercise=validated.exercise,
            weight=validated.weight,
            reps=validated.reps,
            rpe=validated.rpe,
            tempo=validated.tempo,
            velocity=validated.velocity,
        )
        try:
            self.storage.append(entry)
        except Exception as e:
            logger.error(f"Failed to store set for session {session_id}: {e}", exc_info=True)
            raise PendingSetCaptureError(f"Could not store set locally: {e}") from e

        self._adjust_pending(1)
        self._notify()

        if self.monitor.is_online:
            self._schedule_flush()
        return entry

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def _flush_quietly(self) -> None:
        # Background triggers must not fail the capture or the monitor
        try:
            self.flush()
        except Exception as e:
            logger.error(f"Set sync flush failed: {e}", exc_info=True)

    def flush(self) -> FlushResult:
        """Upload every pending entry. A flush requested while one is running is a no-op."""
        if not self._flush_lock.acquire(blocking=False):
            logger.debug("Set sync flush already running, skipping")
            return FlushResult(skipped=True)

        try:
            with self._state_lock:
                self._is_syncing = True
            self._notify()

            entries = self.storage.list_all()
            result = FlushResult()
            if not entries:
                return result

            if not self.monitor.is_online:
                result.skipped_offline = len(entries)
                return result

            groups: Dict[str, List[PendingSetEntry]] = OrderedDict()
            for entry in entries:
                groups.setdefault(entry.session_id, []).append(entry)

            workers = min(self.max_concurrency, len(groups))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(self._flush_session, groups.values()))

            for outcome in outcomes:
                result.attempted += outcome.attempted
                result.uploaded += outcome.uploaded
                result.failed += outcome.failed
                result.rejected += outcome.rejected
                result.skipped_offline += outcome.skipped_offline

            logger.info(
                f"Set sync flush: uploaded={result.uploaded} failed={result.failed} "
                f"rejected={result.rejected} skipped_offline={result.skipped_offline}"
            )
            return result
        finally:
            with self._state_lock:
                self._is_syncing = False
                self._last_flush_at = datetime.now(timezone.utc)
            self._flush_lock.release()
            self._notify()

    def _flush_session(self, entries: List[PendingSetEntry]) -> _SessionOutcome:
        outcome = _SessionOutcome()

        for index, entry in enumerate(entries):
            if not self.monitor.is_online:
                outcome.skipped_offline = len(entries) - index
                logger.info(
                    f"Went offline during flush; {outcome.skipped_offline} sets for "
                    f"session {entry.session_id} left pending"
                )
                break

            outcome.attempted += 1
            try:
                ack = self.endpoint.submit(entry)
                self.storage.remove(entry.local_id)
            except Exception as e:
                self._record_failure(entry, e, outcome)
                self._notify()
                continue

            outcome.uploaded += 1
            self._adjust_pending(-1)
            if entry.rejected:
                self._adjust_rejected(-1)
            self._notify()
            logger.debug(f"Set {entry.local_id} acknowledged (created={ack.created})")

        return outcome

    def _record_failure(self, entry: PendingSetEntry, error: Exception, outcome: _SessionOutcome) -> None:
        rejected = not getattr(error, "retryable", True)
        outcome.failed += 1
        if rejected:
            outcome.rejected += 1
        with self._state_lock:
            self._failure_count += 1
        if rejected != entry.rejected:
            self._adjust_rejected(1 if rejected else -1)

        log = logger.error if rejected else logger.warning
        log(
            f"Set upload {entry.local_id} {'rejected' if rejected else 'failed'}, keeping it pending: {error}",
            extra={"extra_fields": {
                "local_id": entry.local_id,
                "session_id": entry.session_id,
                "attempt": entry.attempt_count + 1,
                "retryable": not rejected,
            }},
        )
        try:
            self.storage.record_failure(
                entry.local_id,
                error=str(error),
                rejected=rejected,
                attempted_at=datetime.now(timezone.utc),
            )
        except Exception as e:
            logger.error(f"Could not record failure for set {entry.local_id}: {e}", exc_info=True)
