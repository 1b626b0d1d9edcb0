"""
Tests for the offline set sync queue

Durable capture, flush on reconnect, per-entry failure isolation, restart
recovery, the single-flush guard, and state notifications.
"""

import threading
import time
import pytest
from unittest.mock import MagicMock
from uuid import uuid4

from core.exceptions import PendingSetCaptureError, SetUploadError
from services.set_sync import (
    DurableLocalStorage,
    NetworkMonitor,
    SetAck,
    SetLoggingEndpoint,
    SqlitePendingSetStore,
    SyncQueue,
)


class FakeEndpoint(SetLoggingEndpoint):
    """Records uploads; fails (5xx) or rejects (4xx) the configured exercises."""

    def __init__(self, fail_exercises=(), reject_exercises=(), delay_s=0.0):
        self.fail_exercises = set(fail_exercises)
        self.reject_exercises = set(reject_exercises)
        self.delay_s = delay_s
        self.uploaded = []
        self.attempts = []

    def submit(self, entry):
        self.attempts.append(entry.local_id)
        if self.delay_s:
            time.sleep(self.delay_s)
        if entry.exercise in self.reject_exercises:
            raise SetUploadError("conflict", status_code=409, retryable=False)
        if entry.exercise in self.fail_exercises:
            raise SetUploadError("server error", status_code=503)
        self.uploaded.append(entry)
        return SetAck(idempotency_key=entry.local_id)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pending_sets.db")


@pytest.fixture
def storage(db_path):
    return SqlitePendingSetStore(db_path)


@pytest.fixture
def monitor():
    return NetworkMonitor(health_url="http://sync.test/health", initially_online=False)


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest.fixture
def queue(storage, endpoint, monitor):
    q = SyncQueue(storage, endpoint, monitor, max_concurrency=2)
    q.start()
    yield q
    q.stop()


class TestCapture:

    def test_offline_capture_is_durable_and_not_uploaded(self, queue, storage, endpoint):
        session_id = uuid4()
        entry = queue.capture(session_id, "back squat", 120.0, 5, rpe=8)

        assert endpoint.attempts == []
        stored = storage.list_all()
        assert [e.local_id for e in stored] == [entry.local_id]
        assert stored[0].session_id == str(session_id)
        assert queue.state.pending_count == 1
        assert queue.state.is_online is False

    def test_online_capture_uploads(self, queue, storage, endpoint, monitor):
        monitor.set_online(True)
        entry = queue.capture(uuid4(), "bench press", 80.0, 8)
        queue.drain(timeout=5)

        assert [e.local_id for e in endpoint.uploaded] == [entry.local_id]
        assert storage.count() == 0
        assert queue.state.pending_count == 0

    def test_storage_failure_raises_to_caller(self, endpoint, monitor):
        storage = MagicMock(spec=DurableLocalStorage)
        storage.append.side_effect = OSError("disk full")
        storage.count.return_value = 0
        q = SyncQueue(storage, endpoint, monitor)

        with pytest.raises(PendingSetCaptureError):
            q.capture(uuid4(), "deadlift", 180.0, 3)
        assert q.state.pending_count == 0
        assert endpoint.attempts == []

    def test_flush_errors_do_not_reach_capture_caller(self, endpoint, monitor):
        storage = MagicMock(spec=DurableLocalStorage)
        storage.list_all.side_effect = RuntimeError("corrupt page")
        monitor.set_online(True)
        q = SyncQueue(storage, endpoint, monitor)

        entry = q.capture(uuid4(), "deadlift", 180.0, 3)
        q.drain(timeout=5)

        storage.append.assert_called_once_with(entry)
        assert q.state.pending_count == 1
        q.stop()

    @pytest.mark.parametrize("overrides", [
        {"session_id": "session-7"},
        {"exercise": ""},
        {"weight": -5.0},
        {"reps": -1},
        {"rpe": 11.0},
    ])
    def test_set_the_server_cannot_accept_is_refused(self, queue, storage, endpoint, monitor, overrides):
        values = dict(session_id=uuid4(), exercise="back squat", weight=120.0, reps=5, rpe=8.0)
        values.update(overrides)
        monitor.set_online(True)

        with pytest.raises(PendingSetCaptureError):
            queue.capture(**values)
        queue.drain(timeout=5)

        assert storage.count() == 0
        assert endpoint.attempts == []
        assert queue.state.pending_count == 0

    def test_session_id_string_is_normalized(self, queue, storage):
        session_id = uuid4()
        queue.capture(str(session_id).upper(), "back squat", 120.0, 5)
        assert storage.list_all()[0].session_id == str(session_id)


class TestFlush:

    def test_failed_entry_kept_others_acknowledged(self, queue, storage, endpoint, monitor):
        """Three sets captured offline; on reconnect the second upload fails."""
        endpoint.fail_exercises = {"pull up"}
        session_id = uuid4()
        first = queue.capture(session_id, "back squat", 120.0, 5)
        second = queue.capture(session_id, "pull up", 10.0, 8)
        third = queue.capture(session_id, "lunge", 40.0, 10)

        monitor.set_online(True)
        queue.drain(timeout=5)

        assert endpoint.attempts == [first.local_id, second.local_id, third.local_id]
        assert [e.local_id for e in storage.list_all()] == [second.local_id]
        state = queue.state
        assert state.pending_count == 1
        assert state.failure_count == 1
        assert state.rejected_count == 0
        assert state.is_syncing is False
        assert state.last_flush_at is not None

    def test_failure_is_recorded_on_entry(self, queue, endpoint, monitor):
        endpoint.fail_exercises = {"pull up"}
        entry = queue.capture(uuid4(), "pull up", 10.0, 8)
        monitor.set_online(True)
        queue.drain(timeout=5)
        queue.flush()

        (pending,) = queue.pending_entries()
        assert pending.local_id == entry.local_id
        assert pending.attempt_count == 2
        assert pending.last_attempt_at is not None
        assert "server error" in pending.last_error
        assert pending.rejected is False

    def test_rejected_entry_counted_separately(self, queue, storage, endpoint, monitor):
        endpoint.reject_exercises = {"pull up"}
        endpoint.fail_exercises = {"row"}
        session_id = uuid4()
        rejected = queue.capture(session_id, "pull up", 10.0, 8)
        queue.capture(session_id, "row", 60.0, 10)

        monitor.set_online(True)
        queue.drain(timeout=5)

        state = queue.state
        assert state.pending_count == 2
        assert state.failure_count == 2
        assert state.rejected_count == 1
        flagged = [e.local_id for e in queue.pending_entries() if e.rejected]
        assert flagged == [rejected.local_id]

        # Still retried; clears once the server takes it
        endpoint.reject_exercises = set()
        endpoint.fail_exercises = set()
        result = queue.flush()
        assert result.uploaded == 2
        assert queue.state.rejected_count == 0
        assert storage.count() == 0

    def test_rejected_count_survives_restart(self, db_path, monitor):
        endpoint = FakeEndpoint(reject_exercises={"pull up"})
        first_run = SyncQueue(SqlitePendingSetStore(db_path), endpoint, monitor)
        first_run.capture(uuid4(), "pull up", 10.0, 8)
        monitor.set_online(True)
        result = first_run.flush()
        assert result.rejected == 1

        monitor.set_online(False)
        second_run = SyncQueue(SqlitePendingSetStore(db_path), FakeEndpoint(), monitor)
        second_run.start()
        assert second_run.state.rejected_count == 1
        assert second_run.state.pending_count == 1
        second_run.stop()

    def test_failed_entry_retried_on_next_flush(self, queue, storage, endpoint, monitor):
        endpoint.fail_exercises = {"pull up"}
        entry = queue.capture(uuid4(), "pull up", 10.0, 8)
        monitor.set_online(True)
        queue.drain(timeout=5)
        assert storage.count() == 1

        endpoint.fail_exercises = set()
        result = queue.flush()

        assert result.uploaded == 1
        assert endpoint.attempts == [entry.local_id, entry.local_id]
        assert storage.count() == 0

    def test_same_local_id_used_on_every_attempt(self, queue, endpoint, monitor):
        endpoint.fail_exercises = {"row"}
        entry = queue.capture(uuid4(), "row", 60.0, 10)
        monitor.set_online(True)
        queue.drain(timeout=5)
        queue.flush()
        assert set(endpoint.attempts) == {entry.local_id}
        assert len(endpoint.attempts) == 2

    def test_order_preserved_within_each_session(self, queue, endpoint, monitor):
        a, b = uuid4(), uuid4()
        expected = {str(a): [], str(b): []}
        for i in range(3):
            expected[str(a)].append(queue.capture(a, "squat", 100.0 + i, 5).local_id)
            expected[str(b)].append(queue.capture(b, "press", 50.0 + i, 5).local_id)

        monitor.set_online(True)
        queue.drain(timeout=5)

        for session_id, ids in expected.items():
            uploaded = [e.local_id for e in endpoint.uploaded if e.session_id == session_id]
            assert uploaded == ids

    def test_going_offline_mid_flush_stops_uploads(self, storage, monitor):
        class DisconnectingEndpoint(FakeEndpoint):
            def submit(self, entry):
                ack = super().submit(entry)
                monitor.set_online(False)
                return ack

        endpoint = DisconnectingEndpoint()
        q = SyncQueue(storage, endpoint, monitor, max_concurrency=1)
        session_id = uuid4()
        for reps in (5, 5, 5):
            q.capture(session_id, "squat", 100.0, reps)

        monitor.set_online(True)
        result = q.flush()  # not subscribed; explicit flush
        assert result.uploaded == 1
        assert result.skipped_offline == 2
        assert storage.count() == 2

    def test_flush_while_offline_uploads_nothing(self, queue, endpoint):
        queue.capture(uuid4(), "squat", 100.0, 5)
        result = queue.flush()
        assert result.uploaded == 0
        assert result.skipped_offline == 1
        assert endpoint.attempts == []

    def test_concurrent_flush_is_noop(self, storage, monitor):
        started = threading.Event()
        release = threading.Event()

        class BlockingEndpoint(FakeEndpoint):
            def submit(self, entry):
                started.set()
                release.wait(timeout=5)
                return super().submit(entry)

        endpoint = BlockingEndpoint()
        q = SyncQueue(storage, endpoint, monitor)
        q.capture(uuid4(), "squat", 100.0, 5)
        monitor.set_online(True)

        worker = threading.Thread(target=q.flush)
        worker.start()
        assert started.wait(timeout=5)
        assert q.state.is_syncing is True

        second = q.flush()
        release.set()
        worker.join(timeout=5)

        assert second.skipped is True
        assert len(endpoint.attempts) == 1
        assert storage.count() == 0


class TestBackgroundFlush:

    def test_reconnect_callback_does_not_wait_for_uploads(self, queue, monitor):
        started = threading.Event()
        release = threading.Event()

        class BlockingEndpoint(FakeEndpoint):
            def submit(self, entry):
                started.set()
                release.wait(timeout=5)
                return super().submit(entry)

        queue.endpoint = BlockingEndpoint()
        queue.capture(uuid4(), "squat", 100.0, 5)

        monitor.set_online(True)  # returns while the upload is still blocked
        assert started.wait(timeout=5)
        assert queue.state.is_syncing is True

        release.set()
        queue.drain(timeout=5)
        assert queue.state.pending_count == 0

    def test_polling_monitor_stops_flush_when_connection_drops(self, storage):
        """Health check reports online until the first (slow) upload starts, then offline."""
        endpoint = FakeEndpoint(delay_s=0.2)

        class FlakyMonitor(NetworkMonitor):
            def probe(self):
                return not endpoint.attempts

        monitor = FlakyMonitor(health_url="http://sync.test/health", poll_interval_s=0.02)
        q = SyncQueue(storage, endpoint, monitor, max_concurrency=1)
        session_id = uuid4()
        for reps in range(1, 6):
            q.capture(session_id, "squat", 100.0, reps)
        q.start()

        monitor.start()
        try:
            deadline = time.time() + 5
            while not endpoint.attempts and time.time() < deadline:
                time.sleep(0.01)
            q.drain(timeout=5)
        finally:
            monitor.stop(timeout=5)
            q.stop()

        assert monitor.is_online is False
        assert len(endpoint.attempts) == 1
        assert storage.count() == 5 - len(endpoint.uploaded)
        assert q.state.pending_count == storage.count()


class TestStateListeners:

    def test_listener_sees_capture_and_upload(self, queue, monitor):
        states = []
        queue.subscribe(states.append)

        queue.capture(uuid4(), "squat", 100.0, 5)
        assert states[-1].pending_count == 1

        monitor.set_online(True)
        queue.drain(timeout=5)

        assert any(s.is_syncing for s in states)
        assert states[-1].pending_count == 0
        assert states[-1].is_syncing is False
        assert states[-1].is_online is True

    def test_unsubscribed_listener_not_called(self, queue):
        states = []
        unsubscribe = queue.subscribe(states.append)
        unsubscribe()
        queue.capture(uuid4(), "squat", 100.0, 5)
        assert states == []

    def test_failing_listener_does_not_break_capture(self, queue, storage):
        calls = []

        def broken(state):
            raise RuntimeError("render failed")

        queue.subscribe(broken)
        queue.subscribe(calls.append)

        queue.capture(uuid4(), "squat", 100.0, 5)

        assert storage.count() == 1
        assert calls[-1].pending_count == 1


class TestRestart:

    def test_pending_sets_survive_restart(self, db_path, monitor):
        first_run = SyncQueue(SqlitePendingSetStore(db_path), FakeEndpoint(), monitor)
        first_run.start()
        session_id = uuid4()
        captured = [
            first_run.capture(session_id, "squat", 100.0, 5).local_id,
            first_run.capture(session_id, "squat", 105.0, 5).local_id,
        ]
        first_run.stop()

        endpoint = FakeEndpoint()
        second_run = SyncQueue(SqlitePendingSetStore(db_path), endpoint, monitor)
        second_run.start()
        assert second_run.state.pending_count == 2

        monitor.set_online(True)
        second_run.drain(timeout=5)
        assert endpoint.attempts == captured
        assert second_run.state.pending_count == 0
        second_run.stop()

    def test_start_flushes_when_already_online(self, db_path, monitor):
        storage = SqlitePendingSetStore(db_path)
        offline = SyncQueue(storage, FakeEndpoint(), monitor)
        offline.capture(uuid4(), "squat", 100.0, 5)

        monitor.set_online(True)
        endpoint = FakeEndpoint()
        restarted = SyncQueue(SqlitePendingSetStore(db_path), endpoint, monitor)
        restarted.start()
        restarted.drain(timeout=5)

        assert len(endpoint.uploaded) == 1
        assert restarted.state.pending_count == 0
        restarted.stop()

    def test_stop_unsubscribes(self, queue, endpoint, monitor):
        queue.capture(uuid4(), "squat", 100.0, 5)
        queue.stop()
        monitor.set_online(True)
        queue.drain(timeout=5)
        assert endpoint.attempts == []
