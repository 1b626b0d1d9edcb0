"""
Offline-first sync of logged sets.

Wiring for a device process:

    queue = SyncQueue(
        storage=SqlitePendingSetStore(),
        endpoint=HttpSetLoggingEndpoint(),
        monitor=NetworkMonitor(),
    )
    queue.monitor.start()
    queue.start()
    unsubscribe = queue.subscribe(render_sync_badge)
    queue.capture(session_id, "back squat", 120.0, 5, rpe=8)

Uploads run on a background flush thread; `queue.drain()` waits for it.
"""

from services.set_sync.network import NetworkMonitor
from services.set_sync.queue import FlushResult, SyncQueue, SyncState
from services.set_sync.storage import DurableLocalStorage, PendingSetEntry, SqlitePendingSetStore
from services.set_sync.transport import HttpSetLoggingEndpoint, SetAck, SetLoggingEndpoint

__all__ = [
    "DurableLocalStorage",
    "FlushResult",
    "HttpSetLoggingEndpoint",
    "NetworkMonitor",
    "PendingSetEntry",
    "SetAck",
    "SetLoggingEndpoint",
    "SqlitePendingSetStore",
    "SyncQueue",
    "SyncState",
]
