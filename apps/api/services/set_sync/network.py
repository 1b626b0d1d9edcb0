"""
Connectivity monitor for the set sync queue.

Online state comes either from the platform (set_online) or from a
background thread that probes a health URL every poll interval.
Subscribers are called on every transition with the new state.
"""

from typing import Callable, List, Optional
import threading

import requests

from core.config import settings

import logging

logger = logging.getLogger(__name__)

Subscriber = Callable[[bool], None]


class NetworkMonitor:

    def __init__(
        self,
        health_url: Optional[str] = None,
        poll_interval_s: Optional[float] = None,
        probe_timeout_s: Optional[float] = None,
        initially_online: bool = False,
    ):
        self.health_url = health_url or settings.SYNC_HEALTH_URL
        self.poll_interval_s = poll_interval_s or settings.SYNC_POLL_INTERVAL_S
        self.probe_timeout_s = probe_timeout_s or settings.SYNC_PROBE_TIMEOUT_S
        self._online = initially_online
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a transition callback. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def set_online(self, online: bool) -> None:
        """Record the current state and notify subscribers if it changed."""
        with self._lock:
            changed = online != self._online
            self._online = online
            subscribers = list(self._subscribers)

        if not changed:
            return

        logger.info(f"Network {'connected' if online else 'disconnected'}")
        for callback in subscribers:
            try:
                callback(online)
            except Exception as e:
                logger.error(
                    f"Network subscriber {callback!r} failed: {e}",
                    exc_info=True,
                    extra={"extra_fields": {"online": online}},
                )

    def probe(self) -> bool:
        """One reachability check against the health URL."""
        try:
            r = requests.get(self.health_url, timeout=self.probe_timeout_s)
            return r.status_code < 500
        except requests.exceptions.RequestException as e:
            logger.debug(f"Health probe {self.health_url} failed: {e}")
            return False

    def check(self) -> bool:
        online = self.probe()
        self.set_online(online)
        return online

    # ------------------------------------------------------------------
    # Polling thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="network-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.check()
            self._stop_event.wait(self.poll_interval_s)
