"""Edge-triggered connection status for one monitored device."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

STATUS_EVENT = "battery-monitor-status"

Emitter = Callable[[str, dict[str, Any]], None]


class ConnectionStateAggregator:
    """Collapses per-worker up/down reports into device-level transitions.

    The lock only covers the set update and the edge check. Emission happens
    after it is released.
    """

    def __init__(self, device_id: str, emitter: Emitter) -> None:
        self.device_id = device_id
        self._emit = emitter
        self._lock = threading.Lock()
        self._connected: set[str] = set()
        self._previous = False

    @property
    def connected(self) -> bool:
        return self._previous

    def update(self, worker_id: str, connected: bool) -> bool:
        """Record a worker edge; returns True when a status event was emitted."""

        with self._lock:
            if connected:
                self._connected.add(worker_id)
            else:
                self._connected.discard(worker_id)
            changed = self._swap(bool(self._connected))
        return self._publish(changed)

    def announce(self, connected: bool) -> bool:
        """Publish a device-level state under the same edge rule as ``update``."""

        with self._lock:
            changed = self._swap(connected)
        return self._publish(changed)

    def _swap(self, value: bool) -> Optional[bool]:
        if value == self._previous:
            return None
        self._previous = value
        return value

    def _publish(self, changed: Optional[bool]) -> bool:
        if changed is None:
            return False
        logger.info("Monitor %s %s", self.device_id, "connected" if changed else "disconnected")
        self._emit(STATUS_EVENT, {"id": self.device_id, "connected": changed})
        return True
