"""Online/offline signal tracking.

The platform (browser shell, OS hook, test harness) reports connectivity
changes through set_online() and set_offline(). Interested parties register
callbacks and are told about status transitions only.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Connection status states."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"  # No signal received yet


@dataclass
class ConnectionState:
    """Current connection state with metadata."""

    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_change: Optional[datetime] = None
    last_online: Optional[datetime] = None
    offline_events: int = 0


class ConnectivityMonitor:
    """Tracks the platform online/offline signal.

    Usage:
        monitor = ConnectivityMonitor()
        monitor.add_callback(on_change)
        monitor.set_offline()  # on_change(state) fires
        monitor.set_offline()  # no transition, no callback
    """

    def __init__(self):
        self._state = ConnectionState()
        self._callbacks: list[Callable[[ConnectionState], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Unknown counts as online until told otherwise."""
        return self._state.status != ConnectionStatus.OFFLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    def add_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for status transitions."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Unregister a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def set_online(self) -> None:
        """Platform reports connectivity restored."""
        now = datetime.now(timezone.utc)
        self._state.last_online = now
        self._transition(ConnectionStatus.ONLINE, now)

    def set_offline(self) -> None:
        """Platform reports connectivity lost."""
        self._transition(ConnectionStatus.OFFLINE, datetime.now(timezone.utc))

    def _transition(self, status: ConnectionStatus, when: datetime) -> None:
        old_status = self._state.status
        if old_status == status:
            return

        self._state.status = status
        self._state.last_change = when
        if status == ConnectionStatus.OFFLINE:
            self._state.offline_events += 1

        logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
        self._notify_callbacks()

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}")
