"""Process-wide session lifecycle.

Keeps the auth session fresh on a fixed interval and routes platform
connectivity changes to the open dashboards.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from .config import settings
from .resilience.connectivity import ConnectionState, ConnectionStatus, ConnectivityMonitor
from .services.auth import AuthService

if TYPE_CHECKING:
    from .dashboard import RestaurantDashboard

logger = logging.getLogger(__name__)


class SessionKeeper:
    """Periodic session refresh plus connectivity fan-out."""

    def __init__(
        self,
        auth_service: AuthService,
        connectivity: Optional[ConnectivityMonitor] = None,
        interval: Optional[float] = None,
    ):
        """Initialize session keeper.

        Args:
            auth_service: Service used to refresh the session
            connectivity: Online/offline monitor to listen to
            interval: Seconds between refreshes. If not provided, uses settings.
        """
        self.auth = auth_service
        self.connectivity = connectivity
        self.interval = settings.session_refresh_interval if interval is None else interval
        self.refresh_count = 0
        self._task: Optional[asyncio.Task] = None
        self._dashboards: list["RestaurantDashboard"] = []
        self._pending: set[asyncio.Future] = set()

        if connectivity is not None:
            connectivity.add_callback(self._on_connectivity_change)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Launch the refresh loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.info(f"Session refresh every {self.interval}s")

    async def stop(self) -> None:
        """Cancel the refresh loop and stop routing connectivity changes."""
        if self.connectivity is not None:
            self.connectivity.remove_callback(self._on_connectivity_change)

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def attach(self, dashboard: "RestaurantDashboard") -> None:
        """Route connectivity changes to a dashboard."""
        if dashboard not in self._dashboards:
            self._dashboards.append(dashboard)
        if self.connectivity is not None and self.connectivity.is_offline:
            dashboard.handle_offline()

    def detach(self, dashboard: "RestaurantDashboard") -> None:
        if dashboard in self._dashboards:
            self._dashboards.remove(dashboard)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.auth.refresh_session()
                self.refresh_count += 1
                logger.debug("Session refreshed")
            except Exception as e:
                logger.warning(f"Session refresh failed: {e}")

    def _on_connectivity_change(self, state: ConnectionState) -> None:
        for dashboard in list(self._dashboards):
            if state.status == ConnectionStatus.OFFLINE:
                dashboard.handle_offline()
            elif state.status == ConnectionStatus.ONLINE:
                future = asyncio.ensure_future(dashboard.handle_online())
                self._pending.add(future)
                future.add_done_callback(self._pending.discard)
