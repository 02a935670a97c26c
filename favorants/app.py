"""Application root wiring services, session keeper and dashboards."""

import logging
from typing import Any, Optional

from .backend import RemoteDataAccess
from .dashboard import RestaurantDashboard
from .geocoding import GeocodingClient
from .resilience.connectivity import ConnectivityMonitor
from .resilience.retry import RetryConfig
from .services import Services
from .session import SessionKeeper

logger = logging.getLogger(__name__)


class FavorantsApp:
    """Owns the shared services and every open dashboard."""

    def __init__(
        self,
        backend: RemoteDataAccess,
        geocoder: Optional[GeocodingClient] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        retry_config: Optional[RetryConfig] = None,
        session_interval: Optional[float] = None,
    ):
        """Initialize application.

        Args:
            backend: Remote data access layer
            geocoder: Geocoding client for restaurant approval
            connectivity: Online/offline monitor. If not provided, one is created.
            retry_config: Retry policy shared by all services
            session_interval: Seconds between session refreshes
        """
        self.backend = backend
        self.geocoder = geocoder
        self.connectivity = connectivity or ConnectivityMonitor()
        self.services = Services.create(backend, geocoder, retry_config, self.connectivity)
        self.session = SessionKeeper(self.services.auth, self.connectivity, session_interval)
        self.dashboards: list[RestaurantDashboard] = []

    @classmethod
    async def connect(cls, url: Optional[str] = None, key: Optional[str] = None) -> "FavorantsApp":
        """Connect to the configured backend with a default geocoder."""
        backend = await RemoteDataAccess.connect(url, key)
        connectivity = ConnectivityMonitor()
        geocoder = GeocodingClient(connectivity=connectivity)
        return cls(backend, geocoder=geocoder, connectivity=connectivity)

    def start(self) -> None:
        self.session.start()

    async def stop(self) -> None:
        """Close every dashboard and stop background work."""
        for dashboard in list(self.dashboards):
            await self.close_dashboard(dashboard)
        await self.session.stop()
        if self.geocoder is not None:
            await self.geocoder.close()
        logger.info("Favorants stopped")

    async def open_dashboard(self, viewer_id: Any, owner_id: Optional[Any] = None) -> RestaurantDashboard:
        """Create, load and track a dashboard.

        Args:
            viewer_id: Signed-in user
            owner_id: User whose list to show. Defaults to the viewer.
        """
        dashboard = RestaurantDashboard(self.services, viewer_id, owner_id)
        self.dashboards.append(dashboard)
        self.session.attach(dashboard)
        await dashboard.open()
        return dashboard

    async def close_dashboard(self, dashboard: RestaurantDashboard) -> None:
        self.session.detach(dashboard)
        if dashboard in self.dashboards:
            self.dashboards.remove(dashboard)
        await dashboard.close()
