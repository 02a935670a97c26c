"""Address geocoding via the Nominatim search API."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import settings
from .resilience.connectivity import ConnectivityMonitor
from .resilience.retry import RetryConfig, execute_with_retry, retry_config_from_settings

logger = logging.getLogger(__name__)


@dataclass
class Coordinates:
    """Best-match location for an address."""

    latitude: float
    longitude: float


def build_query(
    address: Optional[str],
    postal_code: Optional[str] = None,
    city: Optional[str] = None,
    country: Optional[str] = None,
) -> str:
    """Join the non-empty address parts and the country."""
    country = settings.geocoding_country_name if country is None else country
    parts = [address, postal_code, city, country]
    return ", ".join(str(part).strip() for part in parts if part and str(part).strip())


class GeocodingClient:
    """Client for free-text address lookup."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
    ):
        """Initialize geocoding client.

        Args:
            http_client: Shared httpx client. If not provided, one is created.
            retry_config: Retry policy. If not provided, uses settings.
            connectivity: Optional online/offline monitor
        """
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "User-Agent": settings.geocoding_user_agent,
            }
        )
        self.retry_config = retry_config or retry_config_from_settings()
        self.connectivity = connectivity

    async def geocode(self, address: str) -> Optional[Coordinates]:
        """Look up an address.

        Args:
            address: Free-text address

        Returns:
            Coordinates of the best match, or None if not found

        Raises:
            httpx.HTTPStatusError: On a non-success response after retries
        """
        if not address or not address.strip():
            return None

        params = {
            "format": "json",
            "q": address,
            "limit": 1,
            "countrycodes": settings.geocoding_country_code,
        }

        async def search():
            response = await self.http.get(
                settings.geocoding_url,
                params=params,
                headers={"User-Agent": settings.geocoding_user_agent},
            )
            response.raise_for_status()
            return response.json()

        config = self.retry_config
        results = await execute_with_retry(
            search,
            config.max_attempts,
            config.base_delay,
            config.timeout,
            max_jitter=config.max_jitter,
            connectivity=self.connectivity,
        )

        if not results:
            logger.info(f"No geocoding match for '{address}'")
            return None

        best = results[0]
        return Coordinates(latitude=float(best["lat"]), longitude=float(best["lon"]))

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self.http.aclose()
