"""Domain services for Favorants.

This module provides:
- AuthService: accounts, sessions and profiles
- RestaurantService: restaurants, per-user lists, reviews and notes
- CatalogService: restaurant types and cities
- SocialService: followers, feed and recent activity
- Services: the full set, wired to one backend
"""

from dataclasses import dataclass
from typing import Optional

from ..backend import RemoteDataAccess
from ..geocoding import GeocodingClient
from ..resilience.connectivity import ConnectivityMonitor
from ..resilience.retry import RetryConfig
from .auth import AuthService
from .base import ServiceBase
from .catalog import CatalogService
from .restaurants import RestaurantService
from .social import SocialService


@dataclass
class Services:
    """Every domain service, sharing one backend and retry policy."""

    auth: AuthService
    restaurants: RestaurantService
    types: CatalogService
    cities: CatalogService
    social: SocialService

    @classmethod
    def create(
        cls,
        backend: RemoteDataAccess,
        geocoder: Optional[GeocodingClient] = None,
        retry_config: Optional[RetryConfig] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
    ) -> "Services":
        return cls(
            auth=AuthService(backend, retry_config, connectivity),
            restaurants=RestaurantService(backend, retry_config, connectivity, geocoder=geocoder),
            types=CatalogService(backend, "restaurant_types", retry_config, connectivity),
            cities=CatalogService(backend, "cities", retry_config, connectivity),
            social=SocialService(backend, retry_config, connectivity),
        )


__all__ = [
    "ServiceBase",
    "AuthService",
    "RestaurantService",
    "CatalogService",
    "SocialService",
    "Services",
]
