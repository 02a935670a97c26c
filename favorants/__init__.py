"""Favorants: personal restaurant lists with resilient sync."""

__version__ = "0.1.0"

from .app import FavorantsApp
from .backend import RemoteDataAccess
from .dashboard import MutationOutcome, RestaurantDashboard
from .store import CollectionView

__all__ = [
    "FavorantsApp",
    "RemoteDataAccess",
    "RestaurantDashboard",
    "MutationOutcome",
    "CollectionView",
]
