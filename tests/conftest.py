"""Pytest configuration and fixtures for Favorants tests."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from favorants.errors import NotFoundError, ValidationError
from favorants.resilience.connectivity import ConnectivityMonitor
from favorants.resilience.retry import RetryConfig
from favorants.services import Services


# Relations resolved from select expressions, with their foreign keys
EMBEDS = (
    ("restaurant_types", "type_id"),
    ("cities", "city_id"),
    ("restaurants", "restaurant_id"),
)


class BackendError(Exception):
    """Error shaped like a postgrest APIError."""

    def __init__(self, message: str = "", code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        if status is not None:
            self.status = status


class FakeSubscription:
    def __init__(self, backend: "FakeBackend", collection: str):
        self.backend = backend
        self.collection = collection
        self.active = True

    async def unsubscribe(self) -> None:
        self.active = False
        self.backend.unsubscribed.append(self.collection)


class FakeBackend:
    """In-memory stand-in for RemoteDataAccess.

    Tables are lists of dicts. Equality, membership, ordering and limits are
    honored. Select expressions only resolve the EMBEDS relations;
    or-filters are ignored. Errors queued with fail_next() are raised by the
    next matching calls. Inserts wait on hold_inserts() until released.
    """

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.subscriptions: dict[str, list] = {}
        self.unsubscribed: list[str] = []
        self._failures: dict[tuple[str, str], list[BaseException]] = {}
        self._ids = itertools.count(1000)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._insert_gate: Optional[asyncio.Event] = None

        self.authenticate = AsyncMock()
        self.sign_up = AsyncMock()
        self.sign_out = AsyncMock()
        self.get_session = AsyncMock(return_value=None)
        self.get_user = AsyncMock(return_value=None)
        self.refresh_session = AsyncMock()
        self.update_user = AsyncMock()

    def seed(self, collection: str, *rows: dict[str, Any]) -> None:
        self.tables.setdefault(collection, []).extend(dict(row) for row in rows)

    def fail_next(self, method: str, collection: str, *errors: BaseException) -> None:
        self._failures.setdefault((method, collection), []).extend(errors)

    def hold_inserts(self) -> asyncio.Event:
        """Block inserts until the returned event is set."""
        self._insert_gate = asyncio.Event()
        return self._insert_gate

    def count(self, method: str, collection: str) -> int:
        return self.calls.count((method, collection))

    def _record(self, method: str, collection: str) -> None:
        self.calls.append((method, collection))
        queued = self._failures.get((method, collection))
        if queued:
            raise queued.pop(0)

    def _now(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    @staticmethod
    def _matches(row: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    async def query(
        self,
        collection,
        filters=None,
        *,
        columns="*",
        order_by=None,
        descending=False,
        in_filters=None,
        or_filter=None,
        limit=None,
        single=False,
    ):
        self._record("query", collection)
        rows = [dict(row) for row in self.tables.get(collection, []) if self._matches(row, filters)]
        for relation, key in EMBEDS:
            if f"{relation}(" in columns:
                for row in rows:
                    if relation not in row and row.get(key) is not None:
                        row[relation] = self._lookup(relation, row[key])
        for column, values in (in_filters or {}).items():
            values = list(values)
            rows = [row for row in rows if row.get(column) in values]
        if order_by:
            rows.sort(key=lambda row: str(row.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if single:
            return rows[0] if rows else None
        return rows

    def _lookup(self, collection: str, id: Any) -> Optional[dict[str, Any]]:
        for row in self.tables.get(collection, []):
            if row.get("id") == id:
                return dict(row)
        return None

    async def insert(self, collection, record):
        if self._insert_gate is not None:
            await self._insert_gate.wait()
        self._record("insert", collection)
        row = {"id": next(self._ids), "created_at": self._now(), **record}
        self.tables.setdefault(collection, []).append(row)
        return dict(row)

    async def update(self, collection, id, patch, *, match=None):
        self._record("update", collection)
        filters = dict(match or {})
        if id is not None:
            filters["id"] = id
        for row in self.tables.get(collection, []):
            if self._matches(row, filters):
                row.update(patch)
                return dict(row)
        raise NotFoundError(f"No {collection} record matched {filters}")

    async def delete(self, collection, id=None, *, match=None):
        self._record("delete", collection)
        if id is None and not match:
            raise ValidationError("An id or match filter is required")
        filters = dict(match or {})
        if id is not None:
            filters["id"] = id
        rows = self.tables.get(collection, [])
        removed = [row for row in rows if self._matches(row, filters)]
        self.tables[collection] = [row for row in rows if not self._matches(row, filters)]
        return removed

    async def subscribe(self, collection, event_types, callback):
        self._record("subscribe", collection)
        self.subscriptions.setdefault(collection, []).append(callback)
        return FakeSubscription(self, collection)

    def push(self, collection: str, payload: Optional[dict[str, Any]] = None) -> None:
        """Deliver a realtime change to every subscriber of a table."""
        for callback in self.subscriptions.get(collection, []):
            callback(payload or {"eventType": "INSERT", "table": collection})


@pytest.fixture
def fast_retry():
    """Retry policy with no waiting between attempts."""
    return RetryConfig(max_attempts=3, base_delay=0.0, timeout=1.0, max_jitter=0.0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor()


@pytest.fixture
def services(backend, fast_retry, connectivity):
    """Services over the in-memory backend."""
    return Services.create(backend, geocoder=None, retry_config=fast_retry, connectivity=connectivity)


@pytest.fixture
def auth_user():
    """Signed-in user as returned by Supabase auth."""
    user = Mock()
    user.id = "user-1"
    user.email = "ada@example.com"
    return user


@pytest.fixture
def sample_restaurants():
    """Restaurants as projected for a user's list."""
    return [
        {
            "id": 1,
            "name": "Bistro Blu",
            "created_at": "2024-03-01T12:00:00Z",
            "type_id": 10,
            "city_id": 20,
            "price": 2,
            "rating": 8,
            "to_try": False,
            "restaurant_types": {"id": 10, "name": "Pizzeria"},
            "cities": {"id": 20, "name": "Roma"},
        },
        {
            "id": 2,
            "name": "alla Vecchia",
            "created_at": "2024-03-03T12:00:00Z",
            "type_id": 11,
            "city_id": 21,
            "price": 3,
            "rating": None,
            "to_try": True,
            "restaurant_types": {"id": 11, "name": "Trattoria"},
            "cities": {"id": 21, "name": "Milano"},
        },
        {
            "id": 3,
            "name": "Cantina",
            "created_at": "2024-03-02T12:00:00Z",
            "type_id": 10,
            "city_id": 21,
            "price": 2,
            "rating": 6,
            "to_try": False,
            "restaurant_types": {"id": 10, "name": "Pizzeria"},
            "cities": {"id": 21, "name": "Milano"},
        },
    ]


