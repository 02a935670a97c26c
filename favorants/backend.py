"""Remote data access over Supabase.

Thin async wrapper around the Supabase client: auth, PostgREST table
access and realtime change subscriptions. Errors raised by the client
(postgrest APIError, auth errors, httpx transport errors) propagate
unchanged so the resilience layer can classify them.
"""

import logging
import uuid
from typing import Any, Callable, Iterable, Optional

from supabase import AsyncClient, acreate_client

from .config import settings
from .errors import FavorantsError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Realtime event types accepted by postgres_changes
EVENT_TYPES = ("INSERT", "UPDATE", "DELETE", "*")


class Subscription:
    """Handle for a realtime channel subscription."""

    def __init__(self, client: AsyncClient, channel: Any, collection: str):
        self._client = client
        self._channel = channel
        self.collection = collection
        self.active = True

    async def unsubscribe(self) -> None:
        """Close the realtime channel."""
        if not self.active:
            return
        self.active = False
        await self._client.remove_channel(self._channel)
        logger.debug(f"Unsubscribed from {self.collection} changes")


class RemoteDataAccess:
    """Client for the hosted backend."""

    def __init__(self, client: AsyncClient):
        """Initialize remote data access.

        Args:
            client: Connected Supabase async client
        """
        self.client = client

    @classmethod
    async def connect(
        cls,
        url: Optional[str] = None,
        key: Optional[str] = None,
    ) -> "RemoteDataAccess":
        """Create a client from explicit credentials or settings.

        Args:
            url: Supabase project URL. If not provided, uses settings.
            key: Supabase anon key. If not provided, uses settings.
        """
        url = url or settings.supabase_url
        key = key or settings.supabase_key
        if not url or not key:
            raise ValidationError("Supabase URL and key must be configured")

        client = await acreate_client(url, key)
        logger.info(f"Connected to Supabase at {url}")
        return cls(client)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str) -> Any:
        """Sign in with email and password.

        Returns:
            Auth response with user and session
        """
        return await self.client.auth.sign_in_with_password(
            {"email": email, "password": password}
        )

    async def sign_up(
        self,
        email: str,
        password: str,
        username: Optional[str] = None,
        redirect_to: Optional[str] = None,
    ) -> Any:
        """Register a new account.

        Returns:
            Auth response with user and (if confirmation is off) session
        """
        options: dict[str, Any] = {}
        if username:
            options["data"] = {"username": username}
        if redirect_to:
            options["email_redirect_to"] = redirect_to

        return await self.client.auth.sign_up(
            {"email": email, "password": password, "options": options}
        )

    async def sign_out(self) -> None:
        await self.client.auth.sign_out()

    async def get_session(self) -> Any:
        """Return the live session or None."""
        return await self.client.auth.get_session()

    async def get_user(self) -> Any:
        """Return the signed-in user or None."""
        response = await self.client.auth.get_user()
        return response.user if response else None

    async def refresh_session(self) -> Any:
        return await self.client.auth.refresh_session()

    async def update_user(self, attributes: dict[str, Any]) -> Any:
        return await self.client.auth.update_user(attributes)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def query(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        *,
        columns: str = "*",
        order_by: Optional[str] = None,
        descending: bool = False,
        in_filters: Optional[dict[str, Iterable[Any]]] = None,
        or_filter: Optional[str] = None,
        limit: Optional[int] = None,
        single: bool = False,
    ) -> Any:
        """Select records from a table.

        Args:
            collection: Table name
            filters: Equality filters (column -> value)
            columns: PostgREST select expression, embedded relations allowed
            order_by: Column to order by
            descending: Sort order for order_by
            in_filters: Membership filters (column -> values)
            or_filter: Raw PostgREST or-expression
            limit: Maximum rows
            single: Return one record or None instead of a list

        Returns:
            List of records, or a single record/None when single=True
        """
        builder = self.client.table(collection).select(columns)

        for column, value in (filters or {}).items():
            builder = builder.eq(column, value)
        for column, values in (in_filters or {}).items():
            builder = builder.in_(column, list(values))
        if or_filter:
            builder = builder.or_(or_filter)
        if order_by:
            builder = builder.order(order_by, desc=descending)
        if limit is not None:
            builder = builder.limit(limit)

        if single:
            response = await builder.maybe_single().execute()
            return response.data if response is not None else None

        response = await builder.execute()
        return response.data or []

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert one record and return the stored row (with generated id)."""
        response = await self.client.table(collection).insert(record).execute()
        if not response.data:
            raise FavorantsError(f"Insert into {collection} returned no rows")
        return response.data[0]

    async def update(
        self,
        collection: str,
        id: Any,
        patch: dict[str, Any],
        *,
        match: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Update one record by id (or by match) and return the stored row.

        Raises:
            NotFoundError: If nothing matched
        """
        builder = self.client.table(collection).update(patch)
        builder = self._apply_match(builder, id, match)

        response = await builder.execute()
        if not response.data:
            raise NotFoundError(f"No {collection} record matched {id if id is not None else match}")
        return response.data[0]

    async def delete(
        self,
        collection: str,
        id: Any = None,
        *,
        match: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Delete records by id or match.

        Returns:
            Deleted rows
        """
        builder = self.client.table(collection).delete()
        builder = self._apply_match(builder, id, match)

        response = await builder.execute()
        return response.data or []

    @staticmethod
    def _apply_match(builder: Any, id: Any, match: Optional[dict[str, Any]]) -> Any:
        if id is None and not match:
            raise ValidationError("An id or match filter is required")
        if id is not None:
            builder = builder.eq("id", id)
        for column, value in (match or {}).items():
            builder = builder.eq(column, value)
        return builder

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        collection: str,
        event_types: Iterable[str],
        callback: Callable[[dict[str, Any]], None],
    ) -> Subscription:
        """Subscribe to change events on a table.

        Args:
            collection: Table name
            event_types: Any of INSERT, UPDATE, DELETE, *
            callback: Called with each change payload

        Returns:
            Subscription handle
        """
        events = list(event_types)
        for event in events:
            if event not in EVENT_TYPES:
                raise ValidationError(f"Unsupported event type: {event}")

        channel = self.client.channel(f"{collection}-changes-{uuid.uuid4().hex[:8]}")
        for event in events:
            channel.on_postgres_changes(
                event,
                callback=callback,
                table=collection,
                schema="public",
            )
        await channel.subscribe()
        logger.debug(f"Subscribed to {collection} changes ({', '.join(events)})")
        return Subscription(self.client, channel, collection)
