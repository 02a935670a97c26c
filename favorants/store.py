"""Local reconciliation store for remote collections.

A CollectionView mirrors one remote collection (for example "restaurants
for user X") for a single view. It is refreshed from the backend on demand,
mutated optimistically after successful writes, and torn down when the view
goes away.

Refresh cycle:
- IDLE -> FETCHING -> IDLE, results applied on success
- IDLE -> FETCHING -> IDLE, error recorded on failure
- refresh() while FETCHING is dropped, not queued
- results landing after teardown or after a newer fetch started are discarded
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .filtering import FilterSpec, Record, SortKey, apply_view

logger = logging.getLogger(__name__)

Fetcher = Callable[[Any], Awaitable[list[Record]]]
Listener = Callable[["CollectionView"], None]


class FetchState(str, Enum):
    """Refresh state of a collection view."""

    IDLE = "IDLE"
    FETCHING = "FETCHING"


class CancellationToken:
    """Marks one fetch; cancelled tokens never apply their results."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class CollectionView:
    """In-memory mirror of one remote collection.

    Usage:
        view = CollectionView(user_id, restaurant_service.get_user_restaurants)
        view.subscribe(render)
        await view.refresh()
        view.add_local(created_record)
        ...
        view.teardown()
    """

    def __init__(
        self,
        owner_key: Any,
        fetcher: Fetcher,
        filters: Optional[FilterSpec] = None,
        sort_key: Union[SortKey, str] = SortKey.DATE_ADDED,
        search_text: str = "",
        *,
        owns_writes: bool = True,
        name: str = "collection",
    ):
        """Initialize collection view.

        Args:
            owner_key: Key passed to the fetcher (usually a user id)
            fetcher: Coroutine function returning the full remote collection
            filters: Attribute filters
            sort_key: Sort order
            search_text: Free-text query
            owns_writes: Whether local adds are accepted
            name: Label for logging
        """
        self.name = name
        self.owner_key = owner_key
        self.owns_writes = owns_writes
        self._fetcher = fetcher
        self._filters = filters or FilterSpec()
        self._sort_key = SortKey.parse(sort_key)
        self._search_text = search_text or ""

        self._records: list[Record] = []  # Last fetched collection plus local edits
        self._items: list[Record] = []  # Filtered, sorted projection of _records
        self._total_count = 0
        self._has_results = False
        self._error: Optional[BaseException] = None

        self._alive = True
        self._state = FetchState.IDLE
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Future] = None
        self._listeners: list[Listener] = []

    @property
    def items(self) -> list[Record]:
        return list(self._items)

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def has_results(self) -> bool:
        return self._has_results

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state == FetchState.FETCHING

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def filters(self) -> FilterSpec:
        return self._filters

    @property
    def sort_key(self) -> SortKey:
        return self._sort_key

    @property
    def search_text(self) -> str:
        return self._search_text

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def refresh(self) -> bool:
        """Fetch the authoritative collection and apply it.

        Returns:
            True if a result was applied
        """
        if not self._alive:
            logger.debug(f"Ignoring refresh of {self.name}: view torn down")
            return False

        if self._state == FetchState.FETCHING:
            logger.debug(f"Refresh of {self.name} already in flight, dropping request")
            return False

        token = CancellationToken()
        self._token = token
        self._state = FetchState.FETCHING
        self._notify()

        try:
            task = asyncio.ensure_future(self._fetcher(self.owner_key))
            self._task = task
            records = await task
        except asyncio.CancelledError:
            if token.cancelled:
                logger.debug(f"Refresh of {self.name} cancelled, result discarded")
                return False
            self._finish(token)
            raise
        except Exception as e:
            if not self._is_current(token):
                logger.debug(f"Discarding failed refresh of stale {self.name} fetch: {e}")
                return False
            logger.warning(f"Refresh of {self.name} failed: {e}")
            self._error = e
            self._finish(token)
            self._notify()
            return False

        if not self._is_current(token):
            logger.debug(f"Discarding stale {self.name} fetch result")
            return False

        self._records = [dict(record) for record in records or []]
        self._error = None
        self._reapply()
        self._finish(token)
        self._notify()
        return True

    def add_local(self, item: Record) -> bool:
        """Prepend a freshly created record without a remote fetch.

        Returns:
            True if the record was added
        """
        if not self._alive or not self.owns_writes:
            logger.debug(f"Rejecting local add on {self.name}: view does not own writes")
            return False

        record = dict(item)
        self._records.insert(0, record)
        self._items.insert(0, record)
        self._total_count += 1
        self._has_results = True
        self._notify()
        return True

    def update_local(self, item: Record) -> bool:
        """Shallow-merge new attributes into the record with the same id.

        Returns:
            True if a record was updated
        """
        if not self._alive:
            return False

        item_id = item.get("id")
        updated = False
        for collection in (self._records, self._items):
            for index, existing in enumerate(collection):
                if existing.get("id") == item_id:
                    collection[index] = {**existing, **item}
                    updated = True
                    break

        if updated:
            self._notify()
        return updated

    def remove_local(self, item_id: Any) -> bool:
        """Drop the record with the given id.

        Returns:
            True if a record was removed
        """
        if not self._alive:
            return False

        before = len(self._items)
        self._records = [record for record in self._records if record.get("id") != item_id]
        self._items = [record for record in self._items if record.get("id") != item_id]
        removed = len(self._items) != before

        self._total_count = len(self._items)
        self._has_results = self._total_count > 0
        if removed:
            self._notify()
        return removed

    def set_query(
        self,
        filters: Optional[FilterSpec] = None,
        sort_key: Union[SortKey, str, None] = None,
        search_text: Optional[str] = None,
    ) -> None:
        """Change filters, sort or search and re-derive the visible items locally."""
        if filters is not None:
            self._filters = filters
        if sort_key is not None:
            self._sort_key = SortKey.parse(sort_key)
        if search_text is not None:
            self._search_text = search_text

        if not self._alive:
            return
        self._reapply()
        self._notify()

    async def set_owner(self, owner_key: Any) -> bool:
        """Point the view at another owner and refresh.

        A fetch still running for the previous owner is abandoned.
        """
        if owner_key == self.owner_key:
            return await self.refresh()

        self._cancel_inflight()
        self.owner_key = owner_key
        self._records = []
        self._reapply()
        return await self.refresh()

    def teardown(self) -> None:
        """Release the view; any outstanding fetch is cancelled and ignored."""
        if not self._alive:
            return
        self._alive = False
        self._cancel_inflight()
        self._listeners.clear()
        logger.debug(f"Tore down {self.name}")

    def _cancel_inflight(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._token = None
        self._task = None
        self._state = FetchState.IDLE

    def _is_current(self, token: CancellationToken) -> bool:
        return self._alive and not token.cancelled and token is self._token

    def _finish(self, token: CancellationToken) -> None:
        if token is self._token:
            self._state = FetchState.IDLE
            self._task = None

    def _reapply(self) -> None:
        self._items = apply_view(self._records, self._search_text, self._filters, self._sort_key)
        self._total_count = len(self._items)
        self._has_results = self._total_count > 0

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Listener for {self.name} failed: {e}")
