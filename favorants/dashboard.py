"""Restaurant dashboard view controller.

Ties the local collection views to the domain services: loads the owner's
restaurants plus the approved types and cities, keeps them current from
realtime pushes and applies successful writes locally without refetching.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .backend import Subscription
from .errors import FavorantsError, OfflineError, OperationFailedError, PERMANENT_ERRORS
from .filtering import FilterSpec, SortKey
from .services import Services
from .store import CollectionView

logger = logging.getLogger(__name__)

# Realtime tables and the view each one invalidates
RESTAURANT_TABLES = ("restaurants", "restaurant_reviews", "bookmarks")
TYPE_TABLES = ("restaurant_types",)
CITY_TABLES = ("cities",)


@dataclass
class MutationOutcome:
    """Result of a dashboard write."""

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    message: str = ""


class RestaurantDashboard:
    """One user's restaurant list as seen by a viewer.

    Usage:
        dashboard = RestaurantDashboard(services, viewer_id=me)
        await dashboard.open()
        outcome = await dashboard.add_restaurant({"name": "Da Enzo"})
        ...
        await dashboard.close()
    """

    def __init__(self, services: Services, viewer_id: Any, owner_id: Optional[Any] = None):
        """Initialize dashboard.

        Args:
            services: Domain services
            viewer_id: Signed-in user looking at the dashboard
            owner_id: User whose list is shown. Defaults to the viewer.
        """
        self.services = services
        self.viewer_id = viewer_id
        self.owner_id = viewer_id if owner_id is None else owner_id
        self.offline_error: Optional[OfflineError] = None
        self.is_following = False

        self.restaurants = CollectionView(
            self.owner_id,
            services.restaurants.get_user_restaurants,
            owns_writes=self.is_own,
            name=f"restaurants[{self.owner_id}]",
        )
        self.types = CollectionView(
            None,
            lambda _: services.types.list(),
            sort_key=SortKey.NAME,
            name="restaurant_types",
        )
        self.cities = CollectionView(
            None,
            lambda _: services.cities.list(),
            sort_key=SortKey.NAME,
            name="cities",
        )

        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Future] = set()
        self._opened = False

    @property
    def is_own(self) -> bool:
        return self.viewer_id == self.owner_id

    @property
    def views(self) -> tuple[CollectionView, ...]:
        return (self.restaurants, self.types, self.cities)

    async def open(self) -> None:
        """Load all views and start listening for remote changes."""
        self._opened = True
        await self.refresh_all()

        if not self.is_own:
            try:
                self.is_following = await self.services.social.is_following(self.viewer_id, self.owner_id)
            except FavorantsError as e:
                logger.warning(f"Could not load follow state: {e}")

        backend = self.services.restaurants.backend
        for tables, view in (
            (RESTAURANT_TABLES, self.restaurants),
            (TYPE_TABLES, self.types),
            (CITY_TABLES, self.cities),
        ):
            for table in tables:
                try:
                    subscription = await backend.subscribe(table, ["*"], self._on_change(view))
                except Exception as e:
                    logger.warning(f"Realtime unavailable for {table}: {e}")
                    continue
                self._subscriptions.append(subscription)

    async def close(self) -> None:
        """Tear down the views and drop realtime subscriptions."""
        self._opened = False
        for view in self.views:
            view.teardown()

        for future in list(self._pending):
            future.cancel()
        self._pending.clear()

        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to unsubscribe from {subscription.collection}: {e}")

    async def refresh_all(self) -> None:
        await asyncio.gather(*(view.refresh() for view in self.views))

    def set_query(
        self,
        filters: Optional[FilterSpec] = None,
        sort_key: Optional[SortKey] = None,
        search_text: Optional[str] = None,
    ) -> None:
        """Change what the restaurant list shows; no remote call."""
        self.restaurants.set_query(filters, sort_key, search_text)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_restaurant(self, data: dict[str, Any], to_try: bool = False) -> MutationOutcome:
        return await self._mutate(
            "add restaurant",
            lambda: self.services.restaurants.create_restaurant(data, self.viewer_id, to_try=to_try),
            self.restaurants.add_local,
        )

    async def edit_restaurant(self, restaurant_id: Any, updates: dict[str, Any]) -> MutationOutcome:
        return await self._mutate(
            "update restaurant",
            lambda: self.services.restaurants.update_restaurant(restaurant_id, updates),
            self.restaurants.update_local,
        )

    async def delete_restaurant(self, restaurant_id: Any) -> MutationOutcome:
        return await self._mutate(
            "delete restaurant",
            lambda: self.services.restaurants.delete_restaurant(restaurant_id, self.viewer_id),
            lambda _: self.restaurants.remove_local(restaurant_id),
        )

    async def remove_from_list(self, restaurant_id: Any) -> MutationOutcome:
        return await self._mutate(
            "remove restaurant from list",
            lambda: self.services.restaurants.remove_from_user_list(self.viewer_id, restaurant_id),
            lambda _: self.restaurants.remove_local(restaurant_id),
        )

    async def rate_restaurant(self, restaurant_id: Any, rating: float) -> MutationOutcome:
        def apply(_review: Any) -> None:
            self.restaurants.update_local(
                {"id": restaurant_id, "rating": rating, "has_user_review": True, "to_try": False}
            )

        return await self._mutate(
            "rate restaurant",
            lambda: self.services.restaurants.add_review(self.viewer_id, restaurant_id, rating),
            apply,
        )

    async def follow_owner(self) -> MutationOutcome:
        return await self._mutate(
            "follow user",
            lambda: self.services.social.follow(self.viewer_id, self.owner_id),
            lambda _: setattr(self, "is_following", True),
        )

    async def unfollow_owner(self) -> MutationOutcome:
        return await self._mutate(
            "unfollow user",
            lambda: self.services.social.unfollow(self.viewer_id, self.owner_id),
            lambda _: setattr(self, "is_following", False),
        )

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def handle_online(self) -> None:
        """Connectivity restored: clear the offline flag and reload everything."""
        self.offline_error = None
        if self._opened:
            await self.refresh_all()

    def handle_offline(self) -> None:
        self.offline_error = OfflineError("You are offline. Changes will load when you reconnect.")

    async def _mutate(
        self,
        description: str,
        operation: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], Any],
    ) -> MutationOutcome:
        """Run a remote write, then apply it locally only if it succeeded."""
        try:
            value = await operation()
        except PERMANENT_ERRORS as e:
            logger.info(f"Could not {description}: {e}")
            return MutationOutcome(ok=False, error=e, message=e.message)
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
            error = OperationFailedError(f"Failed to {description}", last_error=e)
            error.__cause__ = e
            return MutationOutcome(ok=False, error=error, message=error.message)

        apply(value)
        return MutationOutcome(ok=True, value=value)

    def _on_change(self, view: CollectionView) -> Callable[[dict[str, Any]], None]:
        def callback(payload: dict[str, Any]) -> None:
            if not view.alive:
                return
            logger.debug(f"Change pushed for {view.name}, refreshing")
            future = asyncio.ensure_future(view.refresh())
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

        return callback
