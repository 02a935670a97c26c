"""Restaurant catalog, per-user lists, reviews and notes."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..filtering import SortKey, sort_items
from ..geocoding import GeocodingClient, build_query
from .base import RESTAURANT_COLUMNS, ServiceBase

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "address",
    "postal_code",
    "city_id",
    "type_id",
    "price",
    "website",
    "latitude",
    "longitude",
)

MIN_RATING = 1
MAX_RATING = 10

# Embedded restaurant with its relations, used when listing a user's entries
_EMBEDDED_RESTAURANT = "restaurants(*, restaurant_types(*), cities(*))"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RestaurantService(ServiceBase):
    """Operations on restaurants and the user's relationship to them."""

    def __init__(self, backend, retry_config=None, connectivity=None, geocoder: Optional[GeocodingClient] = None):
        super().__init__(backend, retry_config, connectivity)
        self.geocoder = geocoder

    async def get_user_restaurants(self, user_id: Any) -> list[dict[str, Any]]:
        """Collect every restaurant the user reviewed or bookmarked.

        Each record carries the user's projection (rating, to_try,
        is_bookmarked, has_user_review) and the aggregate rating across
        all reviews. Newest first.
        """
        reviewed, bookmarked = await asyncio.gather(
            self.run(
                lambda: self.backend.query(
                    "restaurant_reviews",
                    {"user_id": user_id},
                    columns=f"restaurant_id, rating, {_EMBEDDED_RESTAURANT}",
                )
            ),
            self.run(
                lambda: self.backend.query(
                    "bookmarks",
                    {"user_id": user_id},
                    columns=f"restaurant_id, type, {_EMBEDDED_RESTAURANT}",
                )
            ),
        )

        restaurant_ids = list(dict.fromkeys(
            [row["restaurant_id"] for row in reviewed] + [row["restaurant_id"] for row in bookmarked]
        ))
        if not restaurant_ids:
            return []

        all_reviews = await self.run(
            lambda: self.backend.query(
                "restaurant_reviews",
                columns="restaurant_id, rating",
                in_filters={"restaurant_id": restaurant_ids},
            )
        )
        stats = _aggregate_ratings(all_reviews)

        restaurants: dict[Any, dict[str, Any]] = {}
        for review in reviewed:
            restaurant = review.get("restaurants")
            if not restaurant:
                continue
            avg, count = stats.get(review["restaurant_id"], (0, 0))
            restaurants[review["restaurant_id"]] = {
                **restaurant,
                "has_user_review": True,
                "rating": review.get("rating"),
                "to_try": False,
                "is_bookmarked": False,
                "aggregate_rating": avg,
                "review_count": count,
            }

        for bookmark in bookmarked:
            restaurant = bookmark.get("restaurants")
            if not restaurant:
                continue
            existing = restaurants.get(bookmark["restaurant_id"])
            if existing is not None:
                existing["is_bookmarked"] = True
                continue
            avg, count = stats.get(bookmark["restaurant_id"], (0, 0))
            restaurants[bookmark["restaurant_id"]] = {
                **restaurant,
                "has_user_review": False,
                "rating": None,
                "to_try": bookmark.get("type") == "to_try",
                "is_bookmarked": True,
                "aggregate_rating": avg,
                "review_count": count,
            }

        return sort_items(restaurants.values(), SortKey.DATE_ADDED)

    async def create_restaurant(
        self,
        data: dict[str, Any],
        user_id: Any,
        to_try: bool = False,
    ) -> dict[str, Any]:
        """Create a pending restaurant, optionally bookmarking it as to-try.

        Returns:
            The stored record with the user's projection fields
        """
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Restaurant name is required")
        if user_id is None:
            raise AuthorizationError("You must be signed in to add restaurants")

        record = {field: data.get(field) for field in EDITABLE_FIELDS if field in data}
        record.update({"name": name, "created_by": user_id, "status": "pending"})

        restaurant = await self.run(lambda: self.backend.insert("restaurants", record))
        logger.info(f"Created restaurant {restaurant.get('id')} '{name}'")

        if to_try:
            await self.run(
                lambda: self.backend.insert(
                    "bookmarks",
                    {"user_id": user_id, "restaurant_id": restaurant["id"], "type": "to_try"},
                )
            )

        stored = await self._load_restaurant(restaurant["id"]) or restaurant
        return {
            **stored,
            "has_user_review": False,
            "rating": None,
            "to_try": to_try,
            "is_bookmarked": to_try,
            "aggregate_rating": 0,
            "review_count": 0,
        }

    async def update_restaurant(self, restaurant_id: Any, updates: dict[str, Any]) -> dict[str, Any]:
        """Update the editable fields of a restaurant."""
        if restaurant_id is None or not updates:
            raise ValidationError("Invalid update parameters")
        if "name" in updates and not (updates["name"] or "").strip():
            raise ValidationError("Restaurant name is required")

        patch = {field: updates[field] for field in EDITABLE_FIELDS if field in updates}
        patch["updated_at"] = _now()

        updated = await self.run(lambda: self.backend.update("restaurants", restaurant_id, patch))
        return await self._load_restaurant(restaurant_id) or updated

    async def _load_restaurant(self, restaurant_id: Any) -> Optional[dict[str, Any]]:
        """Re-read a restaurant with its type and city embedded."""
        return await self.run(
            lambda: self.backend.query(
                "restaurants",
                {"id": restaurant_id},
                columns=RESTAURANT_COLUMNS,
                single=True,
            )
        )

    async def get_all_entities(self) -> dict[str, list[dict[str, Any]]]:
        """Load every restaurant, city and type for the admin screens."""
        restaurants, cities, types = await asyncio.gather(
            self.run(
                lambda: self.backend.query(
                    "restaurants",
                    columns=RESTAURANT_COLUMNS,
                    order_by="created_at",
                    descending=True,
                )
            ),
            self.run(lambda: self.backend.query("cities", order_by="name")),
            self.run(lambda: self.backend.query("restaurant_types", order_by="name")),
        )
        return {"restaurants": restaurants, "cities": cities, "types": types}

    async def delete_restaurant(self, restaurant_id: Any, user_id: Any) -> None:
        """Delete a restaurant. Admins only.

        Raises:
            AuthorizationError: If the user is not an admin
        """
        profile = await self.run(
            lambda: self.backend.query("profiles", {"id": user_id}, columns="is_admin", single=True)
        )
        if not profile or not profile.get("is_admin"):
            raise AuthorizationError("Only admins can delete restaurants.")

        await self.run(lambda: self.backend.delete("restaurants", restaurant_id))
        logger.info(f"Deleted restaurant {restaurant_id}")

    async def search_restaurants(self, query: str) -> list[dict[str, Any]]:
        """Find up to five restaurants by name or address."""
        query = (query or "").strip()
        if not query:
            return []
        return await self.run(
            lambda: self.backend.query(
                "restaurants",
                columns="id, name, address, type_id, city_id, price, restaurant_types(id, name), cities(id, name)",
                or_filter=f"name.ilike.%{query}%,address.ilike.%{query}%",
                order_by="name",
                limit=5,
            )
        )

    async def get_user_restaurant_data(self, user_id: Any, restaurant_id: Any) -> dict[str, Any]:
        """Load a restaurant with the user's bookmark, review and notes.

        Missing per-user parts degrade to empty values instead of failing.
        """
        restaurant = await self.run(
            lambda: self.backend.query(
                "restaurants",
                {"id": restaurant_id},
                columns=RESTAURANT_COLUMNS,
                single=True,
            )
        )
        if restaurant is None:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")

        match = {"user_id": user_id, "restaurant_id": restaurant_id}
        bookmark, review, notes = await asyncio.gather(
            self.run(lambda: self.backend.query("bookmarks", match, single=True)),
            self.run(lambda: self.backend.query("restaurant_reviews", match, single=True)),
            self.run(lambda: self.backend.query("notes", match, order_by="created_at", descending=True)),
            return_exceptions=True,
        )
        for part, result in (("bookmark", bookmark), ("review", review), ("notes", notes)):
            if isinstance(result, Exception):
                logger.warning(f"Could not load {part} for restaurant {restaurant_id}: {result}")

        return {
            **restaurant,
            "user_bookmark": None if isinstance(bookmark, Exception) else bookmark,
            "user_review": None if isinstance(review, Exception) else review,
            "user_notes": [] if isinstance(notes, Exception) else (notes or []),
        }

    async def add_to_user_list(self, user_id: Any, restaurant_id: Any, to_try: bool = True) -> dict[str, Any]:
        return await self.run(
            lambda: self.backend.insert(
                "bookmarks",
                {
                    "user_id": user_id,
                    "restaurant_id": restaurant_id,
                    "type": "to_try" if to_try else "favorite",
                },
            )
        )

    async def remove_from_user_list(self, user_id: Any, restaurant_id: Any) -> None:
        """Drop the user's bookmark, review and notes for a restaurant."""
        match = {"user_id": user_id, "restaurant_id": restaurant_id}
        await asyncio.gather(*(
            self.run(lambda table=table: self.backend.delete(table, match=match))
            for table in ("bookmarks", "restaurant_reviews", "notes")
        ))
        logger.info(f"Removed restaurant {restaurant_id} from list of user {user_id}")

    async def add_bookmark(self, user_id: Any, restaurant_id: Any, to_try: bool = False) -> dict[str, Any]:
        """Bookmark a restaurant.

        Returns:
            {"status": "added" | "exists" | "reviewed", "bookmark": ...}
        """
        if user_id is None or restaurant_id is None:
            raise ValidationError("Missing required parameters")

        restaurant = await self.run(
            lambda: self.backend.query("restaurants", {"id": restaurant_id}, columns="id", single=True)
        )
        if restaurant is None:
            raise NotFoundError("Restaurant not found")

        match = {"user_id": user_id, "restaurant_id": restaurant_id}
        existing = await self.run(lambda: self.backend.query("bookmarks", match, single=True))
        if existing:
            return {"status": "exists", "bookmark": existing}

        if not to_try:
            review = await self.run(
                lambda: self.backend.query("restaurant_reviews", match, columns="id", single=True)
            )
            if review:
                return {"status": "reviewed", "bookmark": None}

        bookmark = await self.add_to_user_list(user_id, restaurant_id, to_try=to_try)
        return {"status": "added", "bookmark": bookmark}

    async def add_review(self, user_id: Any, restaurant_id: Any, rating: float) -> dict[str, Any]:
        """Create or update the user's rating, then refresh the restaurant's stats."""
        if rating is None or not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

        match = {"user_id": user_id, "restaurant_id": restaurant_id}
        existing = await self.run(lambda: self.backend.query("restaurant_reviews", match, single=True))

        if existing:
            review = await self.run(
                lambda: self.backend.update("restaurant_reviews", existing["id"], {"rating": rating})
            )
        else:
            review = await self.run(
                lambda: self.backend.insert("restaurant_reviews", {**match, "rating": rating})
            )

        try:
            await self.recalculate_stats(restaurant_id)
        except Exception as e:
            # The review is stored; stale aggregates are fixed by the next recalculation
            logger.warning(f"Could not recalculate stats for restaurant {restaurant_id}: {e}")

        return review

    async def recalculate_stats(self, restaurant_id: Any) -> dict[str, Any]:
        """Recompute aggregate rating and review count from stored reviews."""
        reviews = await self.run(
            lambda: self.backend.query("restaurant_reviews", {"restaurant_id": restaurant_id}, columns="rating")
        )
        ratings = [review["rating"] for review in reviews if review.get("rating") is not None]
        average = round(sum(ratings) / len(ratings), 2) if ratings else 0

        patch = {
            "aggregate_rating": average,
            "review_count": len(ratings),
            "updated_at": _now(),
        }
        await self.run(lambda: self.backend.update("restaurants", restaurant_id, patch))
        return {"aggregate_rating": average, "review_count": len(ratings)}

    async def add_note(self, user_id: Any, restaurant_id: Any, note: str) -> dict[str, Any]:
        note = (note or "").strip()
        if not note:
            raise ValidationError("Note cannot be empty")
        return await self.run(
            lambda: self.backend.insert(
                "notes",
                {"user_id": user_id, "restaurant_id": restaurant_id, "note": note},
            )
        )

    async def update_note(self, note_id: Any, note: str) -> dict[str, Any]:
        note = (note or "").strip()
        if not note:
            raise ValidationError("Note cannot be empty")
        return await self.run(lambda: self.backend.update("notes", note_id, {"note": note}))

    async def delete_note(self, note_id: Any) -> None:
        if note_id is None:
            raise ValidationError("Missing note id")
        await self.run(lambda: self.backend.delete("notes", note_id))
        logger.info(f"Deleted note {note_id}")

    async def approve_restaurant(self, restaurant_id: Any) -> dict[str, Any]:
        """Approve a pending restaurant, geocoding its address when possible.

        Geocoding failures fall back to approval without coordinates.
        """
        restaurant = await self.run(
            lambda: self.backend.query(
                "restaurants",
                {"id": restaurant_id},
                columns="id, address, postal_code, cities(name)",
                single=True,
            )
        )
        if restaurant is None:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")

        patch: dict[str, Any] = {"status": "approved"}
        city = (restaurant.get("cities") or {}).get("name")
        if self.geocoder is not None and restaurant.get("address") and city:
            query = build_query(restaurant["address"], restaurant.get("postal_code"), city)
            try:
                coordinates = await self.geocoder.geocode(query)
            except Exception as e:
                logger.warning(f"Geocoding failed for restaurant {restaurant_id}: {e}")
                coordinates = None
            if coordinates is not None:
                patch["latitude"] = coordinates.latitude
                patch["longitude"] = coordinates.longitude

        return await self.run(lambda: self.backend.update("restaurants", restaurant_id, patch))


def _aggregate_ratings(reviews: list[dict[str, Any]]) -> dict[Any, tuple[float, int]]:
    """Average rating and count per restaurant."""
    totals: dict[Any, list[float]] = {}
    for review in reviews:
        rating = review.get("rating")
        if rating is None:
            continue
        totals.setdefault(review["restaurant_id"], []).append(rating)
    return {
        restaurant_id: (sum(ratings) / len(ratings), len(ratings))
        for restaurant_id, ratings in totals.items()
    }
