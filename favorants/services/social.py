"""Following other users and what they say about restaurants."""

import asyncio
import logging
from typing import Any

from ..errors import ValidationError
from ..filtering import SortKey, sort_items
from .base import UNIQUE_VIOLATION_CODE, ServiceBase, error_code

logger = logging.getLogger(__name__)

_FOLLOWER_PROFILE = "profiles!followers_follower_id_fkey(id, username, email)"
_FOLLOWING_PROFILE = "profiles!followers_following_id_fkey(id, username, email)"


class SocialService(ServiceBase):
    """Follower graph, restaurant feed and recent activity."""

    async def follow(self, follower_id: Any, following_id: Any) -> dict[str, Any]:
        """Follow another user.

        Raises:
            ValidationError: On self-follow or when already following
        """
        if follower_id is None or following_id is None:
            raise ValidationError("Missing required parameters")
        if follower_id == following_id:
            raise ValidationError("You cannot follow yourself")

        try:
            row = await self.run(
                lambda: self.backend.insert(
                    "followers",
                    {"follower_id": follower_id, "following_id": following_id},
                )
            )
        except Exception as e:
            if error_code(e) == UNIQUE_VIOLATION_CODE:
                raise ValidationError(
                    "You are already following this user", code=UNIQUE_VIOLATION_CODE
                ) from e
            raise

        logger.info(f"User {follower_id} now follows {following_id}")
        return row

    async def unfollow(self, follower_id: Any, following_id: Any) -> None:
        await self.run(
            lambda: self.backend.delete(
                "followers",
                match={"follower_id": follower_id, "following_id": following_id},
            )
        )
        logger.info(f"User {follower_id} unfollowed {following_id}")

    async def followers(self, user_id: Any) -> list[dict[str, Any]]:
        """Profiles of the users following user_id."""
        rows = await self.run(
            lambda: self.backend.query(
                "followers",
                {"following_id": user_id},
                columns=f"follower_id, created_at, {_FOLLOWER_PROFILE}",
            )
        )
        return [row["profiles"] for row in rows if row.get("profiles")]

    async def following(self, user_id: Any) -> list[dict[str, Any]]:
        """Profiles of the users user_id follows."""
        rows = await self.run(
            lambda: self.backend.query(
                "followers",
                {"follower_id": user_id},
                columns=f"following_id, created_at, {_FOLLOWING_PROFILE}",
            )
        )
        return [row["profiles"] for row in rows if row.get("profiles")]

    async def is_following(self, follower_id: Any, following_id: Any) -> bool:
        row = await self.run(
            lambda: self.backend.query(
                "followers",
                {"follower_id": follower_id, "following_id": following_id},
                columns="id",
                single=True,
            )
        )
        return bool(row)

    async def restaurant_feed(self, restaurant_id: Any, user_id: Any) -> dict[str, list[dict[str, Any]]]:
        """Reviews and notes on a restaurant by the users user_id follows."""
        followed = await self.run(
            lambda: self.backend.query("followers", {"follower_id": user_id}, columns="following_id")
        )
        followed_ids = [row["following_id"] for row in followed]
        if not followed_ids:
            return {"reviews": [], "notes": []}

        reviews, notes = await asyncio.gather(
            self.run(
                lambda: self.backend.query(
                    "restaurant_reviews",
                    {"restaurant_id": restaurant_id},
                    columns="*, profiles(id, username)",
                    in_filters={"user_id": followed_ids},
                    order_by="created_at",
                    descending=True,
                )
            ),
            self.run(
                lambda: self.backend.query(
                    "notes",
                    {"restaurant_id": restaurant_id},
                    columns="*, profiles(id, username)",
                    in_filters={"user_id": followed_ids},
                    order_by="created_at",
                    descending=True,
                )
            ),
        )
        return {"reviews": reviews, "notes": notes}

    async def recent_activity(self, user_id: Any, limit: int = 5) -> list[dict[str, Any]]:
        """The user's latest ratings and to-try bookmarks, newest first."""
        reviews, bookmarks = await asyncio.gather(
            self.run(
                lambda: self.backend.query(
                    "restaurant_reviews",
                    {"user_id": user_id},
                    columns="rating, created_at, restaurants(id, name)",
                    order_by="created_at",
                    descending=True,
                    limit=3,
                )
            ),
            self.run(
                lambda: self.backend.query(
                    "bookmarks",
                    {"user_id": user_id, "type": "to_try"},
                    columns="created_at, restaurants(id, name)",
                    order_by="created_at",
                    descending=True,
                    limit=3,
                )
            ),
        )

        activity = [
            {"type": "review", "rating": row.get("rating"), "restaurant": row.get("restaurants"), "created_at": row.get("created_at")}
            for row in reviews
        ] + [
            {"type": "to_try", "restaurant": row.get("restaurants"), "created_at": row.get("created_at")}
            for row in bookmarks
        ]
        return sort_items(activity, SortKey.DATE_ADDED)[:limit]
