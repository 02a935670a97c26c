"""Client-side filtering and sorting of restaurant collections.

The full collection is fetched once and narrowed locally; there is no
server-side pagination.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Union

Record = dict[str, Any]


class SortKey(str, Enum):
    """Available sort orders."""

    DATE_ADDED = "dateAdded"  # Newest first
    NAME = "name"  # A to Z
    RATING = "rating"  # Highest first, unrated last

    @classmethod
    def parse(cls, value: Union["SortKey", str, None]) -> "SortKey":
        """Parse a sort key, defaulting to DATE_ADDED."""
        if value is None:
            return cls.DATE_ADDED
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported sort key: {value}") from None


@dataclass
class FilterSpec:
    """Attribute filters applied after the free-text search."""

    type_id: Optional[Any] = None
    city_id: Optional[Any] = None
    price: Optional[int] = None
    min_rating: float = 0  # 0 disables the threshold
    to_try: Optional[bool] = None  # None: all, True: to-try only, False: visited only

    def is_active(self) -> bool:
        return (
            self.type_id is not None
            or self.city_id is not None
            or self.price is not None
            or self.min_rating > 0
            or self.to_try is not None
        )


def _nested(item: Record, relation: str, field: str) -> Any:
    related = item.get(relation)
    if isinstance(related, dict):
        return related.get(field)
    return None


def type_id_of(item: Record) -> Any:
    value = item.get("type_id")
    return value if value is not None else _nested(item, "restaurant_types", "id")


def city_id_of(item: Record) -> Any:
    value = item.get("city_id")
    return value if value is not None else _nested(item, "cities", "id")


def rating_of(item: Record) -> Optional[float]:
    return item.get("rating")


def is_to_try(item: Record) -> bool:
    return bool(item.get("to_try"))


def is_visited(item: Record) -> bool:
    return not is_to_try(item) and (rating_of(item) or 0) > 0


def matches_search(item: Record, text: str) -> bool:
    """Case-insensitive substring match over name, type and city."""
    needle = (text or "").strip().casefold()
    if not needle:
        return True

    haystacks = (
        item.get("name"),
        _nested(item, "restaurant_types", "name"),
        _nested(item, "cities", "name"),
    )
    return any(needle in str(value).casefold() for value in haystacks if value)


def matches_filters(item: Record, spec: Optional[FilterSpec]) -> bool:
    """Check an item against every active attribute filter."""
    if spec is None:
        return True

    if spec.type_id is not None and type_id_of(item) != spec.type_id:
        return False
    if spec.city_id is not None and city_id_of(item) != spec.city_id:
        return False
    if spec.price is not None and item.get("price") != spec.price:
        return False
    if spec.min_rating > 0 and (rating_of(item) or 0) < spec.min_rating:
        return False
    if spec.to_try is True and not is_to_try(item):
        return False
    if spec.to_try is False and not is_visited(item):
        return False
    return True


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a PostgREST timestamp into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_items(items: Iterable[Record], key: Union[SortKey, str, None] = SortKey.DATE_ADDED) -> list[Record]:
    """Sort items by the requested key (stable)."""
    sort_key = SortKey.parse(key)
    items = list(items)

    if sort_key == SortKey.NAME:
        return sorted(items, key=lambda item: str(item.get("name") or "").casefold())

    if sort_key == SortKey.RATING:
        # Missing rating sorts as the lowest value
        return sorted(items, key=lambda item: rating_of(item) or 0, reverse=True)

    # Undated items go last; reverse=True keeps ties in original order
    dated = [(parse_timestamp(item.get("created_at")), item) for item in items]
    with_date = [pair for pair in dated if pair[0] is not None]
    without_date = [item for stamp, item in dated if stamp is None]
    with_date.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in with_date] + without_date


def apply_view(
    items: Iterable[Record],
    search_text: str = "",
    spec: Optional[FilterSpec] = None,
    sort_key: Union[SortKey, str, None] = SortKey.DATE_ADDED,
) -> list[Record]:
    """Search, then filter, then sort."""
    visible = [
        item for item in items
        if matches_search(item, search_text) and matches_filters(item, spec)
    ]
    return sort_items(visible, sort_key)
