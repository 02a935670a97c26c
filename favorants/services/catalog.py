"""Restaurant types and cities."""

import logging
from typing import Any, Optional

from ..errors import ValidationError
from .base import UNIQUE_VIOLATION_CODE, ServiceBase, error_code

logger = logging.getLogger(__name__)

CATALOG_TABLES = ("restaurant_types", "cities")


class CatalogService(ServiceBase):
    """CRUD and moderation for one lookup table."""

    def __init__(self, backend, table: str, retry_config=None, connectivity=None):
        """Initialize catalog service.

        Args:
            backend: Remote data access layer
            table: "restaurant_types" or "cities"
        """
        if table not in CATALOG_TABLES:
            raise ValueError(f"Unsupported catalog table: {table}")
        super().__init__(backend, retry_config, connectivity)
        self.table = table

    async def list(self, approved_only: bool = True) -> list[dict[str, Any]]:
        filters = {"status": "approved"} if approved_only else None
        return await self.run(lambda: self.backend.query(self.table, filters, order_by="name"))

    async def create(self, name: str, created_by: Optional[Any] = None) -> dict[str, Any]:
        """Propose a new entry; it stays pending until approved."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")

        try:
            entry = await self.run(
                lambda: self.backend.insert(
                    self.table,
                    {"name": name, "created_by": created_by, "status": "pending"},
                )
            )
        except Exception as e:
            if error_code(e) == UNIQUE_VIOLATION_CODE:
                raise ValidationError(f"'{name}' already exists", code=UNIQUE_VIOLATION_CODE) from e
            raise

        logger.info(f"Created {self.table} entry '{name}'")
        return entry

    async def update(self, entry_id: Any, updates: dict[str, Any]) -> dict[str, Any]:
        if "name" in updates:
            name = (updates["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required")
            updates = {**updates, "name": name}
        return await self.run(lambda: self.backend.update(self.table, entry_id, updates))

    async def delete(self, entry_id: Any) -> None:
        await self.run(lambda: self.backend.delete(self.table, entry_id))
        logger.info(f"Deleted {self.table} entry {entry_id}")

    async def approve(self, entry_id: Any) -> dict[str, Any]:
        return await self.run(
            lambda: self.backend.update(self.table, entry_id, {"status": "approved"})
        )
