"""
Base repository interface.

All entity repositories implement this interface; services only depend on it
(plus the entity-specific methods each repository adds).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def strip_keys(item: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop single-table key attributes before handing an item to services."""
    if not item:
        return None
    out = dict(item)
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "entityType"):
        out.pop(k, None)
    return out


class Repository(ABC):
    """Base repository interface."""

    @abstractmethod
    def get(self, id: str) -> dict[str, Any] | None:
        """Get an entity by ID."""

    @abstractmethod
    def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """List entities matching filters."""

    @abstractmethod
    def create(self, entity: dict[str, Any]) -> dict[str, Any]:
        """Create a new entity."""

    @abstractmethod
    def update(self, id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """Update an existing entity."""
