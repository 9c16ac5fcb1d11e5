from __future__ import annotations

import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import DynamoTable
from .base_repository import now_iso, strip_keys


class AuditRepository:
    """Append-only: records are written once and never updated or deleted."""

    def __init__(self, table: DynamoTable):
        self._table = table

    def put(self, *, actor: str | None, subject: str, action: str) -> dict[str, Any]:
        now = now_iso()
        rid = uuid.uuid4().hex
        item: dict[str, Any] = {
            "pk": f"AUDIT#{subject}",
            "sk": f"{now}#{rid}",
            "entityType": "AuditRecord",
            "gsi1pk": "AUDIT",
            "gsi1sk": f"{now}#{rid}",
            "id": rid,
            "subject": str(subject),
            "action": str(action),
            "createdAt": now,
        }
        if actor:
            item["actor"] = str(actor)
        self._table.put_item(item=item, condition_expression="attribute_not_exists(pk)")
        return strip_keys(item) or {}

    def list_for_subject(self, subject: str, *, limit: int = 50) -> list[dict[str, Any]]:
        """Newest-first audit records for one subject."""
        pg = self._table.query_page(
            key_condition_expression=Key("pk").eq(f"AUDIT#{subject}"),
            scan_index_forward=False,
            limit=max(1, min(200, int(limit or 50))),
            next_token=None,
        )
        return [r for r in (strip_keys(it) for it in pg.items) if r]
