from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import DynamoTable
from .base_repository import Repository, now_iso, strip_keys

GROUPS_GSI_PK = "GROUPS"


def group_key(group_id: str) -> dict[str, str]:
    gid = str(group_id or "").strip()
    if not gid:
        raise ValueError("group_id is required")
    return {"pk": f"GROUP#{gid}", "sk": "PROFILE"}


class GroupsRepository(Repository):
    """Groups hold no member list; membership lives on each user's `groups` set."""

    def __init__(self, table: DynamoTable):
        self._table = table

    def get(self, id: str) -> dict[str, Any] | None:
        return strip_keys(self._table.get_item(key=group_key(id)))

    def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items = self._table.query_all(
            index_name="GSI1",
            key_condition_expression=Key("gsi1pk").eq(GROUPS_GSI_PK),
            scan_index_forward=True,
        )
        out = [g for g in (strip_keys(it) for it in items) if g]
        name = str((filters or {}).get("name") or "").strip().lower()
        if name:
            out = [g for g in out if str(g.get("name") or "").lower() == name]
        return out

    def create(self, entity: dict[str, Any]) -> dict[str, Any]:
        gid = str(entity.get("id") or "").strip()
        now = now_iso()
        item: dict[str, Any] = {
            **group_key(gid),
            "entityType": "Group",
            "gsi1pk": GROUPS_GSI_PK,
            "gsi1sk": f"GROUP#{now}#{gid}",
            "createdAt": now,
            "updatedAt": now,
            **{k: v for k, v in entity.items() if v is not None},
        }
        self._table.put_item(item=item, condition_expression="attribute_not_exists(pk)")
        return strip_keys(item) or {}

    def update(self, id: str, updates: dict[str, Any]) -> dict[str, Any]:
        values = {k: updates[k] for k in ("name", "color") if updates.get(k) is not None}
        values["updatedAt"] = now_iso()
        names = {f"#f{i}": k for i, k in enumerate(values)}
        vals = {f":v{i}": v for i, v in enumerate(values.values())}
        out = self._table.update_item(
            key=group_key(id),
            update_expression="SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(values))),
            expression_attribute_names=names,
            expression_attribute_values=vals,
            condition_expression="attribute_exists(pk)",
        )
        return strip_keys(out) or {}
