from __future__ import annotations

import hashlib
import ipaddress
import time
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import DynamoTable
from .base_repository import strip_keys


def session_key(*, sid: str) -> dict[str, str]:
    s = str(sid or "").strip()
    if not s:
        raise ValueError("sid is required")
    return {"pk": f"SESSION#{s}", "sk": "v1"}


def _ip_prefix(ip: str | None) -> str | None:
    # Store a network prefix, never the full client address.
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(str(ip))
    except ValueError:
        return None
    if addr.version == 4:
        net = ipaddress.ip_network(f"{addr}/24", strict=False)
        return str(net.network_address) + "/24"
    net = ipaddress.ip_network(f"{addr}/64", strict=False)
    return str(net.network_address) + "/64"


class SessionsRepository:
    def __init__(self, table: DynamoTable):
        self._table = table

    def put_session(
        self,
        *,
        sid: str,
        user_id: str,
        username: str | None,
        expires_at: int,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> dict[str, Any]:
        """
        Stores a session created by login or password recovery.

        `expires_at` must be epoch seconds and is used as DynamoDB TTL (`expiresAt`).
        """
        now = int(time.time())
        ua = str(user_agent or "").strip()

        item: dict[str, Any] = {
            **session_key(sid=sid),
            "entityType": "Session",
            "sid": str(sid),
            "userId": str(user_id),
            "expiresAt": int(expires_at),
            "createdAt": now,
            "updatedAt": now,
            "gsi1pk": f"USER#{user_id}",
            "gsi1sk": f"SESSION#{now}#{sid}",
        }
        if username:
            item["username"] = str(username)
        if ua:
            item["userAgent"] = ua[:512]
            item["userAgentHash"] = hashlib.sha256(ua.encode("utf-8")).hexdigest()
        prefix = _ip_prefix(ip)
        if prefix:
            item["ipPrefix"] = prefix

        self._table.put_item(item=item, condition_expression="attribute_not_exists(pk)")
        return strip_keys(item) or {}

    def get_session(self, *, sid: str) -> dict[str, Any] | None:
        return strip_keys(self._table.get_item(key=session_key(sid=sid)))

    def delete_session(self, *, sid: str) -> None:
        self._table.delete_item(key=session_key(sid=sid))

    def list_sessions_for_user(self, *, user_id: str, limit: int = 25) -> list[dict[str, Any]]:
        """
        Returns newest-first sessions for a user.
        """
        uid = str(user_id or "").strip()
        if not uid:
            return []
        pg = self._table.query_page(
            index_name="GSI1",
            key_condition_expression=Key("gsi1pk").eq(f"USER#{uid}")
            & Key("gsi1sk").begins_with("SESSION#"),
            scan_index_forward=False,
            limit=max(1, min(100, int(limit or 25))),
            next_token=None,
        )
        return [s for s in (strip_keys(it) for it in pg.items) if s]
