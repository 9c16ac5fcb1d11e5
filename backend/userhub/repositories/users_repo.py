from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from boto3.dynamodb.conditions import Attr, Key

from ..db.dynamodb.errors import DdbConflict, DdbNotFound
from ..db.dynamodb.table import DynamoTable
from .base_repository import Repository, now_iso, strip_keys

USERS_GSI_PK = "USERS"

# Only these attributes can be written through `update`.
_UPDATABLE_FIELDS = ("username", "name", "email", "phone", "role", "groups", "active")


@dataclass(slots=True)
class DuplicateValue(DdbConflict):
    """A unique attribute (username/email) is already taken."""

    fields: list[str] = field(default_factory=list)


def user_key(user_id: str) -> dict[str, str]:
    uid = str(user_id or "").strip()
    if not uid:
        raise ValueError("user_id is required")
    return {"pk": f"USER#{uid}", "sk": "PROFILE"}


def username_key(username: str) -> dict[str, str]:
    un = str(username or "").strip().lower()
    if not un:
        raise ValueError("username is required")
    return {"pk": f"USERNAME#{un}", "sk": "USER"}


def email_key(email: str) -> dict[str, str]:
    em = str(email or "").strip().lower()
    if not em or "@" not in em:
        raise ValueError("email is required")
    return {"pk": f"USER_EMAIL#{em}", "sk": "USER"}


def normalize_user(item: dict[str, Any] | None) -> dict[str, Any] | None:
    out = strip_keys(item)
    if out is None:
        return None
    out["groups"] = sorted(str(g) for g in (out.get("groups") or []))
    out["active"] = bool(out.get("active", True))
    out["deleted"] = bool(out.get("deleted", False))
    return out


def _set_clause(values: dict[str, Any]) -> tuple[list[str], list[str], dict[str, str], dict[str, Any]]:
    """
    Build SET/REMOVE parts with placeholder names (name, role, password... are
    DynamoDB reserved words). Empty group sets are removed: DynamoDB rejects
    empty sets.
    """
    sets: list[str] = []
    removes: list[str] = []
    names: dict[str, str] = {}
    vals: dict[str, Any] = {}
    for i, (k, v) in enumerate(values.items()):
        n = f"#f{i}"
        names[n] = k
        if k == "groups":
            grp = {str(g) for g in (v or []) if str(g).strip()}
            if not grp:
                removes.append(n)
                continue
            v = grp
        vals[f":v{i}"] = v
        sets.append(f"{n} = :v{i}")
    return sets, removes, names, vals


class UsersRepository(Repository):
    def __init__(self, table: DynamoTable):
        self._table = table

    # --- reads ---

    def get(self, id: str) -> dict[str, Any] | None:
        # Strongly consistent: password checks and conditional writes build on this read.
        return normalize_user(self._table.get_item(key=user_key(id), consistent_read=True))

    def _get_by_index(self, key: dict[str, str]) -> dict[str, Any] | None:
        idx = self._table.get_item(key=key)
        uid = str((idx or {}).get("userId") or "").strip()
        if not uid:
            return None
        return self.get(uid)

    def get_by_username(self, username: str) -> dict[str, Any] | None:
        if not str(username or "").strip():
            return None
        return self._get_by_index(username_key(username))

    def get_by_email(self, email: str) -> dict[str, Any] | None:
        em = str(email or "").strip()
        if not em or "@" not in em:
            return None
        return self._get_by_index(email_key(em))

    def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        Oldest-first users. Supported filters:
          roles: list of role names, include_deleted: bool, group_id: str
        """
        f = filters or {}
        cond = None

        def _and(c):
            nonlocal cond
            cond = c if cond is None else cond & c

        if not f.get("include_deleted"):
            _and(Attr("deleted").ne(True))
        roles = [str(r) for r in (f.get("roles") or []) if str(r).strip()]
        if roles:
            _and(Attr("role").is_in(roles))
        group_id = str(f.get("group_id") or "").strip()
        if group_id:
            _and(Attr("groups").contains(group_id))

        items = self._table.query_all(
            index_name="GSI1",
            key_condition_expression=Key("gsi1pk").eq(USERS_GSI_PK),
            scan_index_forward=True,
            filter_expression=cond,
        )
        return [u for u in (normalize_user(it) for it in items) if u]

    def find_by_group(self, group_id: str) -> list[dict[str, Any]]:
        return self.list({"group_id": group_id})

    # --- writes ---

    def create(self, entity: dict[str, Any]) -> dict[str, Any]:
        uid = str(entity.get("id") or "").strip()
        if not uid:
            raise ValueError("id is required")
        now = now_iso()
        item: dict[str, Any] = {
            **user_key(uid),
            "entityType": "User",
            "gsi1pk": USERS_GSI_PK,
            "gsi1sk": f"USER#{now}#{uid}",
            "createdAt": now,
            "updatedAt": now,
            "deleted": False,
        }
        for k, v in entity.items():
            if v is None:
                continue
            if k == "groups":
                v = {str(g) for g in v if str(g).strip()}
                if not v:
                    continue
            item[k] = v

        unique = ["username"]
        puts = [
            self._table.tx_put(item=item, condition_expression="attribute_not_exists(pk)"),
            self._table.tx_put(
                item={**username_key(item["username"]), "entityType": "UsernameIndex", "userId": uid},
                condition_expression="attribute_not_exists(pk)",
            ),
        ]
        if item.get("email"):
            unique.append("email")
            puts.append(
                self._table.tx_put(
                    item={**email_key(item["email"]), "entityType": "UserEmailIndex", "userId": uid},
                    condition_expression="attribute_not_exists(pk)",
                )
            )

        try:
            self._table.transact_write(puts=puts)
        except DdbConflict as e:
            raise self._duplicate(e, ["id", *unique]) from e
        return normalize_user(item) or {}

    def update(self, id: str, updates: dict[str, Any]) -> dict[str, Any]:
        current = self.get(id)
        if not current or current.get("deleted"):
            raise DdbNotFound(message="User not found", operation="UpdateItem", key=user_key(id))

        values = {k: updates[k] for k in _UPDATABLE_FIELDS if k in updates and updates[k] is not None}
        values["updatedAt"] = now_iso()
        sets, removes, names, vals = _set_clause(values)
        names["#deleted"] = "deleted"
        vals[":true"] = True
        expr = "SET " + ", ".join(sets)
        if removes:
            expr += " REMOVE " + ", ".join(removes)
        cond = "attribute_exists(pk) AND (attribute_not_exists(#deleted) OR #deleted <> :true)"

        index_puts: list[dict[str, Any]] = []
        index_deletes: list[dict[str, Any]] = []
        changed: list[str] = []
        for fname, key_fn, entity_type in (
            ("username", username_key, "UsernameIndex"),
            ("email", email_key, "UserEmailIndex"),
        ):
            new_val = values.get(fname)
            old_val = current.get(fname)
            if new_val is None or str(new_val).strip().lower() == str(old_val or "").strip().lower():
                continue
            changed.append(fname)
            index_puts.append(
                self._table.tx_put(
                    item={**key_fn(new_val), "entityType": entity_type, "userId": str(id)},
                    condition_expression="attribute_not_exists(pk)",
                )
            )
            if old_val:
                index_deletes.append(self._table.tx_delete(key=key_fn(old_val)))

        if not changed:
            out = self._table.update_item(
                key=user_key(id),
                update_expression=expr,
                expression_attribute_names=names,
                expression_attribute_values=vals,
                condition_expression=cond,
            )
            return normalize_user(out) or {}

        try:
            self._table.transact_write(
                updates=[
                    self._table.tx_update(
                        key=user_key(id),
                        update_expression=expr,
                        expression_attribute_names=names,
                        expression_attribute_values=vals,
                        condition_expression=cond,
                    )
                ],
                puts=index_puts,
                deletes=index_deletes,
            )
        except DdbConflict as e:
            # transact order: puts (index claims) first, then deletes, then the user update.
            if any(i < len(index_puts) for i in e.failed_actions()):
                raise self._duplicate(e, changed) from e
            raise DdbNotFound(message="User not found", operation="TransactWriteItems", key=user_key(id)) from e
        return self.get(id) or {}

    def set_password(self, id: str, password_hash: str, *, expected_hash: str | None = None) -> dict[str, Any]:
        names = {"#password": "password", "#updatedAt": "updatedAt"}
        vals: dict[str, Any] = {":p": password_hash, ":u": now_iso()}
        cond = "attribute_exists(pk)"
        if expected_hash is not None:
            cond += " AND #password = :expected"
            vals[":expected"] = expected_hash
        out = self._table.update_item(
            key=user_key(id),
            update_expression="SET #password = :p, #updatedAt = :u",
            expression_attribute_names=names,
            expression_attribute_values=vals,
            condition_expression=cond,
        )
        return normalize_user(out) or {}

    def set_avatar(self, id: str, *, avatar: str, avatar_url: str) -> dict[str, Any]:
        out = self._table.update_item(
            key=user_key(id),
            update_expression="SET #avatar = :a, #avatarUrl = :url, #updatedAt = :u",
            expression_attribute_names={"#avatar": "avatar", "#avatarUrl": "avatarUrl", "#updatedAt": "updatedAt"},
            expression_attribute_values={":a": avatar, ":url": avatar_url, ":u": now_iso()},
            condition_expression="attribute_exists(pk)",
        )
        return normalize_user(out) or {}

    def soft_delete(self, id: str) -> dict[str, Any]:
        now = now_iso()
        out = self._table.update_item(
            key=user_key(id),
            update_expression="SET #deleted = :true, #deletedAt = :now, #updatedAt = :now",
            expression_attribute_names={"#deleted": "deleted", "#deletedAt": "deletedAt", "#updatedAt": "updatedAt"},
            expression_attribute_values={":true": True, ":now": now},
            condition_expression="attribute_exists(pk) AND (attribute_not_exists(#deleted) OR #deleted <> :true)",
        )
        return normalize_user(out) or {}

    # --- group membership (stored only on the user as a string set) ---

    def _group_update(self, op: str, user_id: str, group_id: str) -> dict[str, Any]:
        return {
            "key": user_key(user_id),
            "update_expression": f"{op} #groups :g SET #updatedAt = :u",
            "expression_attribute_names": {"#groups": "groups", "#updatedAt": "updatedAt"},
            "expression_attribute_values": {":g": {str(group_id)}, ":u": now_iso()},
            "condition_expression": "attribute_exists(pk)",
        }

    def add_group(self, user_id: str, group_id: str) -> dict[str, Any]:
        out = self._table.update_item(**self._group_update("ADD", user_id, group_id))
        return normalize_user(out) or {}

    def remove_group(self, user_id: str, group_id: str) -> dict[str, Any]:
        out = self._table.update_item(**self._group_update("DELETE", user_id, group_id))
        return normalize_user(out) or {}

    def reconcile_group(self, group_id: str, *, add: Iterable[str], remove: Iterable[str]) -> None:
        """Apply every membership change in one transaction (all-or-nothing)."""
        updates = [self._table.tx_update(**self._group_update("DELETE", uid, group_id)) for uid in remove]
        updates += [self._table.tx_update(**self._group_update("ADD", uid, group_id)) for uid in add]
        self._table.transact_write(updates=updates)

    @staticmethod
    def _duplicate(e: DdbConflict, fields: list[str]) -> DdbConflict:
        # `fields` lines up with the first transaction actions (the unique claims).
        taken = [fields[i] for i in e.failed_actions() if i < len(fields)]
        if not taken:
            return e
        return DuplicateValue(
            message="Duplicate value",
            operation=e.operation,
            table_name=e.table_name,
            code=e.code,
            cancellation_reasons=e.cancellation_reasons,
            cause=e,
            fields=taken,
        )
