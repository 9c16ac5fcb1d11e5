from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable

from ..db.dynamodb.errors import CONDITIONAL_CHECK_FAILED, DdbConflict, DdbError
from ..errors import PersistenceError, UserNotFound, persistence_errors
from ..observability.logging import get_logger
from ..repositories.groups_repo import GroupsRepository
from ..repositories.users_repo import UsersRepository
from ..schemas import GroupInput, validate_input
from .audit_log import AuditLog
from .users_view import public_user

if TYPE_CHECKING:
    from ..settings import Settings

# DynamoDB's hard cap on actions per TransactWriteItems call.
_MAX_TRANSACTION_ITEMS = 100

# Reported for actions of a cancelled transaction that were not themselves rejected.
TRANSACTION_CANCELLED = "transactionCancelled"


@dataclass(slots=True)
class GroupSyncResult:
    group_id: str
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "added": list(self.added),
            "removed": list(self.removed),
            "failed": list(self.failed),
            "ok": self.ok,
        }


def _clean_ids(ids: Iterable[Any] | None) -> list[str]:
    out: list[str] = []
    for x in ids or []:
        s = str(x or "").strip()
        if s and s not in out:
            out.append(s)
    return out


class GroupService:
    def __init__(
        self,
        *,
        settings: Settings,
        groups: GroupsRepository,
        users: UsersRepository,
        audit: AuditLog,
    ):
        self._settings = settings
        self._groups = groups
        self._users = users
        self._audit = audit
        self._log = get_logger("group_service")

    def create_group(self, data: dict[str, Any], action_by: str | None = None) -> dict[str, Any]:
        payload = validate_input(GroupInput, data)
        with persistence_errors("create_group"):
            group = self._groups.create({"id": uuid.uuid4().hex, **payload.model_dump()})
        self._audit.record(action_by, group["id"], "groupCreated")
        return group

    def find_group(self, id: str) -> dict[str, Any] | None:
        with persistence_errors("find_group", group_id=id):
            return self._groups.get(id)

    def find_groups(self, name: str | None = None) -> list[dict[str, Any]]:
        with persistence_errors("find_groups"):
            return self._groups.list({"name": name})

    def update_group(self, id: str, data: dict[str, Any], action_by: str | None = None) -> dict[str, Any]:
        payload = validate_input(GroupInput, data)
        try:
            group = self._groups.update(id, payload.model_dump())
        except DdbConflict as e:
            raise UserNotFound(message="group.notFound", cause=e) from e
        except DdbError as e:
            self._log.error("group_update_failed", group_id=id, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e
        self._audit.record(action_by, id, "groupModified")
        return group

    def find_group_members(self, group_id: str) -> list[dict[str, Any]]:
        with persistence_errors("find_group_members", group_id=group_id):
            users = self._users.find_by_group(group_id)
        return [u for u in (public_user(x) for x in users) if u]

    def set_group_members(
        self,
        group_id: str,
        desired_user_ids: Iterable[Any],
        action_by: str | None = None,
    ) -> GroupSyncResult:
        """
        Make the group's membership equal to `desired_user_ids`.

        Small change sets are applied in a single transaction; larger ones member
        by member, with failures reported in the result rather than raised.
        Soft-deleted members count as members. Soft-deleted users are never
        added and are reported in `failed` instead.
        """
        if not self.find_group(group_id):
            raise UserNotFound(message="group.notFound")

        desired = set(_clean_ids(desired_user_ids))
        with persistence_errors("set_group_members", group_id=group_id):
            members = self._users.list({"group_id": group_id, "include_deleted": True})
        current = {str(u["id"]) for u in members}
        to_remove = sorted(current - desired)

        result = GroupSyncResult(group_id=group_id)
        to_add: list[str] = []
        for uid in sorted(desired - current):
            with persistence_errors("set_group_members", group_id=group_id, user_id=uid):
                user = self._users.get(uid)
            if user and user.get("deleted"):
                result.failed.append({"userId": uid, "operation": "add", "error": "user.deleted"})
            else:
                to_add.append(uid)

        if not to_remove and not to_add and result.ok:
            return result

        if to_remove or to_add:
            limit = min(int(self._settings.group_sync_transaction_limit), _MAX_TRANSACTION_ITEMS)
            if len(to_remove) + len(to_add) <= limit:
                self._sync_in_transaction(result, to_add=to_add, to_remove=to_remove)
            else:
                self._sync_per_member(result, to_add=to_add, to_remove=to_remove)

        for uid in result.removed:
            self._audit.record(action_by, uid, "groupMemberRemoved")
        for uid in result.added:
            self._audit.record(action_by, uid, "groupMemberAdded")

        log = self._log.info if result.ok else self._log.warning
        log(
            "group_members_synced",
            group_id=group_id,
            added=len(result.added),
            removed=len(result.removed),
            failed=len(result.failed),
        )
        return result

    def _sync_in_transaction(self, result: GroupSyncResult, *, to_add: list[str], to_remove: list[str]) -> None:
        try:
            self._users.reconcile_group(result.group_id, add=to_add, remove=to_remove)
        except DdbError as e:
            # Nothing was applied: every action is reported, the rejected ones with their reason.
            actions = [(uid, "remove") for uid in to_remove] + [(uid, "add") for uid in to_add]
            rejected = {i for i in e.failed_actions() if i < len(actions)}
            for i, (uid, op) in enumerate(actions):
                if not rejected:
                    error = str(e)
                elif i in rejected:
                    error = CONDITIONAL_CHECK_FAILED
                else:
                    error = TRANSACTION_CANCELLED
                result.failed.append({"userId": uid, "operation": op, "error": error})
            return
        result.removed.extend(to_remove)
        result.added.extend(to_add)

    def _sync_per_member(self, result: GroupSyncResult, *, to_add: list[str], to_remove: list[str]) -> None:
        for uid in to_remove:
            try:
                self._users.remove_group(uid, result.group_id)
            except DdbError as e:
                result.failed.append({"userId": uid, "operation": "remove", "error": str(e)})
            else:
                result.removed.append(uid)
        for uid in to_add:
            try:
                self._users.add_group(uid, result.group_id)
            except DdbError as e:
                result.failed.append({"userId": uid, "operation": "add", "error": str(e)})
            else:
                result.added.append(uid)
