from __future__ import annotations

import re
import secrets
import string
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, BinaryIO

from ..db.dynamodb.errors import DdbConflict, DdbError, DdbNotFound
from ..errors import (
    PersistenceError,
    UserInputError,
    UserNotFound,
    WrongCredential,
    persistence_errors,
)
from ..observability.logging import get_logger
from ..repositories.users_repo import DuplicateValue, UsersRepository
from ..schemas import UserCreate, UserUpdate, validate_input
from .audit_log import AuditLog
from .media_storage import LocalMediaStorage, UploadTooLarge, safe_file_stem
from .passwords import PasswordHasher, is_valid_password_length
from .users_view import actor_action, public_user

if TYPE_CHECKING:
    from ..settings import Settings

_SEARCH_FIELDS = ("name", "username", "email", "phone")
_MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class AvatarUpload:
    filename: str
    mimetype: str | None
    encoding: str | None
    stream: BinaryIO


def _search_pattern(search: str) -> re.Pattern[str]:
    try:
        return re.compile(search, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(search), re.IGNORECASE)


def _cache_buster(n: int = 3) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


class UserService:
    """Account lifecycle: registration, profile changes, soft delete, credentials, avatar."""

    def __init__(
        self,
        *,
        settings: Settings,
        users: UsersRepository,
        audit: AuditLog,
        hasher: PasswordHasher,
        storage: LocalMediaStorage,
    ):
        self._settings = settings
        self._users = users
        self._audit = audit
        self._hasher = hasher
        self._storage = storage
        self._log = get_logger("user_service")

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def _require_password_length(self, field_name: str, password: str | None) -> None:
        if not is_valid_password_length(password, min_length=self._settings.password_min_length):
            raise UserInputError.for_field(field_name, "validation.password.minLength")

    # --- mutations ---

    def create_user(self, data: dict[str, Any], action_by: str | None = None) -> dict[str, Any]:
        payload = validate_input(UserCreate, data)
        self._require_password_length("password", payload.password)

        entity = payload.model_dump(exclude={"password"})
        entity["id"] = uuid.uuid4().hex
        entity["password"] = self.hash_password(payload.password)

        try:
            user = self._users.create(entity)
        except DuplicateValue as e:
            raise UserInputError(
                message="validation.unique",
                input_errors={f: {"message": "validation.unique", "type": "unique"} for f in e.fields},
                cause=e,
            ) from e
        except DdbError as e:
            self._log.error("user_create_failed", username=payload.username, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e

        self._audit.record(action_by, user["id"], "userCreated")
        self._log.info("user_created", user_id=user["id"], action_by=action_by)
        return public_user(user) or {}

    def update_user(self, id: str, data: dict[str, Any], action_by: str | None = None) -> dict[str, Any]:
        payload = validate_input(UserUpdate, data)
        updates = payload.model_dump(exclude_none=True)
        try:
            user = self._users.update(id, updates)
        except DdbNotFound as e:
            raise UserNotFound(message="user.notFound", cause=e) from e
        except DuplicateValue as e:
            raise UserInputError(
                message="validation.unique",
                input_errors={f: {"message": "validation.unique", "type": "unique"} for f in e.fields},
                cause=e,
            ) from e
        except DdbConflict as e:
            # The condition on the user item failed: deleted in the meantime.
            raise UserNotFound(message="user.notFound", cause=e) from e
        except DdbError as e:
            self._log.error("user_update_failed", user_id=id, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e

        self._audit.record(action_by, id, "userModified")
        self._log.info("user_modified", user_id=id, fields=sorted(updates), action_by=action_by)
        return public_user(user) or {}

    def delete_user(self, id: str, action_by: str | None = None) -> dict[str, Any]:
        """Logical delete; the record and its username/email claims are kept."""
        try:
            self._users.soft_delete(id)
        except DdbConflict as e:
            raise UserNotFound(message="user.notFound", cause=e) from e
        except DdbError as e:
            self._log.error("user_delete_failed", user_id=id, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e

        self._audit.record(action_by, id, "userDeleted")
        self._log.info("user_deleted", user_id=id, action_by=action_by)
        return {"success": True, "id": id}

    # --- reads ---

    def find_user(self, id: str, include_deleted: bool = False) -> dict[str, Any] | None:
        with persistence_errors("find_user", user_id=id):
            user = self._users.get(id)
        if not user or (user.get("deleted") and not include_deleted):
            return None
        return public_user(user)

    def find_user_by_username(self, username: str) -> dict[str, Any] | None:
        with persistence_errors("find_user_by_username"):
            user = self._users.get_by_username(username)
        if not user or user.get("deleted"):
            return None
        return public_user(user)

    def find_users(self, roles: list[str] | None = None) -> list[dict[str, Any]]:
        with persistence_errors("find_users"):
            users = self._users.list({"roles": roles or []})
        return [u for u in (public_user(x) for x in users) if u]

    def paginate_users(
        self,
        limit: int,
        page: int = 1,
        search: str | None = None,
        order_by: str | None = None,
        order_desc: bool = False,
        roles: list[str] | None = None,
    ) -> dict[str, Any]:
        limit = max(1, min(int(limit or 1), _MAX_PAGE_SIZE))
        page = max(1, int(page or 1))

        users = self.find_users(roles=roles)
        q = str(search or "").strip()
        if q:
            pattern = _search_pattern(q)
            users = [u for u in users if any(pattern.search(str(u.get(f) or "")) for f in _SEARCH_FIELDS)]
        if order_by:
            users.sort(key=lambda u: str(u.get(order_by) or "").lower(), reverse=bool(order_desc))
        elif order_desc:
            users.reverse()

        start = (page - 1) * limit
        return {"users": users[start : start + limit], "totalItems": len(users), "page": page}

    # --- credentials ---

    def admin_change_password(
        self,
        id: str,
        password: str,
        password_verify: str,
        action_by: str | None = None,
    ) -> dict[str, Any]:
        if password != password_verify:
            return {"status": False, "message": "Password doesn't match"}
        self._require_password_length("password", password)

        with persistence_errors("admin_change_password", user_id=id):
            user = self._users.get(id)
        if not user or user.get("deleted"):
            raise UserNotFound(message="user.notFound")

        with persistence_errors("admin_change_password", user_id=id):
            self._users.set_password(id, self.hash_password(password))

        action = actor_action(action_by, id, self_action="userPasswordChange", other_action="changePasswordAdmin")
        self._audit.record(action_by, id, action)
        self._log.info("password_changed", user_id=id, action=action)
        return {"status": True, "message": "PasswordChange", "operation": "changePasswordAdmin"}

    def change_password(
        self,
        id: str,
        current_password: str,
        new_password: str,
        action_by: str | None = None,
    ) -> dict[str, Any]:
        with persistence_errors("change_password", user_id=id):
            user = self._users.get(id)
        if not user or user.get("deleted"):
            raise UserNotFound(message="user.notFound")

        current_hash = str(user.get("password") or "")
        if not self._hasher.verify(current_password, current_hash):
            self._log.info("password_change_rejected", user_id=id)
            raise WrongCredential(
                message="auth.wrongPassword",
                input_errors={"currentPassword": {"message": "auth.wrongPassword", "type": "credential"}},
            )
        self._require_password_length("newPassword", new_password)

        try:
            self._users.set_password(id, self.hash_password(new_password), expected_hash=current_hash)
        except DdbConflict as e:
            # Changed by someone else after we verified it.
            raise WrongCredential(
                message="auth.wrongPassword",
                input_errors={"currentPassword": {"message": "auth.wrongPassword", "type": "credential"}},
                cause=e,
            ) from e
        except DdbError as e:
            self._log.error("password_change_failed", user_id=id, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e

        action = actor_action(action_by, id, self_action="userPasswordChange", other_action="adminPasswordChange")
        self._audit.record(action_by, id, action)
        self._log.info("password_changed", user_id=id, action=action)
        return {"status": True, "message": "Password Changed"}

    # --- avatar ---

    def avatar_upload(self, user_id: str, upload: AvatarUpload) -> dict[str, Any]:
        """
        Store an avatar as `<username><ext>` and point the user at it. The user
        record only changes once the file is fully written.
        """
        ext = PurePath(str(upload.filename or "")).suffix.lower()
        if ext not in self._settings.avatar_extensions:
            raise UserInputError.for_field("file", "upload.invalidExtension")

        with persistence_errors("avatar_upload", user_id=user_id):
            user = self._users.get(user_id)
        if not user or user.get("deleted"):
            raise UserNotFound(message="user.notFound")

        filename = f"{safe_file_stem(user.get('username'))}{ext}"
        dst = self._storage.avatar_path(filename)
        try:
            self._storage.write_stream(upload.stream, dst, max_bytes=int(self._settings.avatar_max_bytes))
        except UploadTooLarge as e:
            raise UserInputError(
                message="upload.tooLarge",
                input_errors={"file": {"message": "upload.tooLarge", "type": "size", "maxBytes": e.max_bytes}},
                cause=e,
            ) from e

        url = f"{str(self._settings.app_api_url).rstrip('/')}/media/avatar/{filename}?{_cache_buster()}"
        with persistence_errors("avatar_upload", user_id=user_id):
            self._users.set_avatar(user_id, avatar=filename, avatar_url=url)

        self._audit.record(user_id, user_id, "avatarChange")
        self._log.info("avatar_changed", user_id=user_id, filename=filename)
        # `filename` echoes the uploaded name; the stored name is in `url`.
        return {"filename": upload.filename, "mimetype": upload.mimetype, "encoding": upload.encoding, "url": url}
