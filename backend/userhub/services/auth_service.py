from __future__ import annotations

import base64
import os
import time
from typing import TYPE_CHECKING, Any

from cachetools import TTLCache

from ..errors import AuthenticationFailed, TokenInvalid, persistence_errors
from ..observability.logging import get_logger
from ..repositories.sessions_repo import SessionsRepository
from ..repositories.users_repo import UsersRepository
from .passwords import PasswordHasher
from .tokens import AccessClaims, TokenSigner
from .users_view import public_user

if TYPE_CHECKING:
    from ..settings import Settings


def new_session_id() -> str:
    return base64.urlsafe_b64encode(os.urandom(24)).decode("ascii").rstrip("=")


class AuthService:
    """Login, session bookkeeping and access-token issuance."""

    def __init__(
        self,
        *,
        settings: Settings,
        users: UsersRepository,
        sessions: SessionsRepository,
        tokens: TokenSigner,
        hasher: PasswordHasher,
    ):
        self._settings = settings
        self._users = users
        self._sessions = sessions
        self._tokens = tokens
        self._hasher = hasher
        self._log = get_logger("auth_service")
        # sid -> expiresAt; avoids a session read on every authenticated request.
        self._session_cache: TTLCache[str, int] = TTLCache(
            maxsize=4096, ttl=max(1, int(settings.session_cache_ttl_seconds))
        )

    def authenticate(
        self,
        username: str,
        password: str,
        *,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> dict[str, Any]:
        with persistence_errors("authenticate"):
            user = self._users.get_by_username(username)

        # One answer for every failure cause; never reveal which part was wrong.
        if (
            not user
            or user.get("deleted")
            or not user.get("active")
            or not self._hasher.verify(password, user.get("password"))
        ):
            self._log.info("login_failed", username=str(username or "")[:64])
            raise AuthenticationFailed(message="auth.wrongCredentials")

        token, _session = self.start_session(user, user_agent=user_agent, ip=ip)
        self._log.info("login_succeeded", user_id=user["id"])
        return {"token": token, "user": public_user(user)}

    def start_session(
        self,
        user: dict[str, Any],
        *,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> tuple[str, dict[str, Any]]:
        """Create a session and an access token bound to it."""
        ttl = int(self._settings.jwt_login_expires_in)
        now = int(time.time())
        sid = new_session_id()
        with persistence_errors("start_session", user_id=user.get("id")):
            session = self._sessions.put_session(
                sid=sid,
                user_id=str(user["id"]),
                username=user.get("username"),
                expires_at=now + ttl,
                user_agent=user_agent,
                ip=ip,
            )
        token = self._tokens.issue_access_token(user=user, session_id=sid, expires_in=ttl, now=now)
        self._session_cache[sid] = now + ttl
        return token, session

    def verify_access_token(self, token: str | None) -> AccessClaims:
        return self._tokens.verify_access_token(token)

    def resolve_session(self, claims: AccessClaims) -> AccessClaims:
        """Reject tokens whose session was logged out or has expired."""
        sid = claims.session_id
        now = int(time.time())
        expires_at = self._session_cache.get(sid)
        if expires_at is None:
            with persistence_errors("resolve_session"):
                session = self._sessions.get_session(sid=sid)
            if not session or str(session.get("userId") or "") != claims.user_id:
                raise TokenInvalid(message="auth.sessionInvalid")
            expires_at = int(session.get("expiresAt") or 0)
            self._session_cache[sid] = expires_at
        if expires_at <= now:
            self._session_cache.pop(sid, None)
            raise TokenInvalid(message="auth.sessionExpired")
        return claims

    def logout(self, session_id: str) -> dict[str, Any]:
        self._session_cache.pop(session_id, None)
        with persistence_errors("logout"):
            self._sessions.delete_session(sid=session_id)
        return {"status": True, "message": "common.operation.success"}

    def list_sessions(self, user_id: str, *, limit: int = 25) -> list[dict[str, Any]]:
        with persistence_errors("list_sessions", user_id=user_id):
            return self._sessions.list_sessions_for_user(user_id=user_id, limit=limit)
