"""
Password recovery.

    Requested -> TokenIssued -> Consumed | Expired

Recovery tokens are not stored. Each one carries a fingerprint of the password
hash it was issued against, so it stops verifying as soon as the password
changes; that is what makes a token single-use.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..db.dynamodb.errors import DdbConflict, DdbError
from ..errors import DeliveryError, PersistenceError, TokenInvalid, UserInputError, persistence_errors
from ..observability.logging import get_logger
from ..repositories.users_repo import UsersRepository
from .audit_log import AuditLog
from .auth_service import AuthService
from .passwords import PasswordHasher, credential_fingerprint, is_valid_password_length
from .tokens import TokenSigner

if TYPE_CHECKING:
    from ..settings import Settings

SUCCESS = "common.operation.success"


class RecoveryService:
    def __init__(
        self,
        *,
        settings: Settings,
        users: UsersRepository,
        tokens: TokenSigner,
        hasher: PasswordHasher,
        email_sender: Any,
        audit: AuditLog,
        auth: AuthService,
    ):
        self._settings = settings
        self._users = users
        self._tokens = tokens
        self._hasher = hasher
        self._email = email_sender
        self._audit = audit
        self._auth = auth
        self._log = get_logger("recovery_service")

    def recovery_link(self, token: str) -> str:
        return f"{str(self._settings.app_web_url).rstrip('/')}/recovery/{token}"

    def request_recovery(self, email: str, *, now: int | None = None) -> dict[str, Any]:
        """
        Issue a recovery token and email it.

        Unknown addresses get the same answer as known ones unless
        RECOVERY_REVEAL_UNKNOWN_EMAIL is set. Delivery failures raise
        `DeliveryError` and leave no audit record.
        """
        addr = str(email or "").strip().lower()
        with persistence_errors("request_recovery"):
            user = self._users.get_by_email(addr) if addr else None

        if not user or user.get("deleted"):
            self._log.info(
                "recovery_requested_unknown_email",
                email_domain=addr.split("@", 1)[1] if "@" in addr else None,
            )
            if self._settings.recovery_reveal_unknown_email:
                return {"status": False, "message": "user.notFound"}
            return {"status": True, "message": SUCCESS}

        token = self._tokens.issue_recovery_token(
            user_id=user["id"],
            fingerprint=credential_fingerprint(user.get("password")),
            expires_in=int(self._settings.recovery_token_ttl_seconds),
            now=now,
        )
        sent = self._email.send_recovery_email(addr, self.recovery_link(token), user)
        if not sent:
            self._log.error("recovery_email_not_sent", user_id=user["id"])
            raise DeliveryError(message="common.operation.fail")

        self._audit.record(user["id"], user["id"], "passwordRecovery")
        self._log.info("recovery_email_sent", user_id=user["id"])
        return {"status": True, "message": SUCCESS}

    def consume_recovery(
        self,
        token: str,
        new_password: str,
        *,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> dict[str, Any]:
        """
        Reset the password with a recovery token, then log the user in.

        Either every step succeeds or the caller gets an error: when the session
        can't be created the previous password hash is put back.
        """
        claims = self._tokens.verify_recovery_token(token)

        if not is_valid_password_length(new_password, min_length=self._settings.password_min_length):
            raise UserInputError.for_field("newPassword", "validation.password.minLength")

        user_id = str(claims["id"])
        with persistence_errors("consume_recovery", user_id=user_id):
            user = self._users.get(user_id)
        if not user or user.get("deleted"):
            self._log.warning("recovery_user_missing", user_id=user_id)
            raise TokenInvalid(message="auth.tokenInvalid")

        old_hash = str(user.get("password") or "")
        if claims.get("fp") != credential_fingerprint(old_hash):
            # Already consumed, or the password changed after the token was issued.
            self._log.info("recovery_token_stale", user_id=user_id)
            raise TokenInvalid(message="auth.tokenInvalid")

        new_hash = self._hasher.hash(new_password)
        try:
            updated = self._users.set_password(user_id, new_hash, expected_hash=old_hash)
        except DdbConflict as e:
            # A concurrent consumption won the race.
            raise TokenInvalid(message="auth.tokenInvalid", cause=e) from e
        except DdbError as e:
            self._log.error("recovery_password_update_failed", user_id=user_id, error=str(e))
            raise PersistenceError(message="common.operation.fail", cause=e) from e

        try:
            access_token, _session = self._auth.start_session(
                {**user, **updated}, user_agent=user_agent, ip=ip
            )
        except PersistenceError:
            self._restore_password(user_id, old_hash=old_hash, new_hash=new_hash)
            raise

        self._audit.record(user_id, user_id, "userRecoveryPasswordChange")
        self._log.info("recovery_password_changed", user_id=user_id)
        return {"status": True, "token": access_token, "message": SUCCESS}

    def _restore_password(self, user_id: str, *, old_hash: str, new_hash: str) -> None:
        try:
            self._users.set_password(user_id, old_hash, expected_hash=new_hash)
        except DdbError as e:
            self._log.error("recovery_password_restore_failed", user_id=user_id, error=str(e))
            return
        self._log.warning("recovery_password_restored", user_id=user_id)
