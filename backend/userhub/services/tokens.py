from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from ..errors import TokenExpired, TokenInvalid

RECOVERY_OPERATION = "recovery"


@dataclass
class AccessClaims:
    user_id: str
    username: str
    role: str | None
    session_id: str
    groups: list[str]
    claims: dict[str, Any]


class TokenSigner:
    """HMAC-signed JWTs with an expiry. Verification fails closed."""

    def __init__(self, *, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("secret is required")
        self._secret = secret
        self.algorithm = algorithm

    def sign(self, claims: dict[str, Any], *, expires_in: int, now: int | None = None) -> str:
        iat = int(now if now is not None else time.time())
        payload = {**claims, "iat": iat, "exp": iat + int(expires_in)}
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str | None, *, operation: str | None = None) -> dict[str, Any]:
        if not token or not str(token).strip():
            raise TokenInvalid(message="auth.tokenInvalid")
        try:
            claims = jwt.decode(
                str(token).strip(),
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_aud": False, "require_exp": True},
            )
        except ExpiredSignatureError as e:
            raise TokenExpired(message="auth.tokenExpired", cause=e) from e
        except JWTError as e:
            raise TokenInvalid(message="auth.tokenInvalid", cause=e) from e

        if operation is not None and claims.get("operation") != operation:
            raise TokenInvalid(message="auth.tokenInvalid")
        if not str(claims.get("id") or "").strip():
            raise TokenInvalid(message="auth.tokenInvalid")
        return claims

    # --- recovery tokens ---

    def issue_recovery_token(
        self,
        *,
        user_id: str,
        fingerprint: str,
        expires_in: int,
        now: int | None = None,
    ) -> str:
        return self.sign(
            {"id": str(user_id), "operation": RECOVERY_OPERATION, "fp": fingerprint},
            expires_in=expires_in,
            now=now,
        )

    def verify_recovery_token(self, token: str | None) -> dict[str, Any]:
        return self.verify(token, operation=RECOVERY_OPERATION)

    # --- access tokens ---

    def issue_access_token(
        self,
        *,
        user: dict[str, Any],
        session_id: str,
        expires_in: int,
        now: int | None = None,
    ) -> str:
        user_id = str(user.get("id") or "")
        payload = {
            "id": user_id,
            "username": str(user.get("username") or ""),
            "role": user.get("role"),
            "groups": sorted(str(g) for g in (user.get("groups") or [])),
            "idSession": str(session_id),
            "jti": user_id,
        }
        return self.sign(payload, expires_in=expires_in, now=now)

    def verify_access_token(self, token: str | None) -> AccessClaims:
        claims = self.verify(token)
        if claims.get("operation"):
            # Recovery tokens never authenticate requests.
            raise TokenInvalid(message="auth.tokenInvalid")
        sid = str(claims.get("idSession") or "").strip()
        if not sid:
            raise TokenInvalid(message="auth.tokenInvalid")
        return AccessClaims(
            user_id=str(claims["id"]),
            username=str(claims.get("username") or ""),
            role=claims.get("role"),
            session_id=sid,
            groups=[str(g) for g in (claims.get("groups") or [])],
            claims=claims,
        )
