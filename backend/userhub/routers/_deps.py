from __future__ import annotations

from fastapi import HTTPException, Request

from ..services.container import Services
from ..services.tokens import AccessClaims


def services(request: Request) -> Services:
    return request.app.state.services


def current_user(request: Request) -> AccessClaims:
    # AuthMiddleware sets request.state.user
    user = getattr(request.state, "user", None)
    if not user or not getattr(user, "user_id", None):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def is_admin(request: Request, claims: AccessClaims) -> bool:
    return bool(claims.role) and claims.role == services(request).settings.admin_role


def require_admin(request: Request) -> AccessClaims:
    claims = current_user(request)
    if not is_admin(request, claims):
        raise HTTPException(status_code=403, detail="Forbidden")
    return claims


def require_self_or_admin(request: Request, user_id: str) -> AccessClaims:
    claims = current_user(request)
    if claims.user_id != str(user_id) and not is_admin(request, claims):
        raise HTTPException(status_code=403, detail="Forbidden")
    return claims


def client_meta(request: Request) -> tuple[str | None, str | None]:
    client = getattr(request, "client", None)
    ip = getattr(client, "host", None) if client else None
    return request.headers.get("user-agent"), ip
