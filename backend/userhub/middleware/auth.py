from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from ..errors import IdentityError, PersistenceError, TokenInvalid
from ..observability.logging import get_logger
from ..problem_details import problem_response

_PUBLIC_PATHS = {
    "/api/auth/login",
    "/api/auth/recovery/request",
    "/api/auth/recovery/consume",
}


def is_public_path(path: str) -> bool:
    # "GET /" health is public.
    if path == "/":
        return True
    return path in _PUBLIC_PATHS


def bearer_token(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = str(auth).split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer-token enforcement for /api routes.

    A valid token must be signed by us, unexpired, and bound to a live
    session. The verified claims are stored in request.state.user.
    Added before CORSMiddleware so auth failures still carry CORS headers.
    """

    def __init__(self, app):
        super().__init__(app)
        self._log = get_logger("auth_middleware")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        # Let CORS preflight through; non-API paths (health, media) are not guarded.
        if request.method.upper() == "OPTIONS" or not path.startswith("/api/") or is_public_path(path):
            return await call_next(request)

        token = bearer_token(request)
        if not token:
            return self._deny(request, 401, "auth.tokenMissing")

        auth = request.app.state.services.auth
        try:
            claims = auth.verify_access_token(token)
            claims = await run_in_threadpool(auth.resolve_session, claims)
        except TokenInvalid as e:
            return self._deny(request, 401, e.message)
        except PersistenceError as e:
            return self._deny(request, 503, e.message)
        except IdentityError as e:
            return self._deny(request, 401, e.message)

        request.state.user = claims
        return await call_next(request)

    def _deny(self, request: Request, status_code: int, detail: str):
        log = self._log.warning if status_code >= 500 else self._log.info
        log("auth_middleware_denied", status_code=status_code, path=request.url.path, reason=detail)
        return problem_response(
            request=request,
            status_code=status_code,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"} if status_code == 401 else None,
        )
