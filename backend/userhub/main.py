from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .db.dynamodb.errors import (
    DdbConflict,
    DdbError,
    DdbNotFound,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from .errors import (
    AuthenticationFailed,
    DeliveryError,
    IdentityError,
    PersistenceError,
    StorageError,
    TokenInvalid,
    UserInputError,
    UserNotFound,
)
from .middleware.access_log import AccessLogMiddleware
from .middleware.auth import AuthMiddleware
from .middleware.cors import build_allowed_origins
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .routers.auth import router as auth_router
from .routers.groups import router as groups_router
from .routers.health import router as health_router
from .routers.users import router as users_router
from .services.container import Services, build_services
from .settings import Settings, get_settings


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()

    # Logging must be configured before the app starts handling requests.
    configure_logging(level=settings.log_level)
    log = get_logger("startup")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        yield

    app = FastAPI(
        title="User Account Service",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        # Avoid 307/308 redirects between /path and /path/ behind proxies.
        redirect_slashes=False,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Middlewares (order matters; last added is outermost)
    # Auth runs inside CORS so auth failures still get CORS headers.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(app_web_url=settings.app_web_url, cors_origins=settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
        max_age=3000,
    )
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(IdentityError, _identity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Routes
    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(users_router, prefix="/api/users")
    app.include_router(groups_router, prefix="/api/groups")

    app.mount(
        "/media/avatar",
        StaticFiles(directory=str(Path(settings.media_root) / "avatar"), check_dir=False),
        name="avatar",
    )

    return app


def _identity_status(exc: IdentityError) -> tuple[int, str]:
    if isinstance(exc, UserInputError):
        return 422, "Validation Failed"
    if isinstance(exc, UserNotFound):
        return 404, "Not Found"
    if isinstance(exc, AuthenticationFailed):
        return 401, "Unauthorized"
    if isinstance(exc, TokenInvalid):
        return 400, "Invalid Token"
    if isinstance(exc, PersistenceError):
        if isinstance(exc.cause, (DdbThrottled, DdbUnavailable)):
            return 503, "Service Unavailable"
        return 500, "Storage Error"
    if isinstance(exc, DeliveryError):
        return 502, "Email Delivery Failed"
    if isinstance(exc, StorageError):
        return 500, "Storage Error"
    return 500, "Internal Server Error"


def _identity_error_handler(request: Request, exc: IdentityError) -> Response:
    status_code, title = _identity_status(exc)
    errors = exc.to_problem_errors() if isinstance(exc, UserInputError) else None
    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=exc.message,
        errors=errors,
    )


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    # Map storage-layer errors to stable HTTP semantics.
    status_code = 500
    title = "Storage Error"

    if isinstance(exc, DdbValidation):
        status_code = 400
        title = "Bad Request"
    elif isinstance(exc, DdbNotFound):
        status_code = 404
        title = "Not Found"
    elif isinstance(exc, DdbConflict):
        status_code = 409
        title = "Conflict"
    elif isinstance(exc, (DdbThrottled, DdbUnavailable)):
        status_code = 503
        title = "Service Unavailable"

    extensions = {
        "operation": exc.operation,
        "table": exc.table_name,
        "awsRequestId": exc.aws_request_id,
        "retryable": bool(exc.retryable),
    }
    extensions = {k: v for k, v in extensions.items() if v is not None}

    # In production, problem_response already suppresses 5xx detail.
    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=str(exc),
        extensions=extensions,
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)
    safe_detail = str(detail) if detail is not None else None

    if status_code == 404:
        safe_detail = safe_detail if safe_detail and safe_detail != "Not Found" else "Route not found"

    return problem_response(request=request, status_code=status_code, detail=safe_detail)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        loc_path = ".".join([str(x) for x in loc if x != "body"])
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": loc_path,
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Operators need the traceback; the response stays generic in production.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    get_logger("unhandled").exception(
        "unhandled_exception",
        request_id=str(rid) if rid else None,
        http_method=str(getattr(request, "method", "") or "").upper() or None,
        path=str(getattr(getattr(request, "url", None), "path", "") or ""),
        error_type=type(exc).__name__,
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()
