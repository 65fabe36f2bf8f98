import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .background.expiry_sweep import ExpirySweepScheduler
from .config import settings
from .database import dispose_engine, get_engine, get_session_factory
from .domain.invariants import InvariantViolation
from .errors import (
    AppError,
    AuthError,
    ConflictError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    error_payload,
    resolve_error_code,
)
from .infrastructure.redis import close_redis, init_redis
from .services.audit.audit_service import AuditService
from .services.permission_cache import PermissionCache


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


log_level = _resolve_log_level(os.getenv("LOG_LEVEL", "INFO").upper())

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
logger = logging.getLogger("authz")
logger.setLevel(log_level)

SAFE_HTTP_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.message,
    status.HTTP_401_UNAUTHORIZED: AuthError.message,
    status.HTTP_403_FORBIDDEN: PermissionDeniedError.message,
    status.HTTP_404_NOT_FOUND: NotFoundError.message,
    status.HTTP_409_CONFLICT: ConflictError.message,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application")
    if settings.debug:
        logger.warning("DEBUG=true - do not use in production")

    redis = await init_redis(settings.redis_url)
    sweep: ExpirySweepScheduler | None = None
    if settings.expiry_sweep_enabled:
        sweep = ExpirySweepScheduler(
            redis=redis,
            session_factory=get_session_factory(),
            cache=PermissionCache(redis),
            audit=AuditService(get_session_factory()),
            interval_seconds=settings.expiry_sweep_interval_seconds,
        )
        await sweep.start()
    app.state.expiry_sweep = sweep

    yield

    if sweep is not None:
        await sweep.stop()
    await close_redis()
    await dispose_engine()


def _log_error(request: Request, status_code: int, code: str, message: str, exc: Exception | None = None) -> None:
    request_id = request.headers.get("x-request-id")
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        log = logger.error
    else:
        log = logger.warning
    log(
        "[%s] path=%s request_id=%s message=%s",
        code,
        request.url.path,
        request_id or "n/a",
        message,
        exc_info=exc,
    )


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.code, exc.message, exc.details),
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    safe_message = SAFE_HTTP_MESSAGES.get(
        exc.status_code,
        InternalError.message if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else "Request failed",
    )
    code = resolve_error_code(exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else ""
    _log_error(request, exc.status_code, code, detail.strip() or safe_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, safe_message),
        headers=getattr(exc, "headers", None),
    )


async def handle_invariant_violation(request: Request, exc: InvariantViolation) -> JSONResponse:
    message = str(exc)
    _log_error(request, status.HTTP_409_CONFLICT, "INVARIANT_VIOLATION", message)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_payload(
            "INVARIANT_VIOLATION",
            message,
            {"invariant": exc.invariant, **exc.details},
        ),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "Request validation failed"
    _log_error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, ValidationError.code, message)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_payload(ValidationError.code, message, exc.errors()),
    )


async def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    message = "Request could not be completed due to a conflict"
    _log_error(request, status.HTTP_409_CONFLICT, ConflictError.code, message, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_payload(ConflictError.code, message),
    )


async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    _log_error(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        InternalError.message,
        exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(InternalError.code, InternalError.message),
    )


async def healthcheck() -> Response:
    try:
        async with get_engine().connect() as connection:
            await connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Healthcheck database probe failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "error"}
        )
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})


def create_app(*, with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan if with_lifespan else None,
    )
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(InvariantViolation, handle_invariant_violation)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(IntegrityError, handle_integrity_error)
    app.add_exception_handler(Exception, handle_unhandled_exception)
    app.add_api_route("/health", healthcheck, methods=["GET"], tags=["health"])
    return app
