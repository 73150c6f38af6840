"""Error taxonomy and the exception handlers that render it.

Every failure a client can observe is an :class:`AppError` subclass.  The
handler renders each one as ``{"error": message}`` plus any extra fields the
error carries (the quota error adds ``code``, ``limit`` and ``used``).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors with a client-facing status and message."""

    status_code: int = 500
    message: str = "Unexpected error"
    code: str | None = None

    def __init__(self, message: str | None = None, *, code: str | None = None, **extra: Any) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        payload.update(self.extra)
        return payload


class Unauthenticated(AppError):
    status_code = 401
    message = "Unauthorized"


class InvalidInput(AppError):
    status_code = 400
    message = "Invalid request"


class Forbidden(AppError):
    status_code = 403
    message = "Forbidden"


class ProposalNotFound(AppError):
    status_code = 404
    message = "Proposal not found"


class QuotaExceeded(AppError):
    """Free-plan allowance for the current calendar month is used up."""

    status_code = 402
    code = "FREE_LIMIT_REACHED"

    def __init__(self, limit: int, used: int) -> None:
        super().__init__(
            f"Free plan limit reached ({limit}/month). Upgrade to Pro for unlimited proposals.",
            limit=limit,
            used=used,
        )
        self.limit = limit
        self.used = used


class QuotaCheckFailed(AppError):
    message = "Could not check usage"


class ProfileLoadFailed(AppError):
    message = "Could not load user plan"


class GenerationFailed(AppError):
    message = "Proposal generation failed"


class PersistenceFailed(AppError):
    message = "Save failed"


class ConfigMissing(AppError):
    """A required setting is unset.  Field names are logged, never returned."""

    message = "Server is not configured"

    def __init__(self, *fields: str) -> None:
        super().__init__()
        self.fields = fields


class SignatureInvalid(AppError):
    status_code = 400
    message = "Invalid signature"


class UpstreamLookupFailed(AppError):
    message = "Upstream lookup failed"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    if isinstance(exc, ConfigMissing):
        logger.log(level, "Missing configuration on %s: %s", request.url.path, ", ".join(exc.fields))
    else:
        logger.log(
            level,
            "%s on %s: status=%d message=%s",
            type(exc).__name__,
            request.url.path,
            exc.status_code,
            exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("HTTP %d on %s", exc.status_code, request.url.path)
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Request validation failed on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal database error"})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Unexpected error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
