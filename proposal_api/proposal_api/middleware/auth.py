"""Authentication middleware that resolves bearer tokens to a user.

Extracts ``Authorization: Bearer <token>`` from every request, resolves it
through the identity provider, and populates ``request.state`` with
``user_id`` and ``email``.

Endpoints listed in ``_PUBLIC_PATHS`` bypass authentication.  The Stripe
webhook is public here because it authenticates by payload signature.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from proposal_api.dependencies import get_identity_client
from proposal_api.errors import AppError, ConfigMissing, Unauthenticated

logger = logging.getLogger(__name__)

_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/api/v1/billing/webhooks",
    }
)

_PUBLIC_PREFIXES: tuple[str, ...] = ("/docs/",)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


def _error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def _extract_bearer(header: str | None) -> str | None:
    if not header:
        return None
    parts = header.split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Lets public paths and CORS preflights through untouched.
    2. Extracts the bearer token; anything else is a 401.
    3. Resolves the token with the identity provider (one round-trip).
    4. Stores ``user_id`` and ``email`` on ``request.state``.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or _is_public_path(path):
            return await call_next(request)

        token = _extract_bearer(request.headers.get("authorization"))
        if token is None:
            return _error_response(Unauthenticated())

        client = get_identity_client()
        if not client.configured:
            logger.error("Identity provider is not configured; rejecting %s", path)
            return _error_response(ConfigMissing("identity_url", "identity_public_key"))

        identity = await client.resolve(token)
        if identity is None:
            return _error_response(Unauthenticated())

        request.state.user_id = identity.user_id
        request.state.email = identity.email
        return await call_next(request)
