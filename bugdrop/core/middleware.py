"""ASGI middleware for the BugDrop API.

Three middlewares registered in order (outermost → innermost):
  1. CORSMiddleware: cross-origin headers on every response
  2. RequestIdMiddleware: injects / forwards X-Request-ID; stores in ContextVar
  3. SecurityHeadersMiddleware: adds security response headers

CORS is outermost so 4xx/5xx bodies rendered by the exception handlers are
still readable by the embedding page.
"""

import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

# ---------------------------------------------------------------------------
# ContextVar: shared across middleware and route handlers within one request
# ---------------------------------------------------------------------------

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


# ---------------------------------------------------------------------------
# RequestIdMiddleware
# ---------------------------------------------------------------------------


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Read or generate X-Request-ID and make it available for the request lifetime.

    - If the client sends X-Request-ID, that value is reused.
    - If absent, a fresh UUID4 is generated.
    - The ID is always echoed back in the response header.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        token = _request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# SecurityHeadersMiddleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security-related headers to every outgoing response.

    X-Frame-Options is deliberately absent: the widget talks to this API
    from inside third-party pages.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# CORSMiddleware
# ---------------------------------------------------------------------------

ALLOWED_METHODS = ("GET", "POST", "OPTIONS")
ALLOWED_HEADERS = ("Content-Type",)
PREFLIGHT_MAX_AGE = 86400


def resolve_allowed_origin(origin: Optional[str], allowed: list[str]) -> Optional[str]:
    """Pick the Access-Control-Allow-Origin value for a request.

    Requests without an Origin header (curl, server-to-server) get "*".
    A wildcard list echoes the caller's origin; otherwise the origin must
    be whitelisted, and None means "send no allow-origin header".
    """
    if not origin:
        return "*"
    if "*" in allowed:
        return origin
    return origin if origin in allowed else None


class CORSMiddleware(BaseHTTPMiddleware):
    """Cross-origin headers for the embeddable widget.

    Starlette's own CORSMiddleware skips requests without an Origin header
    and answers preflights with 200; the widget contract wants headers on
    every response and a bodiless 204 preflight.
    """

    def __init__(self, app: ASGIApp, allowed_origins: list[str]) -> None:
        super().__init__(app)
        self.allowed_origins = allowed_origins

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        allow_origin = resolve_allowed_origin(
            request.headers.get("Origin"), self.allowed_origins
        )

        if (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        ):
            response = Response(status_code=204)
            response.headers["Access-Control-Allow-Methods"] = ", ".join(ALLOWED_METHODS)
            response.headers["Access-Control-Allow-Headers"] = ", ".join(ALLOWED_HEADERS)
            response.headers["Access-Control-Max-Age"] = str(PREFLIGHT_MAX_AGE)
        else:
            response = await call_next(request)

        if allow_origin is not None:
            response.headers["Access-Control-Allow-Origin"] = allow_origin
            if allow_origin != "*":
                response.headers["Vary"] = "Origin"
        return response
