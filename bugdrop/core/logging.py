"""Structured logging via structlog.

Configures structlog once at application startup. All subsequent calls to
`structlog.get_logger()` (or `logging.getLogger()` via the stdlib bridge)
use this configuration.

Renderer selection:
  debug=True: `ConsoleRenderer` with colours for local development.
  debug=False: `JSONRenderer` for machine-parseable logs in production.

The `request_id` bound by `RequestIdMiddleware` is injected into every log
line, so handlers never pass it around by hand. Values under keys that look
like credentials (private key, token, authorization) are redacted before
any renderer sees them.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from bugdrop.core.middleware import get_request_id


def _inject_request_id(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: inject request_id from the middleware ContextVar."""
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


# Any event key containing one of these has its value replaced before rendering.
_REDACTED_KEYS = ("private_key", "token", "authorization", "secret")
REDACTED = "[REDACTED]"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(k) else _redact(v)
            for k, v in value.items()
        }
    return value


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and any(s in key.lower() for s in _REDACTED_KEYS)


def _redact_credentials(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: keep App keys and GitHub tokens out of log output.

    Nested dicts (e.g. bound request headers) are walked as well. The
    `event` name itself is never touched.
    """
    for key in list(event_dict):
        if key == "event":
            continue
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog for the application lifetime.

    Call once from `create_app()` before any routers log anything.
    Calling multiple times is safe.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_request_id,
        _redact_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging so httpx and uvicorn output lands in the same stream.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )
