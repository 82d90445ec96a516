from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bugdrop.core.config import Settings, check_configuration, get_settings
from bugdrop.core.errors import BugDropError
from bugdrop.core.limiter import CounterStore, RedisCounterStore, build_rate_limiters
from bugdrop.core.middleware import (
    CORSMiddleware,
    RequestIdMiddleware,
    SecurityHeadersMiddleware,
)
from bugdrop.feedback.pipeline import FeedbackPipeline
from bugdrop.feedback.router import router as feedback_router

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"


async def _bugdrop_error_handler(request: Request, exc: BugDropError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers(),
    )


def create_app(
    settings: Optional[Settings] = None,
    counter_store: Optional[CounterStore] = None,
) -> FastAPI:
    if settings is None:
        settings = get_settings()

    # ---------------------------------------------------------------------------
    # Logging: configure structlog before anything logs
    # ---------------------------------------------------------------------------
    from bugdrop.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from bugdrop.core.sentry import init_sentry

    init_sentry(dsn=settings.sentry_dsn, environment=settings.environment)

    # ---------------------------------------------------------------------------
    # Startup configuration check: logged once, handed to the pipeline
    # ---------------------------------------------------------------------------
    diagnostics = check_configuration(settings)
    if diagnostics.missing:
        logger.warning(
            "missing_configuration",
            missing=list(diagnostics.missing),
            impact="feedback endpoint will fail",
        )
    for warning in diagnostics.warnings:
        logger.warning("configuration_warning", detail=warning)

    if counter_store is None and settings.redis_url:
        counter_store = RedisCounterStore.from_url(settings.redis_url)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if isinstance(counter_store, RedisCounterStore):
            await counter_store.aclose()

    _app = FastAPI(
        title="BugDrop API",
        description="Turns in-page bug reports into GitHub issues via a GitHub App",
        version=API_VERSION,
        lifespan=lifespan,
    )

    _app.state.settings = settings
    _app.state.diagnostics = diagnostics
    _app.state.pipeline = FeedbackPipeline(settings, diagnostics)
    _app.state.rate_limiters = build_rate_limiters(settings, counter_store)

    _app.add_exception_handler(BugDropError, _bugdrop_error_handler)

    # ---------------------------------------------------------------------------
    # Middleware: the last one added runs outermost
    # ---------------------------------------------------------------------------

    _app.add_middleware(SecurityHeadersMiddleware)

    # Request ID: inject / forward X-Request-ID and bind to ContextVar
    _app.add_middleware(RequestIdMiddleware)

    # CORS outermost so every response, errors and preflights included,
    # is readable from the embedding page.
    _app.add_middleware(CORSMiddleware, allowed_origins=settings.origin_list)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/")
    async def index() -> dict:
        return {
            "name": "BugDrop API",
            "version": API_VERSION,
            "docs": {
                "health": "GET /api/health",
                "check": "GET /api/check/:owner/:repo",
                "feedback": "POST /api/feedback",
            },
        }

    _app.include_router(feedback_router)

    return _app


app = create_app()
