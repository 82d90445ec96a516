"""FastAPI dependencies for the feedback routes.

The request body is parsed exactly once by `read_submission_body`.
FastAPI caches a dependency's value for the lifetime of a request, so the
per-repo rate limit gate and the handler share the same parsed object.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Request, Response

from bugdrop.core.config import Settings
from bugdrop.core.limiter import RateLimiters, get_client_id
from bugdrop.feedback.pipeline import FeedbackPipeline


@dataclass(frozen=True)
class SubmissionBody:
    data: Any = None
    error: Optional[str] = None


async def read_submission_body(request: Request) -> SubmissionBody:
    try:
        return SubmissionBody(data=await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return SubmissionBody(error="Invalid JSON")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> FeedbackPipeline:
    return request.app.state.pipeline


def get_rate_limiters(request: Request) -> RateLimiters:
    return request.app.state.rate_limiters


async def limit_by_client(
    request: Request,
    response: Response,
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> None:
    decision = await limiters.client.check(get_client_id(request))
    if decision is not None:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)


async def limit_by_repo(
    response: Response,
    body: SubmissionBody = Depends(read_submission_body),
    limiters: RateLimiters = Depends(get_rate_limiters),
) -> None:
    """Per-repository gate. Bodies without a usable repo fall through to validation."""
    repo = body.data.get("repo") if isinstance(body.data, dict) else None
    if not isinstance(repo, str) or not repo:
        return

    decision = await limiters.repo.check(repo)
    if decision is not None:
        response.headers["X-RateLimit-Repo-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Repo-Remaining"] = str(decision.remaining)
