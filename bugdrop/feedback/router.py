"""Widget-facing endpoints.

All three are public: the widget runs on third-party pages and has no
credentials of its own. POST /feedback sits behind the per-client and
per-repo rate limit gates, applied in that order.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from bugdrop.core.config import Settings
from bugdrop.core.errors import ValidationError
from bugdrop.feedback.dependencies import (
    SubmissionBody,
    get_app_settings,
    get_pipeline,
    limit_by_client,
    limit_by_repo,
    read_submission_body,
)
from bugdrop.feedback.pipeline import FeedbackPipeline
from bugdrop.feedback.schemas import CheckResponse, FeedbackResponse, HealthResponse

router = APIRouter(prefix="/api", tags=["feedback"])


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/check/{owner}/{repo}", response_model=CheckResponse)
async def check_installation(
    owner: str,
    repo: str,
    pipeline: FeedbackPipeline = Depends(get_pipeline),
) -> CheckResponse:
    """Report whether the GitHub App can act on owner/repo."""
    installed = await pipeline.check_installation(owner, repo)
    return CheckResponse(installed=installed, repo=f"{owner}/{repo}")


@router.post(
    "/feedback",
    response_model=FeedbackResponse,
    dependencies=[Depends(limit_by_client), Depends(limit_by_repo)],
)
async def submit_feedback(
    body: SubmissionBody = Depends(read_submission_body),
    pipeline: FeedbackPipeline = Depends(get_pipeline),
) -> FeedbackResponse:
    """Create a GitHub issue from a widget submission.

    Errors are raised as BugDropError subclasses and rendered by the
    handler registered in create_app().
    """
    if body.error:
        raise ValidationError(body.error)
    return await pipeline.submit(body.data)
