"""Feedback ingestion: from a widget submission to a GitHub issue.

One pass per submission, nothing kept between calls:

    RECEIVED → VALIDATED → AUTHORIZED → ASSET_UPLOADED | ASSET_SKIPPED
             → ISSUE_CREATED → RESPONDED

Terminal failures: REJECTED_INVALID (400), REJECTED_NOT_INSTALLED (403),
INTERNAL_ERROR (500).

Validation runs before any network call and stops at the first problem.
The screenshot upload is the only best-effort step: if it fails the issue
is still created, just without the image. Everything else surfaces to
the caller as-is.
"""

from enum import StrEnum
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from bugdrop.core.config import ConfigDiagnostics, Settings
from bugdrop.core.errors import (
    AuthorizationError,
    BugDropError,
    ConfigurationError,
    UpstreamError,
    ValidationError,
)
from bugdrop.feedback.formatting import format_issue_body, labels_for_category
from bugdrop.feedback.schemas import FeedbackResponse, Submission
from bugdrop.github import client as github_client

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("repo", "title", "description")


class SubmissionState(StrEnum):
    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    ASSET_UPLOADED = "asset_uploaded"
    ASSET_SKIPPED = "asset_skipped"
    ISSUE_CREATED = "issue_created"
    RESPONDED = "responded"
    REJECTED_INVALID = "rejected_invalid"
    REJECTED_NOT_INSTALLED = "rejected_not_installed"
    INTERNAL_ERROR = "internal_error"


def screenshot_size_bytes(screenshot: str) -> int:
    """Decoded size of a base64 screenshot, data-URI prefix excluded."""
    payload = screenshot
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    padding = len(payload) - len(payload.rstrip("="))
    return len(payload) * 3 // 4 - padding


def _is_valid_repo(repo: str) -> bool:
    parts = repo.split("/")
    return len(parts) == 2 and all(parts)


def validate_submission(payload: Any, max_screenshot_mb: int) -> Submission:
    """Check a parsed request body and build a Submission from it.

    Order: body shape, required fields, screenshot size, repo format,
    then the full schema.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON")

    missing = [
        name
        for name in REQUIRED_FIELDS
        if not isinstance(payload.get(name), str) or not payload.get(name)
    ]
    if missing:
        raise ValidationError("Missing required fields: repo, title, description")

    screenshot = payload.get("screenshot")
    if isinstance(screenshot, str) and screenshot:
        size_bytes = screenshot_size_bytes(screenshot)
        if size_bytes > max_screenshot_mb * 1024 * 1024:
            size_mb = size_bytes / (1024 * 1024)
            raise ValidationError(
                f"Screenshot too large: {size_mb:.1f}MB exceeds {max_screenshot_mb}MB limit"
            )

    if not _is_valid_repo(payload["repo"]):
        raise ValidationError("Invalid repo format. Expected: owner/repo")

    try:
        return Submission.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid submission: {location}: {first['msg']}") from exc


class FeedbackPipeline:
    """Turns validated submissions into GitHub issues.

    Built once in `create_app()` with the settings and the startup
    diagnostics; holds no per-request state.
    """

    def __init__(self, settings: Settings, diagnostics: ConfigDiagnostics) -> None:
        self.settings = settings
        self.diagnostics = diagnostics
        self.credential = github_client.AppCredential(
            app_id=settings.github_app_id,
            private_key_pem=settings.github_private_key,
        )

    async def check_installation(self, owner: str, repo: str) -> bool:
        if not self.diagnostics.credentials_ok:
            logger.warning("installation_check_without_credentials", missing=self.diagnostics.missing)
            return False
        token = await github_client.get_installation_token(self.credential, owner, repo)
        return token is not None

    async def submit(self, payload: Any) -> FeedbackResponse:
        log = logger.bind(state=SubmissionState.RECEIVED)
        log.debug("feedback_received")

        try:
            submission = validate_submission(payload, self.settings.max_screenshot_size_mb)
        except ValidationError as exc:
            log.info("feedback_rejected", state=SubmissionState.REJECTED_INVALID, error=exc.message)
            raise

        log = log.bind(repo=submission.repo)
        log.info("feedback_validated", state=SubmissionState.VALIDATED)

        if not self.diagnostics.credentials_ok:
            log.error("feedback_unconfigured", missing=self.diagnostics.missing)
            raise ConfigurationError("GitHub App credentials not configured")

        try:
            return await self._deliver(submission, log)
        except BugDropError:
            raise
        except Exception as exc:
            log.error("feedback_failed", state=SubmissionState.INTERNAL_ERROR, exc_info=True)
            raise UpstreamError(str(exc) or "Failed to create issue") from exc

    async def _deliver(self, submission: Submission, log) -> FeedbackResponse:
        owner, repo = submission.owner, submission.repo_name

        exchange = await github_client.exchange_for_access_token(self.credential, owner, repo)
        if not exchange.granted:
            # Both outcomes look the same to the widget; only logs tell them apart.
            log.info(
                "feedback_rejected",
                state=SubmissionState.REJECTED_NOT_INSTALLED,
                outcome=exchange.outcome,
                status=exchange.status,
            )
            raise AuthorizationError(
                "GitHub App not installed on this repository",
                install_url=github_client.install_url(self.settings.github_app_name),
            )
        log.info("feedback_authorized", state=SubmissionState.AUTHORIZED)

        screenshot_url = await self._upload_screenshot(exchange.token, submission, log)

        body = format_issue_body(submission, screenshot_url)
        try:
            issue = await github_client.create_issue(
                exchange.token,
                owner,
                repo,
                submission.title,
                body,
                labels_for_category(submission.category),
            )
        except UpstreamError as exc:
            log.error(
                "issue_create_failed",
                state=SubmissionState.INTERNAL_ERROR,
                status=exc.status,
                body=exc.body,
            )
            raise
        log.info("issue_created", state=SubmissionState.ISSUE_CREATED, issue_number=issue.number)

        is_public = await github_client.is_repo_public(exchange.token, owner, repo)

        log.info("feedback_responded", state=SubmissionState.RESPONDED)
        return FeedbackResponse(
            issue_number=issue.number,
            issue_url=issue.html_url,
            is_public=is_public,
        )

    async def _upload_screenshot(
        self,
        token: str,
        submission: Submission,
        log,
    ) -> Optional[str]:
        screenshot = submission.screenshot
        if not screenshot or not screenshot.startswith("data:image/"):
            log.debug("screenshot_skipped", state=SubmissionState.ASSET_SKIPPED)
            return None

        try:
            url = await github_client.upload_screenshot(
                token, submission.owner, submission.repo_name, screenshot
            )
        except Exception as exc:
            log.warning(
                "screenshot_upload_failed",
                state=SubmissionState.ASSET_SKIPPED,
                error=str(exc),
            )
            return None

        log.info("screenshot_uploaded", state=SubmissionState.ASSET_UPLOADED)
        return url
