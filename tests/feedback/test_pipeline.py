"""Tests for submission validation and the ingestion pipeline.

GitHub client functions are patched on `bugdrop.github.client`; the
pipeline looks them up through the module at call time.
"""

import base64

import pytest

from bugdrop.core.config import check_configuration
from bugdrop.core.errors import (
    AuthorizationError,
    ConfigurationError,
    SigningError,
    UpstreamError,
    ValidationError,
)
from bugdrop.feedback.pipeline import (
    FeedbackPipeline,
    screenshot_size_bytes,
    validate_submission,
)
from bugdrop.github.client import ExchangeOutcome, TokenExchange
from tests.conftest import make_settings, valid_payload
from tests.feedback.conftest import ISSUE

MiB = 1024 * 1024


def _data_uri(size: int) -> str:
    return "data:image/png;base64," + base64.b64encode(b"\x00" * size).decode()


class TestScreenshotSize:
    @pytest.mark.parametrize("size", [0, 1, 2, 3, 4, 5, 1000, MiB, MiB + 1, 5 * MiB])
    def test_matches_decoded_length(self, size):
        assert screenshot_size_bytes(_data_uri(size)) == size

    def test_bare_base64_without_prefix(self):
        assert screenshot_size_bytes(base64.b64encode(b"abcdefg").decode()) == 7


class TestValidateSubmission:
    @pytest.mark.parametrize(
        "missing",
        [
            ("repo",),
            ("title",),
            ("description",),
            ("repo", "title"),
            ("repo", "description"),
            ("title", "description"),
            ("repo", "title", "description"),
        ],
    )
    def test_missing_required_fields(self, missing):
        payload = valid_payload()
        for name in missing:
            del payload[name]

        with pytest.raises(ValidationError, match="Missing required fields"):
            validate_submission(payload, 5)

    @pytest.mark.parametrize("field", ["repo", "title", "description"])
    def test_empty_or_non_string_fields_count_as_missing(self, field):
        for value in ("", None, 123):
            with pytest.raises(ValidationError, match="Missing required fields"):
                validate_submission(valid_payload(**{field: value}), 5)

    @pytest.mark.parametrize(
        "repo",
        ["noslash", "a/b/c", "/repo", "owner/", "/", "owner//repo"],
    )
    def test_invalid_repo_format(self, repo):
        with pytest.raises(ValidationError, match="Invalid repo format"):
            validate_submission(valid_payload(repo=repo), 5)

    def test_screenshot_exactly_at_limit_is_accepted(self):
        submission = validate_submission(valid_payload(screenshot=_data_uri(MiB)), 1)
        assert submission.screenshot is not None

    def test_screenshot_one_byte_over_limit_is_rejected(self):
        with pytest.raises(ValidationError, match="too large"):
            validate_submission(valid_payload(screenshot=_data_uri(MiB + 1)), 1)

    def test_size_checked_before_repo_format(self):
        payload = valid_payload(repo="bad", screenshot=_data_uri(MiB + 1))
        with pytest.raises(ValidationError, match="too large"):
            validate_submission(payload, 1)

    def test_non_object_body(self):
        with pytest.raises(ValidationError, match="Invalid JSON"):
            validate_submission(["not", "an", "object"], 5)

    def test_schema_errors_are_validation_errors(self):
        payload = valid_payload()
        del payload["metadata"]
        with pytest.raises(ValidationError, match="Invalid submission: metadata"):
            validate_submission(payload, 5)

    def test_valid_payload(self):
        submission = validate_submission(valid_payload(category="feature"), 5)
        assert submission.owner == "testowner"
        assert submission.repo_name == "testrepo"
        assert submission.category == "feature"
        assert submission.metadata.viewport.width == 1920


def _pipeline(**overrides) -> FeedbackPipeline:
    settings = make_settings(**overrides)
    return FeedbackPipeline(settings, check_configuration(settings))


class TestFeedbackPipeline:
    async def test_creates_issue(self, github):
        result = await _pipeline().submit(valid_payload())

        assert result.issue_number == 42
        assert result.issue_url == ISSUE.html_url
        assert result.is_public is True
        args = github["create_issue"].call_args.args
        assert args[:4] == ("test-token", "testowner", "testrepo", "Test feedback")
        assert "## Description\nThis is a test feedback" in args[4]
        assert args[5] == ["bug", "bugdrop"]

    async def test_category_label(self, github):
        await _pipeline().submit(valid_payload(category="question"))
        assert github["create_issue"].call_args.args[5] == ["question", "bugdrop"]

    async def test_validation_failure_makes_no_calls(self, github):
        with pytest.raises(ValidationError):
            await _pipeline().submit(valid_payload(repo="nope"))
        github["exchange_for_access_token"].assert_not_called()

    @pytest.mark.parametrize(
        "outcome", [ExchangeOutcome.NOT_INSTALLED, ExchangeOutcome.EXCHANGE_FAILED]
    )
    async def test_no_token_is_authorization_error(self, github, outcome):
        github["exchange_for_access_token"].return_value = TokenExchange(outcome)

        with pytest.raises(AuthorizationError) as exc_info:
            await _pipeline().submit(valid_payload())

        assert "not installed" in exc_info.value.message
        assert exc_info.value.install_url == (
            "https://github.com/apps/test-bugdrop-app/installations/new"
        )
        github["create_issue"].assert_not_called()

    async def test_uploads_screenshot_and_embeds_it(self, github):
        screenshot = _data_uri(10)
        await _pipeline().submit(valid_payload(screenshot=screenshot))

        github["upload_screenshot"].assert_awaited_once_with(
            "test-token", "testowner", "testrepo", screenshot
        )
        body = github["create_issue"].call_args.args[4]
        assert "![Screenshot](https://raw.example/shot.png)" in body

    async def test_screenshot_upload_failure_is_not_fatal(self, github):
        github["upload_screenshot"].side_effect = UpstreamError("Failed to upload screenshot: 403")

        result = await _pipeline().submit(valid_payload(screenshot=_data_uri(10)))

        assert result.issue_number == 42
        body = github["create_issue"].call_args.args[4]
        assert "## Screenshot" not in body

    async def test_non_image_screenshot_is_skipped(self, github):
        await _pipeline().submit(valid_payload(screenshot="data:text/plain;base64,aGk="))
        github["upload_screenshot"].assert_not_called()

    async def test_issue_creation_failure_propagates(self, github):
        github["create_issue"].side_effect = UpstreamError(
            "Failed to create issue: 410 - gone", status=410, body="gone"
        )

        with pytest.raises(UpstreamError, match="410"):
            await _pipeline().submit(valid_payload())

    async def test_unexpected_error_becomes_upstream_error(self, github):
        github["create_issue"].side_effect = RuntimeError("boom")

        with pytest.raises(UpstreamError, match="boom"):
            await _pipeline().submit(valid_payload())

    async def test_signing_failure_surfaces(self, github):
        github["exchange_for_access_token"].side_effect = SigningError("Failed to sign assertion")

        with pytest.raises(SigningError):
            await _pipeline().submit(valid_payload())

    async def test_missing_credentials(self, github):
        pipeline = _pipeline(github_app_id="", github_private_key="")

        with pytest.raises(ConfigurationError, match="credentials not configured"):
            await pipeline.submit(valid_payload())
        github["exchange_for_access_token"].assert_not_called()

    async def test_missing_credentials_still_validates_first(self, github):
        pipeline = _pipeline(github_app_id="", github_private_key="")

        with pytest.raises(ValidationError):
            await pipeline.submit({})

    async def test_check_installation(self, github):
        assert await _pipeline().check_installation("o", "r") is True
        github["get_installation_token"].return_value = None
        assert await _pipeline().check_installation("o", "r") is False

    async def test_check_installation_without_credentials(self, github):
        pipeline = _pipeline(github_app_id="")
        assert await pipeline.check_installation("o", "r") is False
        github["get_installation_token"].assert_not_called()
