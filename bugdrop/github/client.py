"""GitHub API client for installation-scoped operations.

Uses httpx for async HTTP calls. Every call is a single attempt: a retry
after a partially applied write (an uploaded screenshot, a created issue)
would duplicate it, so failures go straight back to the caller.

No client-side timeouts are set; requests are bounded by the host's own
request ceiling.

Operations:
1. Resolve the installation for a repo and exchange it for a token
2. Create an issue
3. Upload a screenshot into the repo through the Contents API
4. Read repo visibility
"""

import re
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional

import httpx
import structlog

from bugdrop.core.errors import UpstreamError
from bugdrop.github.auth import create_app_jwt

logger = structlog.get_logger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_WEB_BASE = "https://github.com"
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "FeedbackWidget/1.0"

SCREENSHOT_DIR = ".feedback/screenshots"

_DATA_URI_RE = re.compile(r"^data:image/([\w.+-]+);base64,")
_EXTENSIONS = {"jpeg": "jpg", "svg+xml": "svg"}


@dataclass(frozen=True)
class AppCredential:
    """GitHub App identity. Set once from configuration, never logged."""

    app_id: str
    private_key_pem: str = field(repr=False)


class ExchangeOutcome(StrEnum):
    GRANTED = "granted"
    NOT_INSTALLED = "not_installed"
    EXCHANGE_FAILED = "exchange_failed"


@dataclass(frozen=True)
class TokenExchange:
    """Result of trying to get an installation token for a repo.

    Callers outside this module only care whether `token` is set; the
    outcome tag exists so logs can tell a missing installation apart from
    a failed exchange.
    """

    outcome: ExchangeOutcome
    token: Optional[str] = field(default=None, repr=False)
    status: Optional[int] = None

    @property
    def granted(self) -> bool:
        return self.outcome is ExchangeOutcome.GRANTED


@dataclass(frozen=True)
class IssueRecord:
    number: int
    html_url: str


def install_url(app_name: str) -> str:
    return f"{GITHUB_WEB_BASE}/apps/{app_name}/installations/new"


async def resolve_installation(app_jwt: str, owner: str, repo: str) -> Optional[int]:
    """GET /repos/{owner}/{repo}/installation

    A non-success answer (404 when the App is not installed) is a normal
    outcome and returns None, as is a success answer without an id.
    """
    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.get(
            f"{GITHUB_API_BASE}/repos/{owner}/{repo}/installation",
            headers=_auth_headers(app_jwt),
        )
    if not response.is_success:
        logger.info(
            "installation_not_found",
            owner=owner,
            repo=repo,
            status=response.status_code,
        )
        return None
    try:
        return response.json()["id"]
    except (ValueError, KeyError, TypeError):
        logger.warning("installation_response_malformed", owner=owner, repo=repo)
        return None


async def exchange_for_access_token(
    credential: AppCredential,
    owner: str,
    repo: str,
) -> TokenExchange:
    """Mint a fresh App JWT, find the repo's installation, and exchange it.

    Installation tokens are scoped to the repos the owner granted and
    expire after an hour; one is fetched per request and never reused.

    Credential problems (KeyImportError, SigningError) propagate: they are
    configuration faults, not statements about the repo.
    """
    app_jwt = create_app_jwt(credential.app_id, credential.private_key_pem)

    try:
        installation_id = await resolve_installation(app_jwt, owner, repo)
        if installation_id is None:
            return TokenExchange(ExchangeOutcome.NOT_INSTALLED)

        # Signed again: each leg gets its own assertion.
        app_jwt = create_app_jwt(credential.app_id, credential.private_key_pem)
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(
                f"{GITHUB_API_BASE}/app/installations/{installation_id}/access_tokens",
                headers=_auth_headers(app_jwt),
            )
    except httpx.HTTPError as exc:
        logger.warning("token_exchange_error", owner=owner, repo=repo, error=str(exc))
        return TokenExchange(ExchangeOutcome.EXCHANGE_FAILED)

    if not response.is_success:
        logger.warning(
            "token_exchange_failed",
            owner=owner,
            repo=repo,
            status=response.status_code,
        )
        return TokenExchange(ExchangeOutcome.EXCHANGE_FAILED, status=response.status_code)

    try:
        token = response.json()["token"]
    except (ValueError, KeyError, TypeError):
        logger.warning("token_exchange_malformed", owner=owner, repo=repo)
        return TokenExchange(ExchangeOutcome.EXCHANGE_FAILED, status=response.status_code)
    if not isinstance(token, str) or not token:
        logger.warning("token_exchange_malformed", owner=owner, repo=repo)
        return TokenExchange(ExchangeOutcome.EXCHANGE_FAILED, status=response.status_code)

    return TokenExchange(ExchangeOutcome.GRANTED, token=token)


async def get_installation_token(
    credential: AppCredential,
    owner: str,
    repo: str,
) -> Optional[str]:
    """Installation token for owner/repo, or None if none can be obtained."""
    exchange = await exchange_for_access_token(credential, owner, repo)
    return exchange.token


async def create_issue(
    token: str,
    owner: str,
    repo: str,
    title: str,
    body: str,
    labels: list[str],
) -> IssueRecord:
    """POST /repos/{owner}/{repo}/issues"""
    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.post(
            f"{GITHUB_API_BASE}/repos/{owner}/{repo}/issues",
            headers=_auth_headers(token),
            json={"title": title, "body": body, "labels": labels},
        )
    if not response.is_success:
        raise UpstreamError(
            f"Failed to create issue: {response.status_code} - {response.text}",
            status=response.status_code,
            body=response.text,
        )
    data = response.json()
    return IssueRecord(number=data["number"], html_url=data["html_url"])


def screenshot_path(media_subtype: str, timestamp_ms: int) -> str:
    ext = _EXTENSIONS.get(media_subtype.lower(), media_subtype.lower())
    return f"{SCREENSHOT_DIR}/{timestamp_ms}.{ext}"


async def upload_screenshot(
    token: str,
    owner: str,
    repo: str,
    data_uri: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """PUT /repos/{owner}/{repo}/contents/.feedback/screenshots/{ts}.{ext}

    Commits the image to the default branch and returns its download URL
    for embedding in the issue. Requires Contents: write on the App.
    The Contents API takes base64 content, so the data-URI payload is
    passed through without decoding.
    """
    match = _DATA_URI_RE.match(data_uri)
    if match is None:
        raise ValueError("Screenshot is not a base64 image data URI")
    content = data_uri[match.end():]

    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    path = screenshot_path(match.group(1), timestamp_ms)

    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.put(
            f"{GITHUB_API_BASE}/repos/{owner}/{repo}/contents/{path}",
            headers=_auth_headers(token),
            json={
                "message": f"Add feedback screenshot {timestamp_ms}",
                "content": content,
            },
        )
    if not response.is_success:
        raise UpstreamError(
            f"Failed to upload screenshot: {response.status_code} - {response.text}",
            status=response.status_code,
            body=response.text,
        )
    return response.json()["content"]["download_url"]


async def is_repo_public(token: str, owner: str, repo: str) -> bool:
    """GET /repos/{owner}/{repo}: True only when GitHub says it is public.

    Any failure answers False so the widget never links to an issue the
    submitter cannot open.
    """
    try:
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.get(
                f"{GITHUB_API_BASE}/repos/{owner}/{repo}",
                headers=_auth_headers(token),
            )
        if not response.is_success:
            return False
        return response.json().get("private") is False
    except Exception:
        logger.debug("repo_visibility_check_failed", owner=owner, repo=repo, exc_info=True)
        return False


def _auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
