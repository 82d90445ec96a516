"""Error taxonomy for the BugDrop API.

Every error the API reports to a caller is a ``BugDropError``. The
exception handler registered in ``create_app()`` renders them as
``{"error": message}`` plus any extra fields, so the widget can always
read a JSON body.

  ValidationError     400  malformed body, missing field, bad repo, big screenshot
  AuthorizationError  403  GitHub App not installed on the target repo
  RateLimitError      429  per-client or per-repo quota exceeded
  UpstreamError       500  GitHub API failure on the fatal path, or anything unexpected
  ConfigurationError  500  credentials missing at startup
  CredentialError     500  private key unusable (KeyImportError, SigningError)
"""

from typing import Any, Optional


class BugDropError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message}

    def headers(self) -> dict[str, str]:
        return {}


class ValidationError(BugDropError):
    status_code = 400


class AuthorizationError(BugDropError):
    status_code = 403

    def __init__(self, message: str, install_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.install_url = install_url

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.install_url:
            body["installUrl"] = self.install_url
        return body


class RateLimitError(BugDropError):
    status_code = 429

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "retryAfter": self.retry_after}

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamError(BugDropError):
    """A non-success answer from the GitHub API (or an unexpected failure).

    ``status`` and ``body`` hold the upstream response when there was one;
    they are kept for logs and never echoed to the caller beyond ``message``.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ConfigurationError(BugDropError):
    status_code = 500


class CredentialError(BugDropError):
    """The GitHub App private key could not be used."""

    status_code = 500


class KeyImportError(CredentialError):
    pass


class SigningError(CredentialError):
    pass
