from dataclasses import dataclass, field

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _normalise_pem(value: str) -> str:
    """Turn escaped newlines back into real ones.

    Most secret stores and ``.env`` files hold the PEM on a single line
    with literal ``\\n`` sequences. Both forms are accepted.
    """
    if "\\n" in value:
        return value.replace("\\n", "\n")
    return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The GitHub App credentials are required for the feedback and check
    endpoints. Everything else has a development-friendly default.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # GitHub App: private key is the PEM contents (not a file path),
    # PKCS#1 ("RSA PRIVATE KEY") or PKCS#8 ("PRIVATE KEY").
    github_app_id: str = ""
    github_private_key: str = ""
    github_app_name: str = "your-app-name"

    @field_validator("github_private_key", mode="before")
    @classmethod
    def normalise_private_key(cls, v: str) -> str:
        return _normalise_pem(v or "")

    # CORS: "*" or a comma-separated list of allowed origins.
    allowed_origins: str = "*"

    max_screenshot_size_mb: int = 5

    environment: str = "development"

    # Redis counter store for rate limiting: leave blank to skip limiting.
    redis_url: str = ""

    # Fixed-window limits in front of POST /api/feedback.
    rate_limit_client_window_seconds: int = 15 * 60
    rate_limit_client_max: int = 10
    rate_limit_repo_window_seconds: int = 60 * 60
    rate_limit_repo_max: int = 50

    # Sentry: leave blank to disable error capture.
    sentry_dsn: str = ""

    debug: bool = True

    @property
    def origin_list(self) -> list[str]:
        if self.allowed_origins.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def credentials_configured(self) -> bool:
        return bool(self.github_app_id and self.github_private_key)


def get_settings() -> Settings:
    return Settings()


@dataclass(frozen=True)
class ConfigDiagnostics:
    """Result of validating settings once at startup."""

    missing: tuple[str, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def credentials_ok(self) -> bool:
        return not self.missing


def check_configuration(settings: Settings) -> ConfigDiagnostics:
    """Inspect settings for problems that only break some endpoints.

    Missing credentials do not stop the app from starting: ``/api/health``
    must keep answering so deploys can be probed before secrets are set.
    """
    missing = []
    if not settings.github_app_id:
        missing.append("GITHUB_APP_ID")
    if not settings.github_private_key:
        missing.append("GITHUB_PRIVATE_KEY")

    warnings = []
    if settings.origin_list == ["*"] and settings.environment != "development":
        warnings.append('ALLOWED_ORIGINS is set to "*" in a non-development environment')
    if not settings.redis_url:
        warnings.append("REDIS_URL not configured; rate limiting is disabled")

    return ConfigDiagnostics(missing=tuple(missing), warnings=tuple(warnings))
