"""Shared test fixtures for the BugDrop API test suite.

The app is built with explicit Settings and an in-memory counter store, so
no environment variables, Redis, or network access are needed. GitHub
calls are patched per test on `bugdrop.github.client`.
"""

from collections.abc import AsyncGenerator
from typing import Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

from bugdrop.core.config import Settings
from bugdrop.main import create_app

# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

TEST_RSA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)

TEST_PKCS1_PEM = TEST_RSA_KEY.private_bytes(
    serialization.Encoding.PEM,
    serialization.PrivateFormat.TraditionalOpenSSL,
    serialization.NoEncryption(),
).decode()

TEST_PKCS8_PEM = TEST_RSA_KEY.private_bytes(
    serialization.Encoding.PEM,
    serialization.PrivateFormat.PKCS8,
    serialization.NoEncryption(),
).decode()

TEST_APP_ID = "123456"
TEST_APP_NAME = "test-bugdrop-app"


# ---------------------------------------------------------------------------
# Counter store
# ---------------------------------------------------------------------------


class InMemoryCounterStore:
    """CounterStore stand-in. TTLs are recorded, not enforced."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.fail_with: Optional[Exception] = None

    async def incr(self, key: str, ttl_seconds: int) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        self.counts[key] = self.counts.get(key, 0) + 1
        self.ttls.setdefault(key, ttl_seconds)
        return self.counts[key]


def make_settings(**overrides) -> Settings:
    values = dict(
        github_app_id=TEST_APP_ID,
        github_private_key=TEST_PKCS1_PEM,
        github_app_name=TEST_APP_NAME,
        allowed_origins="*",
        environment="test",
        redis_url="",
        max_screenshot_size_mb=5,
        sentry_dsn="",
        debug=False,
    )
    values.update(overrides)
    return Settings(**values)


def valid_payload(**overrides) -> dict:
    payload = {
        "repo": "testowner/testrepo",
        "title": "Test feedback",
        "description": "This is a test feedback",
        "metadata": {
            "url": "http://localhost:3000/page?token=abc#section",
            "userAgent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
            ),
            "viewport": {"width": 1920, "height": 1080},
            "timestamp": "2025-01-15T12:00:00Z",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def app(settings, counter_store):
    return create_app(settings=settings, counter_store=counter_store)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
