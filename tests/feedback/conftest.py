from unittest.mock import AsyncMock, patch

import pytest

from bugdrop.github.client import ExchangeOutcome, IssueRecord, TokenExchange

GRANTED = TokenExchange(ExchangeOutcome.GRANTED, token="test-token")
ISSUE = IssueRecord(number=42, html_url="https://github.com/testowner/testrepo/issues/42")


@pytest.fixture
def github():
    """Patch every GitHub call the feedback routes make."""
    mocks = {
        "exchange_for_access_token": AsyncMock(return_value=GRANTED),
        "upload_screenshot": AsyncMock(return_value="https://raw.example/shot.png"),
        "create_issue": AsyncMock(return_value=ISSUE),
        "is_repo_public": AsyncMock(return_value=True),
        "get_installation_token": AsyncMock(return_value="test-token"),
    }
    with patch.multiple("bugdrop.github.client", **mocks):
        yield mocks
