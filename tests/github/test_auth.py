"""Tests for GitHub App JWT generation."""

import re
import time

import jwt
import pytest

from bugdrop.core.errors import KeyImportError
from bugdrop.github.auth import create_app_jwt
from tests.conftest import TEST_APP_ID, TEST_PKCS1_PEM, TEST_PKCS8_PEM, TEST_RSA_KEY

_SEGMENT = r"[A-Za-z0-9_-]+"


class TestCreateAppJwt:
    def test_verifies_against_public_key(self):
        token = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM)
        decoded = jwt.decode(token, TEST_RSA_KEY.public_key(), algorithms=["RS256"])
        assert decoded["iss"] == TEST_APP_ID

    def test_header(self):
        token = create_app_jwt(TEST_APP_ID, TEST_PKCS8_PEM)
        assert jwt.get_unverified_header(token) == {"alg": "RS256", "typ": "JWT"}

    @pytest.mark.parametrize(
        "app_id, now",
        [("1", 0), ("12345", 1_700_000_000), ("987654", 2_000_000_123), ("app", 61)],
    )
    def test_claims_window(self, app_id, now):
        token = create_app_jwt(app_id, TEST_PKCS1_PEM, now=now)
        claims = jwt.decode(token, options={"verify_signature": False})

        assert claims["exp"] - claims["iat"] == 660
        assert claims["iat"] == now - 60
        assert claims["exp"] == now + 600
        assert claims["iss"] == app_id

    def test_defaults_to_current_time(self):
        before = int(time.time())
        token = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM)
        after = int(time.time())

        claims = jwt.decode(token, options={"verify_signature": False})
        assert before - 60 <= claims["iat"] <= after - 60

    def test_each_call_restamps(self):
        first = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM, now=1_000)
        second = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM, now=2_000)
        assert first != second

    def test_token_is_three_unpadded_base64url_segments(self):
        token = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM)
        assert re.fullmatch(rf"{_SEGMENT}\.{_SEGMENT}\.{_SEGMENT}", token)
        assert "=" not in token

    def test_pkcs1_and_pkcs8_produce_identical_tokens(self):
        # RSASSA-PKCS1-v1_5 is deterministic, so the same key and claims
        # must give byte-identical tokens whichever PEM format was supplied.
        now = 1_700_000_000
        from_pkcs1 = create_app_jwt(TEST_APP_ID, TEST_PKCS1_PEM, now=now)
        from_pkcs8 = create_app_jwt(TEST_APP_ID, TEST_PKCS8_PEM, now=now)
        assert from_pkcs1 == from_pkcs8

    @pytest.mark.parametrize("pem", [TEST_PKCS1_PEM, TEST_PKCS8_PEM], ids=["pkcs1", "pkcs8"])
    def test_both_formats_verify_against_same_public_key(self, pem):
        token = create_app_jwt(TEST_APP_ID, pem)
        jwt.decode(token, TEST_RSA_KEY.public_key(), algorithms=["RS256"])

    def test_bad_key_raises_key_import_error(self):
        with pytest.raises(KeyImportError):
            create_app_jwt(TEST_APP_ID, "not-a-pem")
