"""Tests for session token verification and the authentication boundary.

Every route except /health (and the docs) requires a bearer session token.
Failures return 401 E_UNAUTHENTICATED without reaching the handler.
"""

import jwt
import pytest
from fastapi.testclient import TestClient

from chatfoundry.auth.verifier import SessionTokenVerifier
from chatfoundry.errors import ApiError, ApiErrorCode
from tests.helpers import (
    TEST_ISSUER,
    TEST_SECRET,
    auth_headers,
    mint_expired_token,
    mint_test_token,
)


class TestSessionTokenVerifier:
    @pytest.fixture
    def verifier(self):
        return SessionTokenVerifier(secret=TEST_SECRET, issuer=TEST_ISSUER)

    def test_valid_token_returns_claims(self, verifier):
        claims = verifier.verify(mint_test_token("user_abc"))

        assert claims["sub"] == "user_abc"
        assert claims["iss"] == TEST_ISSUER

    def test_expired_token_rejected(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify(mint_expired_token("user_abc"))

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
        assert exc_info.value.message == "Token expired"

    def test_token_within_clock_skew_accepted(self, verifier):
        claims = verifier.verify(mint_test_token("user_abc", expires_in=-30))

        assert claims["sub"] == "user_abc"

    def test_bad_signature_rejected(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify(mint_test_token("user_abc", secret="another-secret"))

        assert exc_info.value.message == "Invalid token signature"

    def test_wrong_issuer_rejected(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify(mint_test_token("user_abc", issuer="someone-else"))

        assert exc_info.value.message == "Invalid token issuer"

    def test_garbage_token_rejected(self, verifier):
        with pytest.raises(ApiError) as exc_info:
            verifier.verify("not-a-jwt")

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED

    def test_missing_sub_rejected(self, verifier):
        token = jwt.encode({"iss": TEST_ISSUER, "exp": 4102444800}, TEST_SECRET, algorithm="HS256")

        with pytest.raises(ApiError):
            verifier.verify(token)


class TestAuthBoundary:
    def test_no_authorization_header(self, client: TestClient):
        response = client.get("/api/chat")

        assert response.status_code == 401
        data = response.json()
        assert data["success"] is False
        assert data["code"] == "E_UNAUTHENTICATED"
        assert data["error"] == "Unauthorized"

    def test_wrong_authorization_format(self, client: TestClient):
        response = client.get("/api/chat", headers={"Authorization": "Basic abc123"})

        assert response.status_code == 401

    def test_expired_token_returns_401(self, client: TestClient, test_user_id):
        response = client.get(
            "/api/models",
            headers={"Authorization": f"Bearer {mint_expired_token(test_user_id)}"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Token expired"

    def test_valid_token_reaches_route(self, client: TestClient, test_user_id):
        response = client.get("/api/chat", headers=auth_headers(test_user_id))

        assert response.status_code == 200
        assert response.json() == {"success": True, "conversations": []}

    def test_health_is_public(self, client: TestClient):
        assert client.get("/health").status_code == 200
