"""Tests for error handling and response envelopes.

Verifies:
- Error envelope shape is correct
- Every error code maps to correct HTTP status
- Unknown exceptions return E_INTERNAL with 500
- Malformed JSON returns E_INVALID_REQUEST
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatfoundry.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    GenerationFailedError,
    InvalidModelConfigurationError,
    InvalidRequestError,
    NotFoundError,
)
from chatfoundry.responses import (
    error_response,
    success_response,
    unhandled_exception_handler,
)
from tests.helpers import auth_headers


class TestErrorResponse:
    """Tests for error response envelope format."""

    def test_error_response_has_correct_shape(self):
        response = error_response(ApiErrorCode.E_NOT_FOUND, "Resource not found")

        assert response["success"] is False
        assert response["error"] == "Resource not found"
        assert response["code"] == "E_NOT_FOUND"

    def test_error_response_code_is_string(self):
        """Error code in response is a string, not enum."""
        response = error_response(ApiErrorCode.E_INVALID_REQUEST, "Bad")

        assert type(response["code"]) is str

    def test_explicit_request_id_is_included(self):
        response = error_response(ApiErrorCode.E_INTERNAL, "boom", request_id="req-1")

        assert response["request_id"] == "req-1"


class TestSuccessResponse:
    def test_success_response_is_flat(self):
        response = success_response(text="hello", extra=1)

        assert response == {"success": True, "text": "hello", "extra": 1}

    def test_success_response_without_payload(self):
        assert success_response() == {"success": True}


class TestErrorCodeToStatus:
    """Tests for error code to HTTP status mapping."""

    def test_all_error_codes_have_status_mapping(self):
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS, f"Missing status mapping for {code}"

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_NOT_FOUND, 404),
            (ApiErrorCode.E_CONVERSATION_NOT_FOUND, 404),
            (ApiErrorCode.E_INVALID_REQUEST, 400),
            (ApiErrorCode.E_INVALID_MODEL_CONFIGURATION, 400),
            (ApiErrorCode.E_METHOD_NOT_ALLOWED, 405),
            (ApiErrorCode.E_GENERATION_FAILED, 500),
            (ApiErrorCode.E_DELETE_FAILED, 500),
            (ApiErrorCode.E_INTERNAL, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        assert ERROR_CODE_TO_STATUS[code] == expected_status


class TestApiErrorClass:
    def test_api_error_has_code_and_message(self):
        error = ApiError(ApiErrorCode.E_NOT_FOUND, "Item not found")

        assert error.code == ApiErrorCode.E_NOT_FOUND
        assert error.message == "Item not found"
        assert error.status_code == 404

    def test_not_found_error_defaults(self):
        error = NotFoundError()

        assert error.code == ApiErrorCode.E_NOT_FOUND
        assert error.status_code == 404

    def test_invalid_request_error_defaults(self):
        error = InvalidRequestError()

        assert error.code == ApiErrorCode.E_INVALID_REQUEST
        assert error.status_code == 400

    def test_invalid_model_configuration_message(self):
        error = InvalidModelConfigurationError()

        assert error.code == ApiErrorCode.E_INVALID_MODEL_CONFIGURATION
        assert error.message == "Invalid model configuration"
        assert error.status_code == 400

    def test_generation_failed_message(self):
        error = GenerationFailedError()

        assert error.message == "Failed to generate text"
        assert error.status_code == 500


class TestMalformedJsonHandling:
    def test_malformed_json_returns_400(self, client: TestClient):
        response = client.post(
            "/health",
            content="{invalid json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "E_INVALID_REQUEST"
        assert data["error"] == "Invalid request body"

    def test_schema_mismatch_returns_400(self, client: TestClient, test_user_id):
        response = client.post(
            "/api/chat/00000000-0000-0000-0000-000000000000",
            json={"message": "not an object"},
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_unknown_method_returns_405(self, client: TestClient, test_user_id):
        response = client.put("/api/chat", headers=auth_headers(test_user_id))

        assert response.status_code == 405
        assert response.json()["code"] == "E_METHOD_NOT_ALLOWED"


class TestUnhandledExceptionHandling:
    def test_unhandled_exception_returns_500_with_e_internal(self):
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError("SECRET_INTERNAL_DETAIL")

        test_app.add_exception_handler(Exception, unhandled_exception_handler)

        client = TestClient(test_app, raise_server_exceptions=False)
        response = client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "E_INTERNAL"
        assert data["error"] == "Internal server error"
        assert "SECRET_INTERNAL_DETAIL" not in response.text
