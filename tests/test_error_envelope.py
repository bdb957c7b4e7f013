"""Tests for the error envelope format and error handling.

Every non-streaming error response has the shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from pydantic import ValidationError

from littleagent.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from littleagent.api.schemas import Envelope, ErrorBody
from littleagent.service.errors import (
    AgentDidNotConvergeError,
    InvalidCredentialsError,
    MissingCredentialsError,
    NotFoundError,
    ProviderBusyError,
    ProviderError,
    ValidationError as ServiceValidationError,
)


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Invalid credentials")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_list_details(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "messages"}, {"field": "conversationId"}],
        )
        assert len(error.details) == 2

    def test_unknown_code_rejected(self):
        """Only stable codes may reach a client."""
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="short and stout")

    @pytest.mark.parametrize(
        "code",
        ["missing_credentials", "invalid_credentials", "provider_error", "agent_did_not_converge"],
    )
    def test_agent_codes_accepted(self, code):
        assert ErrorBody(code=code, message="x").code == code


class TestEnvelope:
    def test_ok_status(self):
        envelope = Envelope(status="ok", data={"configured": True})
        assert envelope.error is None

    def test_request_id_auto_generated(self):
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36  # UUID format

    def test_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="pending")


class TestErrorCodeMapping:
    """HTTP status to stable error code."""

    def test_known_statuses(self):
        assert _error_code_for_status(400) == "validation_error"
        assert _error_code_for_status(401) == "unauthorized"
        assert _error_code_for_status(404) == "not_found"
        assert _error_code_for_status(429) == "rate_limited"

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_only_uses_valid_codes(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="ok")


class TestServiceErrors:
    """Service errors carry their own status and code."""

    @pytest.mark.parametrize(
        "exc, status, code",
        [
            (MissingCredentialsError(), 422, "missing_credentials"),
            (InvalidCredentialsError(), 422, "invalid_credentials"),
            (ProviderBusyError(), 429, "rate_limited"),
            (ProviderError(), 502, "provider_error"),
            (AgentDidNotConvergeError("stuck"), 500, "agent_did_not_converge"),
            (NotFoundError("brand not found"), 404, "not_found"),
            (ServiceValidationError("bad input"), 400, "validation_error"),
        ],
    )
    def test_status_and_code(self, exc, status, code):
        assert exc.status_code == status
        assert exc.error_code == code

    def test_messages_point_to_settings(self):
        assert "Settings" in MissingCredentialsError().message
        assert "Settings" in InvalidCredentialsError().message


class TestErrorResponseFactory:
    def test_basic(self):
        response = _error_response(401, "unauthenticated")

        assert response.status_code == 401
        data = json.loads(response.body.decode())
        assert data["status"] == "error"
        assert data["error"] == {"code": "unauthorized", "message": "unauthenticated", "details": None}
        assert data["request_id"]

    def test_custom_code(self):
        response = _error_response(422, "No API key configured.", code="missing_credentials")
        assert json.loads(response.body.decode())["error"]["code"] == "missing_credentials"
