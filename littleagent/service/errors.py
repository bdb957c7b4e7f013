from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that the API layer renders into the error envelope:

    - unauthorized (401)
    - not_found (404)
    - validation_error (400)
    - missing_credentials / invalid_credentials (422)
    - rate_limited (429)
    - provider_error (502)
    - agent_did_not_converge / server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class NoWorkspaceError(AuthenticationError):
    """Authenticated user has no workspace membership (401)."""

    def __init__(self, message: str = "no workspace", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class MissingCredentialsError(ServiceError):
    """Workspace has no model API key configured (422)."""
    status_code = 422
    error_code = "missing_credentials"

    def __init__(
        self,
        message: str = "No API key configured. Add your API key in Settings → AI Manager.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidCredentialsError(ServiceError):
    """The model provider rejected the workspace's API key (422)."""
    status_code = 422
    error_code = "invalid_credentials"

    def __init__(
        self,
        message: str = "Your API key is no longer valid. Please update it in Settings → AI Manager.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class ProviderBusyError(ServiceError):
    """Model provider is rate limiting or overloaded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(
        self,
        message: str = "The AI service is busy right now. Please try again in a moment.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class ProviderError(ServiceError):
    """Model provider failed for another reason (502)."""
    status_code = 502
    error_code = "provider_error"

    def __init__(
        self, message: str = "Something went wrong. Please try again.", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class AgentDidNotConvergeError(ServiceError):
    """The model kept requesting tools past the round limit (500)."""
    status_code = 500
    error_code = "agent_did_not_converge"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "NoWorkspaceError",
    "NotFoundError",
    "MissingCredentialsError",
    "InvalidCredentialsError",
    "ProviderBusyError",
    "ProviderError",
    "AgentDidNotConvergeError",
]
