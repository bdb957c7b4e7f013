from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from littleagent.logging import get_correlation_id

# Maximum turns of history a client may replay in one chat request
MAX_CHAT_MESSAGES = 200
MAX_MESSAGE_LENGTH = 100_000


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "missing_credentials",
    "invalid_credentials",
    "provider_error",
    "agent_did_not_converge",
    "server_error",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid.uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope for every non-streaming response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class AgentChatMessage(_CamelModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)


class AgentChatRequest(_CamelModel):
    messages: List[AgentChatMessage] = Field(..., min_length=1, max_length=MAX_CHAT_MESSAGES)
    conversation_id: Optional[str] = Field(None, max_length=128)

    @field_validator("messages")
    @classmethod
    def _last_message_from_user(cls, value: List[AgentChatMessage]) -> List[AgentChatMessage]:
        if value[-1].role != "user":
            raise ValueError("the last message must come from the user")
        if not value[-1].content.strip():
            raise ValueError("the last message must not be empty")
        return value


class ToolInfo(_CamelModel):
    name: str
    description: str
    mutates: bool


class ToolCatalogueResponse(_CamelModel):
    tools: List[ToolInfo]


class MessageOut(_CamelModel):
    id: str
    role: str
    content: str
    seq: int
    created_at: datetime
    meta: Optional[dict] = None


class ConversationSummary(_CamelModel):
    id: str
    title: Optional[str]
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


class ConversationListResponse(_CamelModel):
    items: List[ConversationSummary]


class ConversationDetail(ConversationSummary):
    messages: List[MessageOut] = Field(default_factory=list)


class CreateConversationRequest(_CamelModel):
    title: Optional[str] = Field(default=None, max_length=255)


class RenameConversationRequest(_CamelModel):
    title: str = Field(..., max_length=255)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be blank")
        return cleaned


class ModelKeyRequest(_CamelModel):
    api_key: str = Field(..., min_length=8, max_length=512)
    verify: bool = False

    @field_validator("api_key")
    @classmethod
    def _strip_key(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) < 8:
            raise ValueError("api key looks too short")
        return cleaned


class ModelKeyStatus(_CamelModel):
    configured: bool
