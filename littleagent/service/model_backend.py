from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

import openai
from openai import AsyncOpenAI

from littleagent.logging import get_logger
from littleagent.service.errors import (
    InvalidCredentialsError,
    ProviderBusyError,
    ProviderError,
    ServiceError,
)

logger = get_logger(__name__)

# Statuses some OpenAI-compatible gateways use for "overloaded"
_BUSY_STATUSES = {429, 503, 529}


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: str


@dataclass
class TurnEnd:
    """Closes one model call; ``tool_calls`` is empty when the model answered."""

    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None


BackendEvent = Union[TextDelta, TurnEnd]


class ModelBackend(Protocol):
    """Streaming chat-completions interface used by the agent loop."""

    model: str

    def stream_turn(
        self, messages: List[dict], tools: List[dict]
    ) -> AsyncIterator[BackendEvent]: ...

    async def verify(self) -> None: ...

    async def aclose(self) -> None: ...


def map_provider_error(exc: Exception) -> ServiceError:
    """Translate an OpenAI SDK exception into the service error hierarchy."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return InvalidCredentialsError(detail={"provider_status": getattr(exc, "status_code", None)})
    if isinstance(exc, openai.RateLimitError):
        return ProviderBusyError()
    if isinstance(exc, openai.APIStatusError) and exc.status_code in _BUSY_STATUSES:
        return ProviderBusyError()
    if isinstance(exc, openai.APIStatusError):
        return ProviderError(detail={"provider_status": exc.status_code})
    return ProviderError()


class OpenAIChatBackend:
    """Bring-your-own-key backend for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: Optional[str] = None,
        max_output_tokens: int = 4096,
        temperature: float = 0.4,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream_turn(
        self, messages: List[dict], tools: List[dict]
    ) -> AsyncIterator[BackendEvent]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = tools
        # index -> {"id", "name", "arguments"}; arguments arrive as string fragments
        pending_calls: Dict[int, Dict[str, str]] = {}
        usage: Dict[str, int] = {}
        finish_reason: Optional[str] = None
        try:
            stream = await self.client.chat.completions.create(**request)
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = {
                        "prompt_tokens": chunk.usage.prompt_tokens or 0,
                        "completion_tokens": chunk.usage.completion_tokens or 0,
                        "total_tokens": chunk.usage.total_tokens or 0,
                    }
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None and delta.content:
                    yield TextDelta(delta.content)
                for call_delta in (delta.tool_calls or []) if delta is not None else []:
                    slot = pending_calls.setdefault(
                        call_delta.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if call_delta.id:
                        slot["id"] = call_delta.id
                    if call_delta.function is not None:
                        if call_delta.function.name:
                            slot["name"] += call_delta.function.name
                        if call_delta.function.arguments:
                            slot["arguments"] += call_delta.function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.APIError as exc:
            mapped = map_provider_error(exc)
            logger.warning(
                "model_provider_error",
                model=self.model,
                error_type=type(exc).__name__,
                error_code=mapped.error_code,
            )
            raise mapped from exc
        tool_calls = [
            ToolCallRequest(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=slot["arguments"] or "{}",
            )
            for index, slot in sorted(pending_calls.items())
        ]
        yield TurnEnd(tool_calls=tool_calls, usage=usage, finish_reason=finish_reason)

    async def verify(self) -> None:
        """Make a one-token call so a bad key is rejected before it is saved."""
        try:
            await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
        except openai.APIError as exc:
            raise map_provider_error(exc) from exc

    async def aclose(self) -> None:
        await self.client.close()
