"""Response-body encoders for agent turns.

``TurnStream`` wraps the orchestrator's event iterator. The route calls
``prime()`` before building the response so a failure raised ahead of the
first event (missing or rejected key) still becomes a JSON error envelope.
Once the body has started, errors can only be reported in-band: the plain
text encoder appends a warning marker, the NDJSON encoder emits an ``error``
event.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from littleagent.logging import get_logger, sanitize_error_message
from littleagent.service.agent import AgentEvent
from littleagent.service.errors import ProviderError, ServiceError

logger = get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"
ERROR_MARKER = "\n\n⚠️ "


def generate_conversation_title(message: str, max_length: int = 50) -> str:
    """Generate a conversation title from the first message.

    Collapses whitespace and truncates on a word boundary where possible so
    the title, ellipsis included, fits in ``max_length`` characters.
    """
    if not message:
        return "New conversation"

    cleaned = " ".join(message.split())
    if not cleaned:
        return "New conversation"

    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[: max_length - 3]
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]

    return truncated.rstrip(".,!?;:") + "..."


async def watch_for_disconnect(request, cancel_event: asyncio.Event, *, poll_interval: float = 0.5) -> None:
    """Set ``cancel_event`` once the client has gone away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("agent_client_disconnected")
            cancel_event.set()
            return
        await asyncio.sleep(poll_interval)


def wants_ndjson(accept_header: Optional[str]) -> bool:
    return bool(accept_header) and NDJSON_MEDIA_TYPE in accept_header.lower()


class TurnRecorder:
    """Persists one turn's messages into a conversation.

    Failures are logged and swallowed: by the time the reply is saved the
    answer has already been streamed to the user.
    """

    def __init__(self, store, conversation_id: str, *, workspace_id: str, user_id: str) -> None:
        self.store = store
        self.conversation_id = conversation_id
        self.workspace_id = workspace_id
        self.user_id = user_id
        self._user_text: Optional[str] = None

    def record_user_message(self, messages: List[Dict[str, str]]) -> None:
        if not messages or messages[-1].get("role") != "user":
            return
        self._user_text = messages[-1].get("content", "")
        self.store.append_message(self.conversation_id, "user", self._user_text)

    def record_reply(self, done: Dict[str, Any]) -> None:
        try:
            meta: Dict[str, Any] = {"usage": done.get("usage", {})}
            if done.get("toolCalls"):
                meta["toolCalls"] = done["toolCalls"]
            self.store.append_message(
                self.conversation_id, "assistant", done.get("content", ""), meta
            )
            conversation = self.store.get_conversation(
                self.conversation_id, workspace_id=self.workspace_id, user_id=self.user_id
            )
            title = None
            if conversation is not None and not conversation.title and self._user_text:
                title = generate_conversation_title(self._user_text)
            self.store.update_conversation(
                self.conversation_id,
                workspace_id=self.workspace_id,
                user_id=self.user_id,
                title=title,
            )
        except Exception as exc:
            logger.exception(
                "agent_reply_persist_failed",
                conversation_id=self.conversation_id,
                error_type=type(exc).__name__,
            )


class TurnStream:
    """Single-use adapter from agent events to a streamed response body."""

    def __init__(
        self,
        events: AsyncIterator[AgentEvent],
        *,
        recorder: Optional[TurnRecorder] = None,
    ) -> None:
        self._events = events
        self._recorder = recorder
        self._first: Optional[AgentEvent] = None
        self._exhausted = False
        self._primed = False

    async def prime(self) -> None:
        """Pull the first event; ``ServiceError``s raised here propagate to the caller."""
        if self._primed:
            return
        self._primed = True
        try:
            self._first = await self._events.__anext__()
        except StopAsyncIteration:
            self._exhausted = True

    async def events(self) -> AsyncIterator[AgentEvent]:
        await self.prime()
        if self._first is not None:
            first, self._first = self._first, None
            yield first
        if self._exhausted:
            return
        async for event in self._events:
            yield event

    async def _finish(self, done: Dict[str, Any]) -> None:
        if self._recorder is not None:
            await asyncio.to_thread(self._recorder.record_reply, done)

    @staticmethod
    def _as_service_error(exc: Exception) -> ServiceError:
        if isinstance(exc, ServiceError):
            return exc
        logger.exception("agent_stream_unexpected_error", error_type=type(exc).__name__)
        return ProviderError()

    async def encode_text(self) -> AsyncIterator[bytes]:
        """Answer text only, in generation order; errors become an inline marker."""
        try:
            async for event in self.events():
                kind = event.get("event")
                if kind == "token":
                    yield event["data"].encode("utf-8")
                elif kind == "message_done":
                    await self._finish(event["data"])
        except Exception as exc:
            error = self._as_service_error(exc)
            logger.warning("agent_stream_failed", error_code=error.error_code)
            yield f"{ERROR_MARKER}{sanitize_error_message(error.message)}".encode("utf-8")

    async def encode_ndjson(self) -> AsyncIterator[bytes]:
        """Every event as one JSON object per line."""
        try:
            async for event in self.events():
                if event.get("event") == "message_done":
                    await self._finish(event["data"])
                yield (json.dumps(event, default=str, ensure_ascii=False) + "\n").encode("utf-8")
        except Exception as exc:
            error = self._as_service_error(exc)
            logger.warning("agent_stream_failed", error_code=error.error_code)
            payload = {
                "event": "error",
                "data": {"code": error.error_code, "message": sanitize_error_message(error.message)},
            }
            yield (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
