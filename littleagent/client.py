"""Async chat driver for the agent endpoint.

``AgentChatClient`` keeps a local transcript, posts it to
``/v1/agent/chat`` and rebuilds the assistant reply from the streamed body as
it arrives. It exposes a coarse status for progress indicators:

- ``ready``: idle
- ``streaming``: a turn is in flight and text is (or may be) arriving
- ``acting``: the agent is probably running a tool

With the default plain-text framing "acting" is a guess: headers arrived but
no body bytes followed within ``acting_grace`` seconds. With NDJSON framing
the server says so explicitly through ``tool_start`` events.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from littleagent.logging import get_logger

logger = get_logger(__name__)

CHAT_PATH = "/v1/agent/chat"
CONVERSATION_HEADER = "x-conversation-id"
ERROR_PREFIX = "⚠️ "
GENERIC_ERROR = "Something went wrong"
TRANSPORT_FAILURE = "⚠️ Failed to get response. Please try again."


class ChatStatus(str, Enum):
    READY = "ready"
    STREAMING = "streaming"
    ACTING = "acting"


@dataclass
class ChatMessage:
    id: str
    role: str
    content: str


def _message_id(role: str) -> str:
    return f"{role}-{uuid.uuid4().hex[:12]}"


def _history_content(message: ChatMessage) -> str:
    """Text to send back as context; local error notices are not model turns."""
    if message.role != "assistant":
        return message.content
    if message.content.startswith(ERROR_PREFIX):
        return ""
    return message.content.split(f"\n\n{ERROR_PREFIX}", 1)[0]


def _error_message(body: bytes) -> str:
    """Pull a human-readable message out of an error envelope (or a bare ``{"error": "..."}``)."""
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return GENERIC_ERROR
    if not isinstance(payload, dict):
        return GENERIC_ERROR
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or GENERIC_ERROR
    if isinstance(error, str) and error:
        return error
    return GENERIC_ERROR


class AgentChatClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        framing: str = "text",
        acting_grace: float = 0.75,
        on_status: Optional[Callable[[ChatStatus], None]] = None,
        on_update: Optional[Callable[[ChatMessage], None]] = None,
    ) -> None:
        if framing not in {"text", "ndjson"}:
            raise ValueError("framing must be 'text' or 'ndjson'")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(10.0, read=None)
        )
        self.token = token
        self.framing = framing
        self.acting_grace = acting_grace
        self.on_status = on_status
        self.on_update = on_update

        self.messages: List[ChatMessage] = []
        self.conversation_id: Optional[str] = None
        self.status = ChatStatus.READY
        self.last_result: Optional[Dict[str, Any]] = None
        self._task: Optional[asyncio.Task] = None
        self._aborted = False

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_status(self, status: ChatStatus) -> None:
        if status is self.status:
            return
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    def _append(self, message: ChatMessage, text: str) -> None:
        message.content += text
        self._set_status(ChatStatus.STREAMING)
        if self.on_update is not None:
            self.on_update(message)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.framing == "ndjson":
            headers["Accept"] = "application/x-ndjson"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(self, text: str) -> Optional[ChatMessage]:
        """Send ``text`` as the next user message and stream the reply.

        Returns the finished assistant message, or ``None`` when the turn was
        aborted.
        """
        if self.busy:
            raise RuntimeError("a turn is already in flight")
        self._aborted = False
        self._task = asyncio.create_task(self._run_turn(text))
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._aborted:
                return None
            raise
        finally:
            self._task = None

    def abort(self) -> None:
        """Cancel the in-flight turn; its partial reply is dropped from the transcript."""
        if self.busy:
            self._aborted = True
            self._task.cancel()

    def clear(self) -> None:
        self.abort()
        self.messages = []
        self.conversation_id = None
        self.last_result = None
        self._set_status(ChatStatus.READY)

    async def aclose(self) -> None:
        self.abort()
        if self._owns_client:
            await self._client.aclose()

    async def _run_turn(self, text: str) -> ChatMessage:
        self.messages.append(ChatMessage(id=_message_id("user"), role="user", content=text))
        history = []
        for message in self.messages:
            content = _history_content(message)
            if content:
                history.append({"role": message.role, "content": content})
        payload: Dict[str, Any] = {"messages": history}
        if self.conversation_id:
            payload["conversationId"] = self.conversation_id

        assistant = ChatMessage(id=_message_id("assistant"), role="assistant", content="")
        self.messages.append(assistant)
        self._set_status(ChatStatus.STREAMING)
        try:
            async with self._client.stream(
                "POST", CHAT_PATH, json=payload, headers=self._headers()
            ) as response:
                conversation_id = response.headers.get(CONVERSATION_HEADER)
                if conversation_id:
                    self.conversation_id = conversation_id
                if response.status_code >= 400:
                    body = await response.aread()
                    assistant.content = f"{ERROR_PREFIX}{_error_message(body)}"
                    logger.info("agent_chat_rejected", status_code=response.status_code)
                    return assistant
                if self.framing == "ndjson":
                    await self._consume_ndjson(response, assistant)
                else:
                    await self._consume_text(response, assistant)
        except asyncio.CancelledError:
            self.messages = [m for m in self.messages if m is not assistant]
            logger.info("agent_chat_aborted", conversation_id=self.conversation_id)
            raise
        except httpx.HTTPError as exc:
            logger.warning("agent_chat_transport_failed", error_type=type(exc).__name__)
            assistant.content = TRANSPORT_FAILURE
        finally:
            self._set_status(ChatStatus.READY)
        return assistant

    async def _consume_text(self, response: httpx.Response, assistant: ChatMessage) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")()
        loop = asyncio.get_running_loop()
        # Headers are in but the body is silent: the server is most likely
        # running a tool before its first token.
        acting_timer: Optional[asyncio.TimerHandle] = loop.call_later(
            self.acting_grace, self._set_status, ChatStatus.ACTING
        )
        try:
            async for raw in response.aiter_bytes():
                text = decoder.decode(raw)
                if not text:
                    continue
                if acting_timer is not None:
                    acting_timer.cancel()
                    acting_timer = None
                self._append(assistant, text)
            tail = decoder.decode(b"", final=True)
            if tail:
                self._append(assistant, tail)
        finally:
            if acting_timer is not None:
                acting_timer.cancel()

    async def _consume_ndjson(self, response: httpx.Response, assistant: ChatMessage) -> None:
        async for line in response.aiter_lines():
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("agent_chat_bad_frame", length=len(line))
                continue
            kind = event.get("event")
            data = event.get("data")
            if kind == "token" and isinstance(data, str):
                self._append(assistant, data)
            elif kind == "tool_start":
                self._set_status(ChatStatus.ACTING)
            elif kind == "tool_result":
                self._set_status(ChatStatus.STREAMING)
            elif kind == "error":
                message = data.get("message") if isinstance(data, dict) else None
                marker = f"{ERROR_PREFIX}{message or GENERIC_ERROR}"
                self._append(assistant, f"\n\n{marker}" if assistant.content else marker)
            elif kind == "message_done" and isinstance(data, dict):
                self.last_result = data
