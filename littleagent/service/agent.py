from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional

from littleagent.logging import get_logger
from littleagent.service.errors import AgentDidNotConvergeError
from littleagent.service.model_backend import ModelBackend, TextDelta, TurnEnd
from littleagent.service.tools import ToolRegistry

logger = get_logger(__name__)

AgentEvent = Dict[str, Any]

DEFAULT_MAX_TOOL_ROUNDS = 8


def _event(kind: str, data: Any) -> AgentEvent:
    return {"event": kind, "data": data}


def _parse_arguments(raw: str) -> Any:
    """Best-effort decode for logging and persistence; the registry re-validates."""
    if not raw or not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _add_usage(total: Dict[str, int], usage: Dict[str, int]) -> None:
    for key, value in usage.items():
        if isinstance(value, int):
            total[key] = total.get(key, 0) + value


class AgentOrchestrator:
    """Drive one conversational turn against a model with workspace tools.

    Each model call streams text out as ``token`` events. When the call ends
    with tool requests, every tool is executed in a worker thread, the results
    are appended to the working history, and the model is called again. The
    loop ends when a call finishes without tool requests; more than
    ``max_tool_rounds`` tool rounds raises ``AgentDidNotConvergeError``.

    Yields events:
    - {"event": "token", "data": "text"}
    - {"event": "tool_start", "data": {"id", "tool", "input"}}
    - {"event": "tool_result", "data": {"id", "tool", "result"}}
    - {"event": "message_done", "data": {"content", "toolCalls", "usage", "rounds"}}
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolRegistry,
        *,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self.backend = backend
        self.registry = registry
        self.max_tool_rounds = max_tool_rounds

    async def run_turn(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[AgentEvent]:
        history: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        history.extend({"role": m["role"], "content": m["content"]} for m in messages)
        tools = self.registry.definitions()

        content_parts: List[str] = []
        tool_calls: List[Dict[str, Any]] = []
        usage: Dict[str, int] = {}
        rounds = 0
        started = time.monotonic()

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("agent_turn_cancelled", workspace_id=self.registry.workspace_id)
                return
            step_text: List[str] = []
            turn_end: Optional[TurnEnd] = None
            async for item in self.backend.stream_turn(history, tools):
                if isinstance(item, TextDelta):
                    if not item.text:
                        continue
                    step_text.append(item.text)
                    content_parts.append(item.text)
                    yield _event("token", item.text)
                elif isinstance(item, TurnEnd):
                    turn_end = item
            if turn_end is None:
                turn_end = TurnEnd()
            _add_usage(usage, turn_end.usage)

            if not turn_end.tool_calls:
                break

            rounds += 1
            if rounds > self.max_tool_rounds:
                logger.warning(
                    "agent_round_limit_exceeded",
                    workspace_id=self.registry.workspace_id,
                    max_tool_rounds=self.max_tool_rounds,
                )
                raise AgentDidNotConvergeError(
                    "The AI manager could not finish this request. Please try rephrasing it.",
                    detail={"max_tool_rounds": self.max_tool_rounds},
                )

            history.append(
                {
                    "role": "assistant",
                    "content": "".join(step_text) or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in turn_end.tool_calls
                    ],
                }
            )
            for call in turn_end.tool_calls:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("agent_turn_cancelled", workspace_id=self.registry.workspace_id)
                    return
                tool_input = _parse_arguments(call.arguments)
                tool_calls.append({"tool": call.name, "input": tool_input})
                yield _event("tool_start", {"id": call.id, "tool": call.name, "input": tool_input})
                result = await asyncio.to_thread(self.registry.execute, call.name, call.arguments)
                yield _event("tool_result", {"id": call.id, "tool": call.name, "result": result})
                history.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(result, default=str),
                    }
                )

        logger.info(
            "agent_turn_completed",
            workspace_id=self.registry.workspace_id,
            model=getattr(self.backend, "model", None),
            rounds=rounds,
            tools=[c["tool"] for c in tool_calls],
            usage=usage,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        yield _event(
            "message_done",
            {
                "content": "".join(content_parts),
                "toolCalls": tool_calls,
                "usage": usage,
                "rounds": rounds,
            },
        )
