"""Tests for the bounded tool-calling loop."""

import asyncio
import json

import pytest

from conftest import ScriptedBackend, tool_call
from littleagent.service.agent import AgentOrchestrator
from littleagent.service.errors import AgentDidNotConvergeError, ProviderError
from littleagent.service.tools import ToolRegistry


async def _collect(orchestrator, messages=None, **kwargs):
    events = []
    async for event in orchestrator.run_turn(
        "You are a test manager.", messages or [{"role": "user", "content": "hi"}], **kwargs
    ):
        events.append(event)
    return events


@pytest.fixture
def registry(store, workspace):
    return ToolRegistry(store, workspace.id, user_id=workspace.user_id)


class TestPlainReplies:
    async def test_tokens_then_message_done(self, registry):
        backend = ScriptedBackend([["Hel", "lo ", "world"]])
        events = await _collect(AgentOrchestrator(backend, registry))

        assert [e["event"] for e in events] == ["token", "token", "token", "message_done"]
        done = events[-1]["data"]
        assert done["content"] == "Hello world"
        assert done["toolCalls"] == []
        assert done["rounds"] == 0
        assert done["usage"] == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    async def test_history_starts_with_system_prompt(self, registry):
        backend = ScriptedBackend([["ok"]])
        await _collect(
            AgentOrchestrator(backend, registry),
            [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "reply"},
                {"role": "user", "content": "second"},
            ],
        )
        sent = backend.calls[0]["messages"]
        assert sent[0] == {"role": "system", "content": "You are a test manager."}
        assert [m["role"] for m in sent[1:]] == ["user", "assistant", "user"]
        assert len(backend.calls[0]["tools"]) == 8

    def test_round_limit_must_be_positive(self, registry):
        with pytest.raises(ValueError):
            AgentOrchestrator(ScriptedBackend([]), registry, max_tool_rounds=0)


class TestToolLoop:
    async def test_tool_round_feeds_results_back(self, registry, store, workspace):
        call = tool_call("create_pipeline_entry", name="Acme")
        backend = ScriptedBackend([["Adding it now. ", call], ["Done, Acme is in research."]])

        events = await _collect(AgentOrchestrator(backend, registry))

        kinds = [e["event"] for e in events]
        assert kinds == ["token", "tool_start", "tool_result", "token", "message_done"]
        start = events[1]["data"]
        assert start == {"id": call.id, "tool": "create_pipeline_entry", "input": {"name": "Acme"}}
        result = events[2]["data"]["result"]
        assert result["success"] is True
        assert [b.name for b in store.list_brands(workspace.id)] == ["Acme"]

        second_call = backend.calls[1]["messages"]
        assistant, tool_message = second_call[-2], second_call[-1]
        assert assistant["role"] == "assistant"
        assert assistant["content"] == "Adding it now. "
        assert assistant["tool_calls"][0]["function"]["name"] == "create_pipeline_entry"
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == call.id
        assert json.loads(tool_message["content"])["brand"]["name"] == "Acme"

        done = events[-1]["data"]
        assert done["content"] == "Adding it now. Done, Acme is in research."
        assert done["toolCalls"] == [{"tool": "create_pipeline_entry", "input": {"name": "Acme"}}]
        assert done["rounds"] == 1
        assert done["usage"]["total_tokens"] == 30

    async def test_several_calls_in_one_round_run_in_order(self, registry, store, workspace):
        backend = ScriptedBackend(
            [
                [
                    tool_call("create_pipeline_entry", name="Acme"),
                    tool_call("update_pipeline_stage", brandName="Acme", newStage="outreach"),
                ],
                ["Both done."],
            ]
        )
        events = await _collect(AgentOrchestrator(backend, registry))

        tools = [e["data"]["tool"] for e in events if e["event"] == "tool_result"]
        assert tools == ["create_pipeline_entry", "update_pipeline_stage"]
        assert store.list_brands(workspace.id)[0].pipeline_stage == "outreach"
        assert events[-1]["data"]["rounds"] == 1

    async def test_tool_errors_are_returned_to_the_model(self, registry, store, workspace):
        backend = ScriptedBackend(
            [
                [tool_call("draft_email", brandName="Globex", subject="Hi", body="Hello")],
                ["Globex is not in your pipeline yet."],
            ]
        )
        events = await _collect(AgentOrchestrator(backend, registry))

        result = next(e for e in events if e["event"] == "tool_result")["data"]["result"]
        assert "No brand found" in result["error"]
        assert events[-1]["event"] == "message_done"
        assert store.list_emails(workspace.id) == []


class TestRoundCap:
    async def test_exceeding_the_cap_raises(self, registry):
        turns = [[tool_call("get_pipeline_status")] for _ in range(4)]
        backend = ScriptedBackend(turns)

        with pytest.raises(AgentDidNotConvergeError) as excinfo:
            await _collect(AgentOrchestrator(backend, registry, max_tool_rounds=3))

        assert excinfo.value.error_code == "agent_did_not_converge"
        assert excinfo.value.detail == {"max_tool_rounds": 3}
        assert len(backend.calls) == 4

    async def test_default_cap_allows_eight_rounds(self, registry):
        turns = [[tool_call("get_pipeline_status")] for _ in range(8)] + [["All checked."]]
        backend = ScriptedBackend(turns)

        events = await _collect(AgentOrchestrator(backend, registry))

        assert events[-1]["data"]["rounds"] == 8
        assert len(backend.calls) == 9


class TestFailures:
    async def test_backend_error_propagates(self, registry):
        backend = ScriptedBackend([ProviderError()])
        with pytest.raises(ProviderError):
            await _collect(AgentOrchestrator(backend, registry))

    async def test_mid_stream_error_after_tokens(self, registry):
        backend = ScriptedBackend([["partial ", ProviderError()]])
        seen = []
        with pytest.raises(ProviderError):
            async for event in AgentOrchestrator(backend, registry).run_turn(
                "system", [{"role": "user", "content": "hi"}]
            ):
                seen.append(event)
        assert seen == [{"event": "token", "data": "partial "}]

    async def test_cancel_before_start_skips_the_model(self, registry, store, workspace):
        cancel = asyncio.Event()
        cancel.set()
        backend = ScriptedBackend([[tool_call("create_pipeline_entry", name="Acme")]])

        events = await _collect(AgentOrchestrator(backend, registry), cancel_event=cancel)

        assert events == []
        assert backend.calls == []
        assert store.list_brands(workspace.id) == []

    async def test_cancel_stops_before_the_next_tool(self, registry, store, workspace):
        cancel = asyncio.Event()
        backend = ScriptedBackend(
            [
                [
                    tool_call("create_pipeline_entry", name="Acme"),
                    tool_call("create_pipeline_entry", name="Globex"),
                ],
                ["Both added."],
            ]
        )

        seen = []
        async for event in AgentOrchestrator(backend, registry).run_turn(
            "system", [{"role": "user", "content": "add both"}], cancel_event=cancel
        ):
            seen.append(event["event"])
            if event["event"] == "tool_result":
                cancel.set()

        assert seen == ["tool_start", "tool_result"]
        assert [b.name for b in store.list_brands(workspace.id)] == ["Acme"]
        assert len(backend.calls) == 1
