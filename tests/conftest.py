import asyncio
import copy
import inspect
import itertools
import json
import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Configure before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-testing-only")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from littleagent.service.model_backend import TextDelta, ToolCallRequest, TurnEnd  # noqa: E402
from littleagent.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402

_call_ids = itertools.count(1)


def tool_call(tool_name, /, **arguments):
    """A model tool request with JSON-encoded arguments."""
    return ToolCallRequest(id=f"call_{next(_call_ids)}", name=tool_name, arguments=json.dumps(arguments))


class ScriptedBackend:
    """Model backend that replays canned turns.

    Each turn is a list of text chunks, ``ToolCallRequest``s and exceptions.
    Text is streamed in order; an exception is raised at its position, so one
    placed first fails before any output and one placed later fails mid-turn.
    A bare exception instead of a list fails the call immediately.
    """

    model = "scripted-model"

    def __init__(self, turns, *, verify_error=None):
        self.turns = list(turns)
        self.calls = []
        self.closed = False
        self.verify_error = verify_error
        self.verified = False

    async def stream_turn(self, messages, tools):
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools})
        step = self.turns.pop(0) if self.turns else ["(no more scripted turns)"]
        if isinstance(step, Exception):
            raise step
        requests = []
        for item in step:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, ToolCallRequest):
                requests.append(item)
            else:
                yield TextDelta(item)
        yield TurnEnd(
            tool_calls=requests,
            usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            finish_reason="tool_calls" if requests else "stop",
        )

    async def verify(self):
        self.verified = True
        if self.verify_error is not None:
            raise self.verify_error

    async def aclose(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def store():
    return get_runtime().store


def make_workspace(store, email="creator@example.com", name="Sam Creates"):
    user = store.create_user(email, name="Sam")
    workspace = store.create_workspace(name)
    store.add_membership(user.id, workspace.id, "owner")
    store.upsert_creator_profile(
        workspace.id,
        name,
        tagline="Honest tech for busy people",
        bio="Reviews gadgets for busy parents.",
        tone_of_voice="friendly",
        content_categories=["tech", "family"],
        audience_summary="25-40, UK",
        rate_card={"youtube_integration": 2500},
    )
    return SimpleNamespace(user=user, workspace=workspace, id=workspace.id, user_id=user.id)


@pytest.fixture
def workspace(store):
    return make_workspace(store)


@pytest.fixture
def install_backend(workspace):
    """Store an encrypted key for ``workspace`` and route model calls to a ScriptedBackend."""

    def _install(turns, **kwargs):
        runtime = get_runtime()
        backend = ScriptedBackend(turns, **kwargs)
        runtime.store.set_encrypted_model_key(workspace.id, runtime.key_vault.encrypt("sk-test-key-123456"))
        runtime.backend_factory = lambda api_key: backend
        return backend

    return _install


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
