import importlib.util
from pathlib import Path

import pytest

from littleagent.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "bootstrap_workspace.py"


@pytest.fixture
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_workspace", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.bootstrap_workspace


class TestBootstrapWorkspace:
    async def test_creates_owner_workspace_and_token(self, bootstrap):
        result = bootstrap("Owner@Example.com", "Sam Creates")
        runtime = get_runtime()

        assert result["status"] == "created"
        membership = runtime.store.get_earliest_membership(result["user_id"])
        assert membership.workspace_id == result["workspace_id"]
        assert runtime.store.get_workspace(result["workspace_id"]).slug == "sam-creates"
        assert runtime.store.get_creator_profile(result["workspace_id"]).brand_name == "Sam Creates"

        ctx = await runtime.auth.authenticate(f"Bearer {result['access_token']}")
        assert ctx.user_id == result["user_id"]

    def test_second_run_reuses_workspace(self, bootstrap):
        first = bootstrap("owner@example.com", "Sam Creates")
        second = bootstrap("owner@example.com", "Another Name")

        assert second["status"] == "exists"
        assert second["workspace_id"] == first["workspace_id"]

    def test_model_key_is_stored_encrypted(self, bootstrap):
        result = bootstrap("owner@example.com", "Sam Creates", model_key="sk-bootstrap-123456")
        runtime = get_runtime()

        token = runtime.store.get_creator_profile(result["workspace_id"]).encrypted_model_key
        assert token and "sk-bootstrap" not in token
        assert runtime.key_vault.decrypt(token) == "sk-bootstrap-123456"

    def test_dry_run_writes_nothing(self, bootstrap):
        result = bootstrap("owner@example.com", "Sam Creates", dry_run=True)

        assert result["status"] == "dry_run"
        assert get_runtime().store.get_user_by_email("owner@example.com") is None
