"""Conversation history endpoints and store scoping."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_workspace
from littleagent import app as app_module
from littleagent.service.errors import InvalidCredentialsError
from littleagent.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _headers_for(user_id):
    return {"Authorization": f"Bearer {get_runtime().auth.issue_access_token(user_id)}"}


@pytest.fixture
def auth_headers(workspace):
    return _headers_for(workspace.user_id)


class TestConversationEndpoints:
    def test_round_trip_after_chat(self, client, auth_headers, install_backend):
        install_backend([["hello"]])
        chat = client.post(
            "/v1/agent/chat",
            headers=auth_headers,
            json={"messages": [{"role": "user", "content": "hi"}]},
        )
        conversation_id = chat.headers["x-conversation-id"]

        listed = client.get("/v1/conversations", headers=auth_headers).json()["data"]["items"]
        assert [c["id"] for c in listed] == [conversation_id]
        assert listed[0]["title"] == "hi"
        assert listed[0]["messageCount"] == 2

        detail = client.get(f"/v1/conversations/{conversation_id}", headers=auth_headers)
        assert detail.status_code == 200
        messages = detail.json()["data"]["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [("user", "hi"), ("assistant", "hello")]
        assert [m["seq"] for m in messages] == [0, 1]

    def test_create_with_and_without_title(self, client, auth_headers):
        titled = client.post("/v1/conversations", headers=auth_headers, json={"title": "  Acme deal "})
        assert titled.status_code == 201
        assert titled.json()["data"]["title"] == "Acme deal"

        untitled = client.post("/v1/conversations", headers=auth_headers)
        assert untitled.status_code == 201
        assert untitled.json()["data"]["title"] is None
        assert untitled.json()["data"]["messageCount"] == 0

    def test_list_is_most_recent_first_and_limited(self, client, auth_headers):
        ids = [
            client.post("/v1/conversations", headers=auth_headers, json={"title": f"c{i}"}).json()["data"]["id"]
            for i in range(3)
        ]
        listed = client.get("/v1/conversations?limit=2", headers=auth_headers).json()["data"]["items"]
        assert [c["id"] for c in listed] == [ids[2], ids[1]]

    def test_rename(self, client, auth_headers):
        conv_id = client.post("/v1/conversations", headers=auth_headers).json()["data"]["id"]

        response = client.patch(
            f"/v1/conversations/{conv_id}", headers=auth_headers, json={"title": " Summer campaigns "}
        )

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Summer campaigns"

    def test_rename_rejects_blank_title(self, client, auth_headers):
        conv_id = client.post("/v1/conversations", headers=auth_headers).json()["data"]["id"]
        response = client.patch(f"/v1/conversations/{conv_id}", headers=auth_headers, json={"title": "  "})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_delete_removes_messages(self, client, auth_headers, store):
        conv_id = client.post("/v1/conversations", headers=auth_headers).json()["data"]["id"]
        store.append_message(conv_id, "user", "hi")

        response = client.delete(f"/v1/conversations/{conv_id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"id": conv_id, "deleted": True}
        assert store.list_messages(conv_id) == []
        assert client.get(f"/v1/conversations/{conv_id}", headers=auth_headers).status_code == 404

    def test_unknown_conversation(self, client, auth_headers):
        response = client.get("/v1/conversations/missing", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestScoping:
    """Conversations belong to one user inside one workspace."""

    def test_other_workspace_cannot_see_or_touch(self, client, auth_headers, store, workspace):
        other = make_workspace(store, email="other@example.com", name="Other")
        theirs = store.create_conversation(other.id, other.user_id, "private")

        assert client.get("/v1/conversations", headers=auth_headers).json()["data"]["items"] == []
        assert client.get(f"/v1/conversations/{theirs.id}", headers=auth_headers).status_code == 404
        assert (
            client.patch(
                f"/v1/conversations/{theirs.id}", headers=auth_headers, json={"title": "mine now"}
            ).status_code
            == 404
        )
        assert client.delete(f"/v1/conversations/{theirs.id}", headers=auth_headers).status_code == 404
        assert store.get_conversation(theirs.id, workspace_id=other.id, user_id=other.user_id).title == "private"

    def test_teammate_in_same_workspace_has_separate_history(self, client, store, workspace):
        teammate = store.create_user("teammate@example.com")
        store.add_membership(teammate.id, workspace.id, "member")
        store.create_conversation(workspace.id, workspace.user_id, "owner chat")

        listed = client.get("/v1/conversations", headers=_headers_for(teammate.id)).json()["data"]["items"]

        assert listed == []


class TestModelKeySettings:
    def test_status_starts_unconfigured(self, client, auth_headers):
        response = client.get("/v1/settings/model-key", headers=auth_headers)
        assert response.json()["data"] == {"configured": False}

    def test_store_key_encrypted(self, client, auth_headers, store, workspace):
        response = client.put(
            "/v1/settings/model-key", headers=auth_headers, json={"apiKey": "sk-live-abcdef123456"}
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"configured": True}
        assert "sk-live-abcdef123456" not in response.text
        token = store.get_creator_profile(workspace.id).encrypted_model_key
        assert token and "sk-live-abcdef123456" not in token
        assert get_runtime().key_vault.decrypt(token) == "sk-live-abcdef123456"

    def test_verified_key_is_checked_first(self, client, auth_headers, install_backend, store, workspace):
        backend = install_backend([], verify_error=InvalidCredentialsError())
        store.set_encrypted_model_key(workspace.id, None)

        response = client.put(
            "/v1/settings/model-key",
            headers=auth_headers,
            json={"apiKey": "sk-bad-key-000000", "verify": True},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "invalid_credentials"
        assert backend.verified is True
        assert backend.closed is True
        assert store.get_creator_profile(workspace.id).encrypted_model_key is None

    def test_delete_key(self, client, auth_headers, install_backend):
        install_backend([])
        response = client.delete("/v1/settings/model-key", headers=auth_headers)
        assert response.json()["data"] == {"configured": False}
        chat = client.post(
            "/v1/agent/chat",
            headers=auth_headers,
            json={"messages": [{"role": "user", "content": "hi"}]},
        )
        assert chat.json()["error"]["code"] == "missing_credentials"

    def test_short_key_rejected(self, client, auth_headers):
        response = client.put("/v1/settings/model-key", headers=auth_headers, json={"apiKey": "abc"})
        assert response.status_code == 400
