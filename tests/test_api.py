"""HTTP layer: identity, status mapping, and response shapes."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from backend.demo import create_demo_data
from character_realm.errors import ProviderError
from conftest import LLMSequence

SAM = {"X-User-Id": "sam"}
RILEY = {"X-User-Id": "riley"}


@pytest.fixture
def llm():
    return LLMSequence([])


@pytest.fixture
def client(tmp_path, llm):
    app = create_app(data_dir=tmp_path / "data", llm=llm)
    create_demo_data(app.state.storage)
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


@pytest.mark.parametrize("headers", [{}, {"X-User-Id": "nobody"}])
def test_identity_required(client, headers):
    resp = client.get("/api/characters", headers=headers)
    assert resp.status_code == 401
    assert "detail" in resp.json()


def test_character_catalog(client):
    resp = client.get("/api/characters", headers=SAM)
    assert resp.status_code == 200
    assert [c["id"] for c in resp.json()] == ["aria", "brom", "mira"]
    assert client.get("/api/characters/aria", headers=SAM).json()["name"] == "Aria"
    missing = client.get("/api/characters/nobody", headers=SAM)
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Character not found"}


def test_session_bootstrap_and_turn(client, llm):
    llm.responses.extend(["Hello, Sam!"])

    first = client.post("/api/sessions", json={"character_id": "aria"}, headers=SAM).json()
    assert first["continued"] is False
    assert first["messages"] == []

    resp = client.post(
        f"/api/sessions/{first['session_id']}/messages",
        json={"text": "Hi, my name is Sam"},
        headers=SAM,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["reply"] == "Hello, Sam!"
    assert [m["role"] for m in body["history"]] == ["user", "assistant"]

    again = client.post("/api/sessions", json={"character_id": "aria"}, headers=SAM).json()
    assert again["session_id"] == first["session_id"]
    assert again["continued"] is True
    assert len(again["messages"]) == 2

    history = client.get(f"/api/sessions/{first['session_id']}/messages", headers=SAM).json()
    assert [m["content"] for m in history["messages"]] == ["Hi, my name is Sam", "Hello, Sam!"]


def test_session_errors(client, llm):
    assert client.post("/api/sessions", json={"character_id": "ghost"}, headers=SAM).status_code == 404
    assert client.post("/api/sessions/nope/messages", json={"text": "hi"}, headers=SAM).status_code == 404

    session_id = client.post("/api/sessions", json={"character_id": "aria"}, headers=SAM).json()["session_id"]
    assert client.get(f"/api/sessions/{session_id}/messages", headers=RILEY).status_code == 403
    assert client.post(f"/api/sessions/{session_id}/messages", json={"text": " "}, headers=SAM).status_code == 400


def test_provider_failure_is_generic(client, llm):
    llm.responses.extend([ProviderError("secret backend detail")])
    session_id = client.post("/api/sessions", json={"character_id": "aria"}, headers=SAM).json()["session_id"]
    resp = client.post(f"/api/sessions/{session_id}/messages", json={"text": "hi"}, headers=SAM)
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Failed to generate a reply"}
    history = client.get(f"/api/sessions/{session_id}/messages", headers=SAM).json()
    assert history["messages"] == []


def test_group_flow(client, llm):
    llm.responses.extend(["Aria waves.", "Brom grunts."])

    available = client.get("/api/groups/available", headers=SAM).json()
    assert [c["id"] for c in available["characters"]] == ["aria", "brom", "mira"]
    assert [u["id"] for u in available["users"]] == ["riley"]

    resp = client.post(
        "/api/groups",
        json={"name": "Sky Crew", "user_ids": ["riley"], "character_ids": ["aria", "brom"]},
        headers=SAM,
    )
    assert resp.status_code == 200
    group = resp.json()["group"]
    assert group["user_ids"] == ["sam", "riley"]

    resp = client.post(f"/api/groups/{group['id']}/messages", json={"text": "hello all"}, headers=RILEY)
    assert [m["sender_name"] for m in resp.json()["messages"]] == ["Riley", "Aria", "Brom"]

    listed = client.get("/api/groups", headers=SAM).json()["groups"]
    assert [g["name"] for g in listed] == ["Sky Crew"]
    assert listed[0]["character_names"] == ["Aria", "Brom"]

    view = client.get(f"/api/groups/{group['id']}", headers=SAM).json()
    assert len(view["messages"]) == 3
    assert [u["name"] for u in view["users"]] == ["Sam", "Riley"]

    assert client.get(f"/api/groups/{group['id']}", headers={"X-User-Id": "jordan"}).status_code == 403
    assert client.delete(f"/api/groups/{group['id']}", headers=RILEY).status_code == 403
    assert client.delete(f"/api/groups/{group['id']}", headers=SAM).json() == {"ok": True}
    assert client.get(f"/api/groups/{group['id']}", headers=SAM).status_code == 404


@pytest.mark.parametrize("character_ids, detail", [
    ([], "At least one character is required"),
    (["aria", "brom", "mira", "c4", "c5", "c6"], "Maximum 5 characters allowed"),
])
def test_group_bounds(client, character_ids, detail):
    resp = client.post(
        "/api/groups",
        json={"name": "Crew", "character_ids": character_ids},
        headers=SAM,
    )
    assert resp.status_code == 400
    assert resp.json() == {"detail": detail}


def test_auto_chat_toggle(client, llm):
    client.app.state.storage.update_config({"limits": {"auto_chat_rounds": 1}})
    llm.responses.extend(["a1"])
    group = client.post(
        "/api/groups", json={"name": "Solo", "character_ids": ["mira"]}, headers=SAM,
    ).json()["group"]

    on = client.patch(f"/api/groups/{group['id']}/auto-chat", json={"enabled": True}, headers=SAM).json()
    assert [m["sender_kind"] for m in on["messages"]] == ["system", "character"]
    off = client.patch(f"/api/groups/{group['id']}/auto-chat", json={"enabled": False}, headers=SAM).json()
    assert off["messages"][-1]["sender_kind"] == "system"


def test_settings_mask_api_key(client):
    resp = client.patch("/api/settings", json={"llm": {"api_key": "sk-123"}}, headers=SAM)
    assert resp.json()["llm"]["api_key"] == "********"
    client.patch("/api/settings", json={"llm": {"api_key": "********", "model": "m1"}}, headers=SAM)
    stored = client.app.state.storage.get_config()
    assert stored["llm"]["api_key"] == "sk-123"
    assert stored["llm"]["model"] == "m1"
    assert client.get("/api/settings", headers=SAM).json()["llm"]["api_key"] == "********"


def test_check_connection(client):
    ok = MagicMock()
    ok.raise_for_status = MagicMock()
    with patch("httpx.AsyncClient.get", AsyncMock(return_value=ok)) as get:
        resp = client.post(
            "/api/check-connection",
            json={"provider_url": "http://llm:5001/", "provider_format": "openai", "api_key": "k"},
            headers=SAM,
        )
    assert resp.json() == {"ok": True}
    assert get.call_args.args[0] == "http://llm:5001/v1/models"
    assert get.call_args.kwargs["headers"] == {"Authorization": "Bearer k"}

    with patch("httpx.AsyncClient.get", AsyncMock(side_effect=httpx.ConnectError("refused"))):
        resp = client.post("/api/check-connection", json={"provider_url": "http://llm:5001"}, headers=SAM)
    assert resp.json() == {"ok": False}


@pytest.mark.parametrize("method, path, body", [
    ("get", "/api/settings", None),
    ("patch", "/api/settings", {"llm": {"provider_url": "http://evil:1"}}),
    ("post", "/api/check-connection", {"provider_url": "http://llm:5001"}),
])
def test_settings_require_identity(client, method, path, body):
    kwargs = {"json": body} if body is not None else {}
    resp = getattr(client, method)(path, **kwargs)
    assert resp.status_code == 401
    assert client.app.state.storage.get_config()["llm"]["provider_url"] != "http://evil:1"


@pytest.mark.parametrize("fields", [
    {"limits": {"max_message_length": "oops"}},
    {"limits": {"max_message_length": 0}},
    {"llm": {"provider_format": "carrier-pigeon"}},
    {"limits": 5},
])
def test_invalid_settings_rejected(client, llm, fields):
    resp = client.patch("/api/settings", json=fields, headers=SAM)
    assert resp.status_code == 400
    assert client.app.state.storage.get_config()["limits"]["max_message_length"] == 1000

    llm.responses.extend(["still fine"])
    session_id = client.post("/api/sessions", json={"character_id": "aria"}, headers=SAM).json()["session_id"]
    turn = client.post(f"/api/sessions/{session_id}/messages", json={"text": "hi"}, headers=SAM)
    assert turn.status_code == 200
    assert turn.json()["reply"] == "still fine"


@pytest.mark.parametrize("path", ["/api/sessions/nope/messages", "/api/groups/nope/messages"])
def test_missing_conversation_wins_over_empty_text(client, path):
    assert client.post(path, json={"text": ""}, headers=SAM).status_code == 404
