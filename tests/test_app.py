"""HTTP surface tests. Provider traffic goes through a mocked transport."""

import logging
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import sse_body
from bridge_app.main import create_app
from provider_bridge.auth.oauth_manager import OAuthManager
from provider_bridge.client import ChatClient
from provider_bridge.config import BridgeSettings
from provider_bridge.streaming_event import Content, Done, Error, ErrorCode, streaming_event_adapter


def provider_handler(request):
    url = str(request.url)
    if url.startswith("https://oauth2.googleapis.com/token"):
        return httpx.Response(200, json={"access_token": "ya29.new", "refresh_token": "1//r", "expires_in": 3600})
    if "userinfo" in url:
        return httpx.Response(200, json={"email": "dev@example.com"})
    if request.method == "HEAD":
        return httpx.Response(200)
    if request.url.path.endswith("/projects/-"):
        return httpx.Response(200, json={"name": "projects/p-1"})
    if request.url.path.endswith("/models"):
        return httpx.Response(200, json={"data": [{"id": "b-model"}, {"id": "a-model"}]})
    if request.url.path.endswith("/chat/completions"):
        body = sse_body(
            {"choices": [{"delta": {"content": "Hi "}}]},
            {"choices": [{"delta": {"content": "there"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
    return httpx.Response(404)


@pytest.fixture
def make_client(token_store, openai_provider, antigravity_provider):
    def factory(proxy_api_key="", enable_request_logging=False):
        chat_client = ChatClient(token_store, transport=httpx.MockTransport(provider_handler))
        manager = OAuthManager(token_store, chat_client.http_client, redirect_uri="http://localhost:8000/oauth2callback")
        chat_client.oauth_manager = manager
        app = create_app(
            settings=BridgeSettings(),
            providers={openai_provider.id: openai_provider, antigravity_provider.id: antigravity_provider},
            token_store=token_store,
            chat_client=chat_client,
            oauth_manager=manager,
            proxy_api_key=proxy_api_key,
            enable_request_logging=enable_request_logging,
        )
        return TestClient(app)

    return factory


def parse_events(text):
    frames = [frame for frame in text.split("\n\n") if frame.strip()]
    assert all(frame.startswith("data: ") for frame in frames)
    return [streaming_event_adapter.validate_json(frame[len("data: "):]) for frame in frames]


def test_root(make_client):
    with make_client() as client:
        response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"Status": "Provider bridge is running"}


def test_list_providers_hides_headers(make_client):
    with make_client() as client:
        response = client.get("/v1/providers")
    assert response.status_code == 200
    providers = {p["id"]: p for p in response.json()}
    assert set(providers) == {"testai", "antigravity"}
    assert "headers" not in providers["testai"]
    assert providers["antigravity"]["auth_type"] == "oauth"


def test_proxy_api_key_required(make_client):
    with make_client(proxy_api_key="secret") as client:
        assert client.get("/v1/providers").status_code == 401
        assert client.get("/v1/providers", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/v1/providers", headers={"Authorization": "Bearer secret"}).status_code == 200


def test_unknown_provider_is_404(make_client):
    with make_client() as client:
        assert client.get("/v1/providers/nope/models").status_code == 404


def test_list_models(make_client, token_store):
    token_store.set_api_key("testai", "sk-1")
    with make_client() as client:
        response = client.get("/v1/providers/testai/models")
    assert response.status_code == 200
    assert [m["id"] for m in response.json()["data"]] == ["a-model", "b-model"]


def test_list_models_without_credentials(make_client, monkeypatch):
    monkeypatch.delenv("TESTAI_API_KEY", raising=False)
    with make_client() as client:
        response = client.get("/v1/providers/testai/models")
    assert response.status_code == 401


def test_connection_endpoint(make_client, token_store):
    token_store.set_api_key("testai", "sk-1")
    with make_client() as client:
        response = client.post("/v1/providers/testai/test")
    assert response.json()["ok"] is True


def test_chat_streams_events(make_client, token_store):
    token_store.set_api_key("testai", "sk-1")
    with make_client() as client:
        response = client.post(
            "/v1/providers/testai/chat",
            json={"messages": [{"role": "user", "content": "Hello"}], "reasoning_effort": "low"},
        )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = parse_events(response.text)
    assert [type(e) for e in events] == [Content, Content, Done]
    assert events[0].is_first is True
    assert events[-1].finish_reason == "stop"


def test_chat_without_credentials_streams_auth_error(make_client, monkeypatch):
    monkeypatch.delenv("TESTAI_API_KEY", raising=False)
    with make_client() as client:
        response = client.post("/v1/providers/testai/chat", json={"messages": [{"role": "user", "content": "Hi"}]})
    events = parse_events(response.text)
    assert len(events) == 1
    assert isinstance(events[0], Error)
    assert events[0].code == ErrorCode.AUTH_REQUIRED


def test_chat_rejects_invalid_body(make_client):
    with make_client() as client:
        response = client.post("/v1/providers/testai/chat", json={"messages": [{"role": "wizard", "content": "Hi"}]})
    assert response.status_code == 422


def test_oauth_flow_over_http(make_client, token_store):
    with make_client() as client:
        started = client.post("/v1/oauth/antigravity/start").json()
        query = parse_qs(urlparse(started["url"]).query)
        assert query["state"] == [started["state"]]
        assert query["redirect_uri"] == ["http://localhost:8000/oauth2callback"]
        assert client.get("/v1/oauth/antigravity/status").json()["status"] == "authenticating"

        rejected = client.get("/oauth2callback", params={"code": "c", "state": "forged"})
        assert rejected.status_code == 400

        callback = client.get("/oauth2callback", params={"code": "c", "state": started["state"]})
        assert callback.status_code == 200
        assert "Authentication successful!" in callback.text

        status = client.get("/v1/oauth/antigravity/status").json()
        assert status["status"] == "authenticated"
        assert status["email"] == "dev@example.com"

        assert client.post("/v1/oauth/antigravity/logout").json() == {"status": "logged_out"}
        assert client.get("/v1/oauth/antigravity/status").json()["status"] == "unauthenticated"

    assert token_store.load("antigravity") is None


def test_oauth_callback_user_cancelled(make_client):
    with make_client() as client:
        started = client.post("/v1/oauth/antigravity/start").json()
        response = client.get("/oauth/callback", params={"error": "access_denied", "state": started["state"]})
    assert response.status_code == 400
    assert "Authentication Failed" in response.text


def test_oauth_start_for_api_key_provider_is_400(make_client):
    with make_client() as client:
        response = client.post("/v1/oauth/testai/start")
    assert response.status_code == 400


def test_request_logging_summary(make_client, token_store, caplog):
    token_store.set_api_key("testai", "sk-1")
    caplog.set_level(logging.INFO)
    with make_client(enable_request_logging=True) as client:
        client.post(
            "/v1/providers/testai/chat",
            json={"model": "gpt-x", "messages": [{"role": "user", "content": "Hello"}]},
        )
    assert any(
        "provider: testai, model: gpt-x, messages: 1 - /v1/providers/testai/chat" in r.getMessage()
        for r in caplog.records
    )


def test_oauth_callback_escapes_provider_text(make_client):
    with make_client() as client:
        started = client.post("/v1/oauth/antigravity/start").json()
        response = client.get(
            "/oauth2callback",
            params={"error": "server_error", "error_description": "<script>alert(1)</script>", "state": started["state"]},
        )
    assert response.status_code == 400
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text
    assert "<script>" not in response.text
