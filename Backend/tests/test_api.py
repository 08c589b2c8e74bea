import json

import httpx
import pytest
from fastapi.testclient import TestClient

from idk_gateway.core.config import settings
from idk_gateway.gateway.services.dispatcher import Dispatcher
from idk_gateway.gateway.services.request_log import InMemoryStorageConnector
from idk_gateway.main import app

COMPLETION = {
    "id": "chatcmpl-1",
    "object": "chat.completion",
    "created": 1,
    "model": "gpt-4o-mini",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
}

CONFIG_HEADER = json.dumps({"targets": [{"provider": "openai", "api_key": "sk-test"}]})


@pytest.fixture
def upstream():
    """Swap in a dispatcher whose provider calls go to a replaceable handler."""
    state = {"response": httpx.Response(200, json=COMPLETION), "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["response"]

    storage = InMemoryStorageConnector()
    previous = getattr(app.state, "dispatcher", None)
    app.state.dispatcher = Dispatcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)), storage=storage)
    state["storage"] = storage
    yield state
    app.state.dispatcher = previous


@pytest.fixture
def client(upstream) -> TestClient:
    return TestClient(app)


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_providers_lists_registered_adapters(client) -> None:
    response = client.get("/v1/providers")

    ids = [provider["provider"] for provider in response.json()["data"]]
    assert "openai" in ids and "anthropic" in ids
    assert ids == sorted(ids)


def test_chat_completion_with_config_header(client, upstream) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={"model": "gpt-4o-mini", "messages": [{"role": "user", "content": "Hello"}]},
        headers={settings.gateway.config_header: CONFIG_HEADER, "X-Request-ID": "req-abc"},
    )

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "Hi"
    assert response.json()["provider"] == "openai"
    assert response.headers["x-idk-provider"] == "openai"
    assert response.headers["x-idk-retry-attempt"] == "0"
    assert response.headers["X-Request-ID"] == "req-abc"
    assert upstream["storage"].logs[0].request_id == "req-abc"


def test_provider_header_and_bearer_key(client, upstream) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hello"}]},
        headers={"x-idk-provider": "groq", "Authorization": "Bearer gsk-1"},
    )

    assert response.status_code == 200
    sent = upstream["requests"][0]
    assert sent.url.host == "api.groq.com"
    assert sent.headers["authorization"] == "Bearer gsk-1"


def test_missing_routing_config_is_400(client, monkeypatch) -> None:
    monkeypatch.setattr(settings.gateway, "default_provider", None)

    response = client.post("/v1/chat/completions", json={"messages": [{"role": "user", "content": "Hello"}]})

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


def test_invalid_json_body_is_400(client) -> None:
    response = client.post(
        "/v1/chat/completions",
        content=b"{not json",
        headers={settings.gateway.config_header: CONFIG_HEADER, "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid JSON body"


def test_upstream_error_uses_canonical_body(client, upstream) -> None:
    upstream["response"] = httpx.Response(401, json={"error": {"message": "bad key", "type": "auth_error"}})

    response = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hello"}]},
        headers={settings.gateway.config_header: CONFIG_HEADER},
    )

    assert response.status_code == 401
    assert response.json() == {"error": {"message": "bad key", "type": "auth_error"}, "provider": "openai"}
    assert response.headers["x-idk-provider"] == "openai"


def test_stream_is_served_as_sse(client, upstream) -> None:
    chunk = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1,
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "delta": {"content": "Hi"}, "finish_reason": None}],
    }
    sse = f"data: {json.dumps(chunk)}\n\ndata: [DONE]\n\n"
    upstream["response"] = httpx.Response(200, content=sse.encode(), headers={"content-type": "text/event-stream"})

    response = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hello"}], "stream": True},
        headers={settings.gateway.config_header: CONFIG_HEADER},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text.endswith("data: [DONE]\n\n")
    assert response.text.count("data: [DONE]") == 1
    assert json.loads(response.text.split("\n\n")[0][len("data: "):])["provider"] == "openai"


def test_proxy_passes_body_through(client, upstream) -> None:
    upstream["response"] = httpx.Response(200, json={"object": "list", "data": [{"id": "gpt-4o"}]})

    response = client.get("/v1/proxy/models", headers={settings.gateway.config_header: CONFIG_HEADER})

    assert response.status_code == 200
    assert response.json() == {"object": "list", "data": [{"id": "gpt-4o"}]}
    assert str(upstream["requests"][0].url) == "https://api.openai.com/v1/models"
