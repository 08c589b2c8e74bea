"""
Shared fixtures for gateway tests.

Upstream providers are simulated with httpx.MockTransport; nothing here
opens a network connection.
"""

from typing import Any, Callable, Dict, Optional

import httpx
import pytest

from idk_gateway.gateway.adapters.base import ProviderContext, TransformContext
from idk_gateway.gateway.constants import FunctionName
from idk_gateway.gateway.routing import GatewayConfig, Target
from idk_gateway.gateway.schemas import RequestData
from idk_gateway.gateway.services.request_log import InMemoryStorageConnector

CHAT_BODY: Dict[str, Any] = {
    "model": "gpt-4o-mini",
    "messages": [{"role": "user", "content": "Hello"}],
}

FUNCTION_PATHS = {
    FunctionName.CHAT_COMPLETE: "/v1/chat/completions",
    FunctionName.STREAM_CHAT_COMPLETE: "/v1/chat/completions",
    FunctionName.COMPLETE: "/v1/completions",
    FunctionName.STREAM_COMPLETE: "/v1/completions",
    FunctionName.EMBED: "/v1/embeddings",
    FunctionName.GENERATE_IMAGE: "/v1/images/generations",
    FunctionName.CREATE_MODEL_RESPONSE: "/v1/responses",
}


@pytest.fixture
def chat_body() -> Dict[str, Any]:
    return {"model": CHAT_BODY["model"], "messages": [dict(m) for m in CHAT_BODY["messages"]]}


@pytest.fixture
def make_target() -> Callable[..., Target]:
    def factory(provider: str = "openai", api_key: Optional[str] = "sk-test", **fields: Any) -> Target:
        return Target.model_validate({"provider": provider, "api_key": api_key, **fields})
    return factory


@pytest.fixture
def make_config() -> Callable[..., GatewayConfig]:
    def factory(**data: Any) -> GatewayConfig:
        return GatewayConfig.model_validate(data)
    return factory


@pytest.fixture
def make_request() -> Callable[..., RequestData]:
    def factory(
        function_name: FunctionName = FunctionName.CHAT_COMPLETE,
        body: Optional[Dict[str, Any]] = None,
        method: str = "POST",
        url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RequestData:
        path = FUNCTION_PATHS.get(function_name, "/v1/proxy")
        return RequestData(
            function_name=function_name,
            method=method,
            url=url or f"http://testserver{path}",
            request_body=body if body is not None else {},
            request_headers=headers or {},
        )
    return factory


@pytest.fixture
def provider_ctx(make_target, make_request) -> Callable[..., ProviderContext]:
    def factory(
        provider: str,
        function_name: FunctionName = FunctionName.CHAT_COMPLETE,
        body: Optional[Dict[str, Any]] = None,
        target: Optional[Target] = None,
        provider_body: Optional[Dict[str, Any]] = None,
        **target_fields: Any,
    ) -> ProviderContext:
        return ProviderContext(
            target=target or make_target(provider, **target_fields),
            request_data=make_request(function_name, body),
            provider_body=provider_body or {},
        )
    return factory


@pytest.fixture
def transform_ctx(make_request) -> Callable[..., TransformContext]:
    def factory(
        provider: str,
        function_name: FunctionName = FunctionName.CHAT_COMPLETE,
        body: Optional[Dict[str, Any]] = None,
        strict: bool = True,
    ) -> TransformContext:
        return TransformContext(
            provider=provider,
            function_name=function_name,
            request_data=make_request(function_name, body),
            strict_compliance=strict,
        )
    return factory


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], Any]], httpx.AsyncClient]:
    """AsyncClient whose requests are answered by a handler function."""
    def factory(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture
def storage() -> InMemoryStorageConnector:
    return InMemoryStorageConnector()


@pytest.fixture
def no_backoff(monkeypatch):
    """Retry immediately instead of sleeping between attempts."""
    from idk_gateway.core.config import settings

    monkeypatch.setattr(settings.gateway, "retry_backoff_base_ms", 0)
