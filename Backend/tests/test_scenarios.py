"""
End-to-end behaviours of single provider adapters.
"""

import json

import pytest

from idk_gateway.gateway.adapters import get_adapter, list_adapters
from idk_gateway.gateway.adapters.base import StreamState
from idk_gateway.gateway.constants import FunctionName
from idk_gateway.gateway.errors import (
    InvalidHostConfiguration,
    StreamTransformError,
    UpstreamProviderError,
    is_error_response,
)
from idk_gateway.gateway.services.request_builder import build_provider_request


def _payload(event: str) -> dict:
    assert event.startswith("data: ") and event.endswith("\n\n")
    return json.loads(event[len("data: "):])


def test_ollama_defaults_to_local_daemon(provider_ctx) -> None:
    adapter = get_adapter("ollama")
    ctx = provider_ctx("ollama", api_key=None)

    assert adapter.get_base_url(ctx) == "http://localhost:11434"
    assert adapter.get_endpoint(ctx) == "/v1/chat/completions"
    assert adapter.headers(ctx) == {"Content-Type": "application/json"}


def test_ollama_custom_host_overrides_origin(provider_ctx) -> None:
    adapter = get_adapter("ollama")
    ctx = provider_ctx("ollama", api_key="k", custom_host="http://gpu-box:11434/")

    assert adapter.get_base_url(ctx) == "http://gpu-box:11434"
    assert adapter.headers(ctx)["x-ollama-api-key"] == "k"


def test_script_custom_host_is_rejected_without_fallback(provider_ctx) -> None:
    adapter = get_adapter("openai")
    ctx = provider_ctx("openai", custom_host="javascript:alert(1)")

    with pytest.raises(InvalidHostConfiguration):
        adapter.get_base_url(ctx)


def test_ollama_embedding_usage_from_eval_counters(transform_ctx) -> None:
    adapter = get_adapter("ollama")
    ctx = transform_ctx("ollama", FunctionName.EMBED, {"model": "nomic-embed-text", "input": "hello"})
    body = {"embedding": [0.1, 0.2, 0.3], "prompt_eval_count": 5, "eval_count": 2}

    result = adapter.transform_response(body, 200, ctx)

    assert result["object"] == "list"
    assert result["data"] == [{"object": "embedding", "embedding": [0.1, 0.2, 0.3], "index": 0}]
    assert result["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
    assert result["provider"] == "ollama"


def test_string_error_is_normalized_and_retryable(transform_ctx, chat_body) -> None:
    adapter = get_adapter("openai")
    ctx = transform_ctx("openai", FunctionName.CHAT_COMPLETE, chat_body)

    result = adapter.transform_response({"error": "rate limited"}, 429, ctx)

    assert result == {"error": {"message": "rate limited"}, "provider": "openai"}
    error = UpstreamProviderError(429, result, provider="openai")
    assert error.retryable is True
    assert error.to_error_body() == result


@pytest.mark.parametrize("provider", ["ollama", "together-ai", "groq", "triton"])
def test_lenient_provider_emits_empty_chunk_for_bad_data(provider, transform_ctx) -> None:
    adapter = get_adapter(provider)
    function_name = FunctionName.STREAM_COMPLETE if provider == "triton" else FunctionName.STREAM_CHAT_COMPLETE
    ctx = transform_ctx(provider, function_name, {"model": "m", "stream": True})

    output = adapter.transform_stream_chunk("data: not json", "fallback-1", StreamState(), ctx)

    chunk = _payload(output)
    assert chunk["id"] == "fallback-1"
    assert chunk["provider"] == provider
    assert chunk["choices"][0]["finish_reason"] is None


@pytest.mark.parametrize(
    "provider",
    ["anthropic", "google", "mistral-ai", "deepinfra", "upstage", "predibase", "openrouter"],
)
def test_strict_provider_fails_on_bad_data(provider, transform_ctx) -> None:
    adapter = get_adapter(provider)
    ctx = transform_ctx(provider, FunctionName.STREAM_CHAT_COMPLETE, {"model": "m", "stream": True})

    with pytest.raises(StreamTransformError) as exc_info:
        adapter.transform_stream_chunk("data: not json", "fallback-1", StreamState(), ctx)

    assert exc_info.value.provider == provider
    assert exc_info.value.chunk == "data: not json"


# =============================================================================
# Properties across providers
# =============================================================================

ROUND_TRIP_BODY = {
    "messages": [
        {"role": "system", "content": "Answer in one word."},
        {"role": "user", "content": "Capital of Norway?"},
    ],
    "max_tokens": 16,
}


def _native_anthropic_reply(built: dict) -> dict:
    return {
        "id": "msg_rt",
        "type": "message",
        "role": "assistant",
        "model": built["model"],
        "content": [{"type": "text", "text": "Oslo"}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 9, "output_tokens": 1},
    }


def _native_google_reply(built: dict) -> dict:
    return {
        "candidates": [{
            "content": {"role": "model", "parts": [{"text": "Oslo"}]},
            "finishReason": "STOP",
            "index": 0,
        }],
        "modelVersion": built["model"],
        "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 1, "totalTokenCount": 10},
    }


@pytest.mark.parametrize(
    "provider, model, native_reply",
    [
        ("anthropic", "claude-3-5-haiku-20241022", _native_anthropic_reply),
        ("google", "gemini-1.5-flash", _native_google_reply),
    ],
)
def test_request_and_response_round_trip(transform_ctx, provider, model, native_reply) -> None:
    adapter = get_adapter(provider)
    body = {**ROUND_TRIP_BODY, "model": model}

    built = build_provider_request(adapter.get_function_config(FunctionName.CHAT_COMPLETE), body, provider)
    ctx = transform_ctx(provider, FunctionName.CHAT_COMPLETE, body)
    result = adapter.transform_response(native_reply(built), 200, ctx)

    assert built["model"] == model
    assert result["model"] == model
    assert result["provider"] == provider
    assert result["choices"][0]["message"] == {"role": "assistant", "content": "Oslo"}
    assert result["choices"][0]["finish_reason"] == "stop"
    assert result["usage"]["total_tokens"] == 10


MALFORMED_ERROR_BODIES = [
    None,
    "",
    "upstream exploded",
    ["unexpected"],
    {},
    {"error": None},
    {"error": ""},
    {"error": {}},
    {"error": {"message": ""}},
    {"detail": [{"loc": ["body"], "msg": "bad"}]},
    {"fault": {}},
]


def _any_function(adapter) -> FunctionName:
    for function_name in (FunctionName.CHAT_COMPLETE, FunctionName.COMPLETE, FunctionName.EMBED):
        if adapter.supports(function_name):
            return function_name
    return FunctionName.PROXY


@pytest.mark.parametrize("provider", sorted(list_adapters()))
@pytest.mark.parametrize("body", MALFORMED_ERROR_BODIES, ids=repr)
def test_error_status_always_yields_canonical_error(transform_ctx, provider, body) -> None:
    adapter = get_adapter(provider)
    function_name = _any_function(adapter)
    ctx = transform_ctx(provider, function_name, {"model": "m"})

    result = adapter.transform_response(body, 500, ctx)

    assert is_error_response(result)
    assert result["error"]["message"]
    assert result["provider"] == provider
