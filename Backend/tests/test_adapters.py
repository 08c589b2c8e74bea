import json

import pytest

from idk_gateway.gateway import adapters
from idk_gateway.gateway.adapters import get_adapter, list_adapters, register_adapter
from idk_gateway.gateway.adapters.base import StreamState
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter
from idk_gateway.gateway.constants import SSE_DONE, AIProvider, FunctionName
from idk_gateway.gateway.errors import InvalidHostConfiguration, MissingRequiredParameter
from idk_gateway.gateway.services.request_builder import build_provider_request


def build(provider, function_name, body, target=None):
    adapter = get_adapter(provider)
    return build_provider_request(adapter.get_function_config(function_name), body, provider, target)


def payload(event: str) -> dict:
    return json.loads(event[len("data: "):])


# =============================================================================
# Registry
# =============================================================================

def test_every_provider_is_registered() -> None:
    assert set(list_adapters()) == {provider.value for provider in AIProvider}


def test_unknown_provider_raises() -> None:
    with pytest.raises(ValueError, match="Unknown adapter type"):
        get_adapter("not-a-provider")


def test_adapters_are_singletons() -> None:
    assert get_adapter("openai") is get_adapter("openai")


def test_register_adapter_replaces_cached_instance(monkeypatch) -> None:
    monkeypatch.setattr(adapters, "_ADAPTER_REGISTRY", dict(adapters._ADAPTER_REGISTRY))
    monkeypatch.setattr(adapters, "_ADAPTER_INSTANCES", dict(adapters._ADAPTER_INSTANCES))

    class LocalAdapter(OpenAICompatibleAdapter):
        PROVIDER = "local-test"
        BASE_URL = "http://localhost:9999/v1"

    register_adapter("local-test", LocalAdapter)

    adapter = get_adapter("local-test")
    assert isinstance(adapter, LocalAdapter)
    assert adapter.describe()["functions"] == ["chat_complete", "stream_chat_complete", "complete",
                                               "stream_complete", "embed", "proxy"]


def test_describe_lists_custom_fields() -> None:
    described = get_adapter("azure-openai").describe()

    assert described["provider"] == "azure-openai"
    assert "azure_openai_config" in described["custom_fields"]
    assert described["lenient_stream_parsing"] is True


# =============================================================================
# OpenAI / Azure OpenAI
# =============================================================================

def test_openai_headers(provider_ctx) -> None:
    ctx = provider_ctx("openai", openai_organization="org-1", openai_project="proj-1", openai_beta="assistants=v2")

    headers = get_adapter("openai").headers(ctx)

    assert headers == {
        "Content-Type": "application/json",
        "Authorization": "Bearer sk-test",
        "OpenAI-Organization": "org-1",
        "OpenAI-Project": "proj-1",
        "OpenAI-Beta": "assistants=v2",
    }


def test_openai_requires_api_key(provider_ctx) -> None:
    with pytest.raises(MissingRequiredParameter, match="api_key"):
        get_adapter("openai").headers(provider_ctx("openai", api_key=None))


def test_openai_chat_table_fills_required_defaults_only() -> None:
    built = build("openai", FunctionName.CHAT_COMPLETE, {"messages": [{"role": "user", "content": "hi"}], "foo": 1})

    assert built == {"model": "gpt-3.5-turbo", "messages": [{"role": "user", "content": "hi"}]}


def test_openai_response_lookup_endpoint(make_target, make_request) -> None:
    from idk_gateway.gateway.adapters.base import ProviderContext

    request = make_request(
        FunctionName.LIST_RESPONSE_INPUT_ITEMS,
        method="GET",
        url="http://testserver/v1/responses/resp_1/input_items?limit=2",
    )
    ctx = ProviderContext(target=make_target("openai"), request_data=request)

    assert get_adapter("openai").get_endpoint(ctx) == "/responses/resp_1/input_items?limit=2"


def test_openai_proxy_endpoint_strips_version_prefix(make_target) -> None:
    endpoint = get_adapter("openai").get_proxy_endpoint("/v1/models", "limit=1", make_target("openai"))

    assert endpoint == "/models?limit=1"


def test_openai_response_is_completed_and_tagged(transform_ctx, chat_body) -> None:
    ctx = transform_ctx("openai", FunctionName.CHAT_COMPLETE, chat_body)
    body = {"choices": [{"index": 0, "message": {"role": "assistant", "content": "hey"}, "finish_reason": "stop"}]}

    result = get_adapter("openai").transform_response(body, 200, ctx)

    assert result["object"] == "chat.completion"
    assert result["model"] == "gpt-4o-mini"
    assert result["provider"] == "openai"
    assert result["usage"] == {"prompt_tokens": -1, "completion_tokens": -1, "total_tokens": -1}
    assert result["id"].startswith("openai-")


def test_openai_unrecognized_success_body_is_invalid(transform_ctx, chat_body) -> None:
    ctx = transform_ctx("openai", FunctionName.CHAT_COMPLETE, chat_body)

    result = get_adapter("openai").transform_response({"unexpected": True}, 200, ctx)

    assert result["error"]["code"] == "invalid_provider_response"
    assert result["provider"] == "openai"


def test_openai_error_object_is_normalized(transform_ctx, chat_body) -> None:
    ctx = transform_ctx("openai", FunctionName.CHAT_COMPLETE, chat_body)
    body = {"error": {"message": "bad key", "type": "invalid_request_error", "param": None, "code": "invalid_api_key"}}

    result = get_adapter("openai").transform_response(body, 401, ctx)

    assert result == {
        "error": {"message": "bad key", "type": "invalid_request_error", "code": "invalid_api_key"},
        "provider": "openai",
    }


def test_non_json_error_body_keeps_the_text(transform_ctx, chat_body) -> None:
    ctx = transform_ctx("groq", FunctionName.CHAT_COMPLETE, chat_body)

    result = get_adapter("groq").transform_response("Bad Gateway", 502, ctx)

    assert result == {"error": {"message": "Bad Gateway"}, "provider": "groq"}


def test_azure_uses_resource_origin_and_api_key_header(provider_ctx) -> None:
    adapter = get_adapter("azure-openai")
    ctx = provider_ctx(
        "azure-openai",
        azure_openai_config={"url": "https://my-resource.openai.azure.com/"},
        azure_api_version="preview",
    )

    assert adapter.get_base_url(ctx) == "https://my-resource.openai.azure.com"
    assert adapter.get_endpoint(ctx) == "/openai/v1/chat/completions?api-version=preview"
    assert adapter.headers(ctx) == {"Content-Type": "application/json", "api-key": "sk-test"}


def test_azure_without_resource_config_is_rejected(provider_ctx) -> None:
    with pytest.raises(InvalidHostConfiguration, match="azure_openai_config"):
        get_adapter("azure-openai").get_base_url(provider_ctx("azure-openai"))


def test_azure_proxy_endpoint_adds_api_version(make_target) -> None:
    target = make_target("azure-openai", azure_api_version="2024-10-21")

    endpoint = get_adapter("azure-openai").get_proxy_endpoint("/openai/deployments/x/chat/completions", "", target)

    assert endpoint == "/openai/deployments/x/chat/completions?api-version=2024-10-21"


# =============================================================================
# Anthropic
# =============================================================================

def test_anthropic_request_moves_system_and_tools() -> None:
    body = {
        "model": "claude-3-5-sonnet-latest",
        "messages": [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "Weather?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "call_1", "type": "function",
                                "function": {"name": "weather", "arguments": "{\"city\": \"Oslo\"}"}}],
            },
            {"role": "tool", "tool_call_id": "call_1", "content": "rain"},
        ],
        "stop": "END",
        "user": "u-1",
    }

    built = build("anthropic", FunctionName.CHAT_COMPLETE, body)

    assert built["model"] == "claude-3-5-sonnet-20241022"
    assert built["system"] == [{"type": "text", "text": "Be terse."}]
    assert built["max_tokens"] == 4096
    assert built["stop_sequences"] == ["END"]
    assert built["metadata"] == {"user_id": "u-1"}
    assert built["messages"] == [
        {"role": "user", "content": "Weather?"},
        {"role": "assistant", "content": [
            {"type": "tool_use", "name": "weather", "id": "call_1", "input": {"city": "Oslo"}},
        ]},
        {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "rain"}]},
    ]


def test_anthropic_json_mode_forces_output_tool() -> None:
    body = {
        "messages": [{"role": "user", "content": "List three colors"}],
        "response_format": {"type": "json_object"},
    }

    built = build("anthropic", FunctionName.CHAT_COMPLETE, body)

    assert built["tools"][-1]["name"] == "__json_output"
    assert built["tool_choice"] == {"type": "tool", "name": "__json_output"}
    assert "__json_output" in built["system"][0]["text"]


def test_anthropic_temperature_bound() -> None:
    from idk_gateway.gateway.errors import ParameterOutOfRange

    with pytest.raises(ParameterOutOfRange):
        build("anthropic", FunctionName.CHAT_COMPLETE, {"messages": [{"role": "user", "content": "x"}],
                                                       "temperature": 1.5})


def test_anthropic_headers(provider_ctx) -> None:
    headers = get_adapter("anthropic").headers(provider_ctx("anthropic", anthropic_beta="prompt-caching-2024-07-31"))

    assert headers["x-api-key"] == "sk-test"
    assert headers["anthropic-version"] == "2023-06-01"
    assert headers["anthropic-beta"] == "prompt-caching-2024-07-31"
    assert "Authorization" not in headers


def test_anthropic_response_with_json_output(transform_ctx) -> None:
    ctx = transform_ctx("anthropic", FunctionName.CHAT_COMPLETE, {"model": "claude-3-5-haiku-latest"})
    body = {
        "id": "msg_1",
        "model": "claude-3-5-haiku-20241022",
        "content": [{"type": "tool_use", "id": "t1", "name": "__json_output", "input": {"colors": ["red"]}}],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 10, "output_tokens": 4},
    }

    result = get_adapter("anthropic").transform_response(body, 200, ctx)

    message = result["choices"][0]["message"]
    assert json.loads(message["content"]) == {"colors": ["red"]}
    assert message["parsed"] == {"colors": ["red"]}
    assert "tool_calls" not in message
    assert result["usage"] == {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14}
    assert result["id"] == "msg_1"


def test_anthropic_response_with_tool_calls(transform_ctx) -> None:
    ctx = transform_ctx("anthropic", FunctionName.CHAT_COMPLETE, {"model": "claude-3-5-haiku-latest"})
    body = {
        "id": "msg_2",
        "content": [
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "t1", "name": "weather", "input": {"city": "Oslo"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 3, "output_tokens": 2},
    }

    result = get_adapter("anthropic").transform_response(body, 200, ctx)

    choice = result["choices"][0]
    assert choice["finish_reason"] == "tool_calls"
    assert choice["message"]["content"] == "Checking."
    assert choice["message"]["tool_calls"][0]["function"] == {"name": "weather", "arguments": "{\"city\": \"Oslo\"}"}


def test_anthropic_stream_events(transform_ctx) -> None:
    adapter = get_adapter("anthropic")
    ctx = transform_ctx("anthropic", FunctionName.STREAM_CHAT_COMPLETE, {"model": "claude", "stream": True})
    state = StreamState()
    events = [
        {"type": "message_start", "message": {"model": "claude-3-5-haiku-20241022", "usage": {"input_tokens": 7}}},
        {"type": "ping"},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 3}},
        {"type": "message_stop"},
    ]

    outputs = [
        adapter.transform_stream_chunk(f"event: {e['type']}\ndata: {json.dumps(e)}", "fb", state, ctx)
        for e in events
    ]

    assert payload(outputs[0])["model"] == "claude-3-5-haiku-20241022"
    assert outputs[1] == ""
    assert payload(outputs[3])["choices"][0]["delta"]["content"] == "Hi"
    assert outputs[4] == ""
    final = payload(outputs[5])
    assert final["choices"][0]["finish_reason"] == "stop"
    assert final["usage"] == {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10}
    assert outputs[6] == SSE_DONE


def test_anthropic_stream_tool_call_indexes_start_at_zero(transform_ctx) -> None:
    adapter = get_adapter("anthropic")
    ctx = transform_ctx("anthropic", FunctionName.STREAM_CHAT_COMPLETE, {"model": "claude", "stream": True})
    state = StreamState()
    start = {"type": "content_block_start", "index": 1,
             "content_block": {"type": "tool_use", "id": "t1", "name": "weather"}}
    delta = {"type": "content_block_delta", "index": 1,
             "delta": {"type": "input_json_delta", "partial_json": "{\"city\""}}

    first = payload(adapter.transform_stream_chunk(f"data: {json.dumps(start)}", "fb", state, ctx))
    second = payload(adapter.transform_stream_chunk(f"data: {json.dumps(delta)}", "fb", state, ctx))

    assert first["choices"][0]["delta"]["tool_calls"][0]["index"] == 0
    assert first["choices"][0]["delta"]["tool_calls"][0]["function"]["name"] == "weather"
    assert second["choices"][0]["delta"]["tool_calls"] == [{"index": 0, "function": {"arguments": "{\"city\""}}]


# =============================================================================
# Google
# =============================================================================

def test_google_endpoints(provider_ctx) -> None:
    adapter = get_adapter("google")
    body = {"model": "gemini-1.5-flash", "messages": [{"role": "user", "content": "x"}]}

    chat = provider_ctx("google", FunctionName.CHAT_COMPLETE, body)
    stream = provider_ctx("google", FunctionName.STREAM_CHAT_COMPLETE, {**body, "stream": True})

    assert adapter.get_endpoint(chat) == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert adapter.get_endpoint(stream) == "/v1beta/models/gemini-1.5-flash:streamGenerateContent?alt=sse"
    assert adapter.headers(chat) == {"Content-Type": "application/json", "x-goog-api-key": "sk-test"}


def test_google_request_contents_and_generation_config(provider_ctx) -> None:
    body = {
        "model": "gemini-1.5-flash",
        "messages": [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "a"},
            {"role": "user", "content": "b"},
            {"role": "assistant", "content": "c"},
        ],
        "temperature": 0.2,
        "max_tokens": 64,
        "stop": "END",
    }

    built = build("google", FunctionName.CHAT_COMPLETE, body)
    finalized = get_adapter("google").finalize_request_body(built, provider_ctx("google", body=body))

    assert finalized["contents"] == [
        {"role": "user", "parts": [{"text": "a"}, {"text": "b"}]},
        {"role": "model", "parts": [{"text": "c"}]},
    ]
    assert finalized["systemInstruction"] == {"role": "system", "parts": [{"text": "Be terse."}]}
    assert finalized["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 64, "stopSequences": ["END"]}
    assert "model" not in finalized


def test_google_response(transform_ctx) -> None:
    ctx = transform_ctx("google", FunctionName.CHAT_COMPLETE, {"model": "gemini-1.5-flash"})
    body = {
        "candidates": [{"content": {"parts": [{"text": "Hello"}]}, "finishReason": "MAX_TOKENS"}],
        "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 1, "totalTokenCount": 4},
    }

    result = get_adapter("google").transform_response(body, 200, ctx)

    assert result["choices"][0]["message"] == {"role": "assistant", "content": "Hello"}
    assert result["choices"][0]["finish_reason"] == "length"
    assert result["usage"] == {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4}


def test_google_error_status_is_normalized(transform_ctx) -> None:
    ctx = transform_ctx("google", FunctionName.CHAT_COMPLETE, {"model": "gemini-1.5-flash"})
    body = {"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}}

    result = get_adapter("google").transform_response(body, 400, ctx)

    assert result == {
        "error": {"message": "API key not valid", "type": "INVALID_ARGUMENT", "code": "400"},
        "provider": "google",
    }


def test_google_embeddings_take_a_single_string() -> None:
    from idk_gateway.gateway.errors import ValidationError

    built = build("google", FunctionName.EMBED, {"model": "text-embedding-004", "input": "hi"})
    assert built["content"] == {"parts": [{"text": "hi"}]}

    with pytest.raises(ValidationError):
        build("google", FunctionName.EMBED, {"model": "text-embedding-004", "input": ["a", "b"]})


# =============================================================================
# Mistral AI
# =============================================================================

def test_mistral_request_renames() -> None:
    body = {
        "model": "mistralai.mistral-large-latest",
        "messages": [{"role": "developer", "content": "x"}],
        "seed": 7,
        "tool_choice": "required",
    }

    built = build("mistral-ai", FunctionName.CHAT_COMPLETE, body)

    assert built["model"] == "mistral-large-latest"
    assert built["messages"] == [{"role": "system", "content": "x"}]
    assert built["random_seed"] == 7
    assert built["tool_choice"] == "any"


def test_mistral_fim_endpoint(provider_ctx) -> None:
    adapter = get_adapter("mistral-ai")

    assert adapter.get_endpoint(provider_ctx("mistral-ai")) == "/chat/completions"
    assert adapter.get_endpoint(provider_ctx("mistral-ai", mistral_fim_completion=True)) == "/fim/completions"


# =============================================================================
# Native formats
# =============================================================================

def test_ai21_request_and_endpoint(provider_ctx) -> None:
    body = {
        "model": "j2-mid",
        "messages": [{"role": "system", "content": "Be nice."}, {"role": "user", "content": "Hi"}],
        "presence_penalty": 0.5,
        "temperature": 1.4,
    }
    adapter = get_adapter("ai21")

    built = build("ai21", FunctionName.CHAT_COMPLETE, body)
    ctx = provider_ctx("ai21", body=body, provider_body=built)

    assert built["messages"] == [{"text": "Hi", "role": "user"}]
    assert built["system"] == "Be nice."
    assert built["presencePenalty"] == {"scale": 0.5}
    assert built["temperature"] == 1
    assert adapter.get_endpoint(ctx) == "/j2-mid/chat"
    assert "model" not in adapter.finalize_request_body(built, ctx)


def test_ai21_response(transform_ctx) -> None:
    ctx = transform_ctx("ai21", FunctionName.CHAT_COMPLETE, {"model": "j2-mid"})
    body = {"id": "r1", "outputs": [{"text": "Hello", "role": "assistant", "finishReason": {"reason": "endoftext"}}]}

    result = get_adapter("ai21").transform_response(body, 200, ctx)

    assert result["choices"][0]["message"]["content"] == "Hello"
    assert result["choices"][0]["finish_reason"] == "endoftext"
    assert result["usage"]["total_tokens"] == -1


def test_reka_conversation_alternates_and_starts_with_human() -> None:
    body = {
        "messages": [
            {"role": "system", "content": "s"},
            {"role": "assistant", "content": "a"},
            {"role": "user", "content": "u1"},
            {"role": "user", "content": "u2"},
        ],
    }

    built = build("reka-ai", FunctionName.CHAT_COMPLETE, body)

    history = built["conversation_history"]
    assert [turn["type"] for turn in history] == ["human", "model", "human", "model", "human", "model", "human"]
    assert [turn["text"] for turn in history] == [
        "Placeholder for alternation", "s", "Placeholder for alternation", "a",
        "u1", "Placeholder for alternation", "u2",
    ]
    assert built["model_name"] == "reka-flash"


def test_reka_error_detail_is_serialized(transform_ctx) -> None:
    ctx = transform_ctx("reka-ai", FunctionName.CHAT_COMPLETE, {})
    body = {"detail": [{"loc": ["body", "model_name"], "msg": "field required"}]}

    result = get_adapter("reka-ai").transform_response(body, 422, ctx)

    assert json.loads(result["error"]["message"]) == body["detail"]
    assert result["provider"] == "reka-ai"


def test_triton_requires_custom_host(provider_ctx) -> None:
    adapter = get_adapter("triton")

    with pytest.raises(InvalidHostConfiguration):
        adapter.get_base_url(provider_ctx("triton", FunctionName.COMPLETE, {"prompt": "x"}))

    ctx = provider_ctx(
        "triton",
        FunctionName.COMPLETE,
        {"model": "llama", "prompt": "x"},
        api_key=None,
        custom_host="http://triton:8000",
    )
    assert adapter.get_base_url(ctx) == "http://triton:8000"
    assert adapter.get_endpoint(ctx) == "/v2/models/llama/generate"
    assert adapter.headers(ctx) == {"Content-Type": "application/json"}


def test_triton_request_and_response(transform_ctx) -> None:
    built = build("triton", FunctionName.COMPLETE, {"model": "llama", "prompt": "Hi", "max_tokens": 5, "stop": "\n"})

    assert built["inputs"] == [{"name": "text_input", "shape": [1], "datatype": "BYTES", "data": ["Hi"]}]
    assert built["parameters"] == {"max_tokens": 5, "stop_words": ["\n"]}

    ctx = transform_ctx("triton", FunctionName.COMPLETE, {"model": "llama", "prompt": "Hi"})
    result = get_adapter("triton").transform_response({"model_name": "llama", "text_output": "Hello"}, 200, ctx)
    assert result["choices"][0]["text"] == "Hello"
    assert result["object"] == "text_completion"


def test_triton_string_error(transform_ctx) -> None:
    ctx = transform_ctx("triton", FunctionName.COMPLETE, {"prompt": "Hi"})

    result = get_adapter("triton").transform_response({"error": "model not ready", "detail": "503"}, 400, ctx)

    assert result["error"] == {"message": "model not ready", "type": "triton_error", "code": "503"}


def test_predibase_endpoint_and_adapter_id(provider_ctx) -> None:
    body = {"model": "llama-3-8b:my-adapter/1", "user": "tenant-1", "messages": [{"role": "user", "content": "x"}]}
    adapter = get_adapter("predibase")

    built = build("predibase", FunctionName.CHAT_COMPLETE, body)

    assert built["model"] == "my-adapter/1"
    assert adapter.get_endpoint(provider_ctx("predibase", body=body)) == (
        "/tenant-1/deployments/v2/llms/llama-3-8b/v1/chat/completions"
    )


def test_predibase_requires_tenant(provider_ctx) -> None:
    with pytest.raises(MissingRequiredParameter, match="user"):
        get_adapter("predibase").get_endpoint(provider_ctx("predibase", body={"model": "llama-3-8b"}))


def test_deepinfra_clamps_choice_count() -> None:
    built = build("deepinfra", FunctionName.CHAT_COMPLETE, {"messages": [{"role": "user", "content": "x"}], "n": 3})

    assert built["n"] == 1
