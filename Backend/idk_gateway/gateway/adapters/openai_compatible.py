"""
OpenAI-Compatible Adapter base.

Most providers implement OpenAI's wire format with small differences in
defaults, bounds and extra parameters. This module holds:

- Parameter table builders for chat, completion, embedding, image and
  responses requests, which providers trim and extend
- OpenAICompatibleAdapter, which checks the success shape of a response,
  fills in the self-describing fields and tags the provider

Response fields the provider leaves out (`object`, `created`, `model`,
`usage`) are always filled in so canonical responses describe themselves.
"""

import uuid
from typing import Any, Dict, Mapping, Optional, Sequence

from idk_gateway.gateway.adapters.base import (
    FunctionConfig,
    ParameterConfig,
    ProviderAdapter,
    ResponseTransform,
    StreamState,
    StreamTransform,
    TransformContext,
    function_config,
    invalid_provider_response,
    now,
    sse,
    unknown_usage,
)
from idk_gateway.gateway.constants import FunctionName


# ============================================================================
# Parameter table builders
# ============================================================================


def developer_to_system(body: Dict[str, Any]) -> list:
    """Messages with the `developer` role renamed to `system`."""
    return [
        {**message, "role": "system"} if message.get("role") == "developer" else message
        for message in body.get("messages") or []
    ]


def _build(
    base: Dict[str, Any],
    exclude: Sequence[str],
    extra: Optional[Mapping[str, Any]],
) -> FunctionConfig:
    entries = {name: spec for name, spec in base.items() if name not in exclude}
    entries.update(extra or {})
    return function_config(entries)


def chat_complete_params(
    exclude: Sequence[str] = (),
    defaults: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> FunctionConfig:
    """OpenAI-style chat parameter table with per-provider tweaks."""
    defaults = defaults or {}
    base = {
        "model": ParameterConfig("model", required=True, default=defaults.get("model")),
        "messages": ParameterConfig("messages", transform=developer_to_system),
        "functions": ParameterConfig("functions"),
        "function_call": ParameterConfig("function_call"),
        "max_tokens": ParameterConfig("max_tokens", default=defaults.get("max_tokens"), min=0),
        "temperature": ParameterConfig("temperature", default=defaults.get("temperature"), min=0, max=2),
        "top_p": ParameterConfig("top_p", default=defaults.get("top_p"), min=0, max=1),
        "n": ParameterConfig("n", default=1),
        "stream": ParameterConfig("stream", default=defaults.get("stream")),
        "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
        "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
        "logit_bias": ParameterConfig("logit_bias"),
        "user": ParameterConfig("user"),
        "seed": ParameterConfig("seed"),
        "tools": ParameterConfig("tools"),
        "tool_choice": ParameterConfig("tool_choice"),
        "response_format": ParameterConfig("response_format"),
        "logprobs": ParameterConfig("logprobs", default=defaults.get("logprobs")),
        "stream_options": ParameterConfig("stream_options"),
    }
    return _build(base, exclude, extra)


def complete_params(
    exclude: Sequence[str] = (),
    defaults: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> FunctionConfig:
    """OpenAI-style legacy completion parameter table."""
    defaults = defaults or {}
    base = {
        "model": ParameterConfig("model", required=True, default=defaults.get("model")),
        "prompt": ParameterConfig("prompt", default=""),
        "max_tokens": ParameterConfig("max_tokens", default=defaults.get("max_tokens"), min=0),
        "temperature": ParameterConfig("temperature", default=defaults.get("temperature"), min=0, max=2),
        "top_p": ParameterConfig("top_p", default=defaults.get("top_p"), min=0, max=1),
        "n": ParameterConfig("n", default=1),
        "stream": ParameterConfig("stream", default=defaults.get("stream")),
        "logprobs": ParameterConfig("logprobs", max=5),
        "echo": ParameterConfig("echo", default=False),
        "stop": ParameterConfig("stop"),
        "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
        "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
        "best_of": ParameterConfig("best_of"),
        "logit_bias": ParameterConfig("logit_bias"),
        "user": ParameterConfig("user"),
        "seed": ParameterConfig("seed"),
        "suffix": ParameterConfig("suffix"),
    }
    return _build(base, exclude, extra)


def embed_params(
    exclude: Sequence[str] = (),
    defaults: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> FunctionConfig:
    """OpenAI-style embedding parameter table."""
    defaults = defaults or {}
    base = {
        "model": ParameterConfig("model", required=True, default=defaults.get("model")),
        "input": ParameterConfig("input", required=True),
        "encoding_format": ParameterConfig("encoding_format"),
        "dimensions": ParameterConfig("dimensions"),
        "user": ParameterConfig("user"),
    }
    return _build(base, exclude, extra)


def image_generate_params(
    exclude: Sequence[str] = (),
    defaults: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> FunctionConfig:
    """OpenAI-style image generation parameter table."""
    defaults = defaults or {}
    base = {
        "prompt": ParameterConfig("prompt", required=True),
        "model": ParameterConfig("model", required=True, default=defaults.get("model", "dall-e-2")),
        "n": ParameterConfig("n", min=1, max=10),
        "quality": ParameterConfig("quality"),
        "response_format": ParameterConfig("response_format"),
        "size": ParameterConfig("size"),
        "style": ParameterConfig("style"),
        "background": ParameterConfig("background"),
        "moderation": ParameterConfig("moderation"),
        "output_compression": ParameterConfig("output_compression", min=0, max=100),
        "output_format": ParameterConfig("output_format"),
        "user": ParameterConfig("user"),
    }
    return _build(base, exclude, extra)


def create_model_response_params(
    exclude: Sequence[str] = (),
    defaults: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> FunctionConfig:
    """Responses API parameter table."""
    defaults = defaults or {}
    base = {
        "model": ParameterConfig("model", required=True, default=defaults.get("model")),
        "input": ParameterConfig("input", required=True),
        "instructions": ParameterConfig("instructions"),
        "include": ParameterConfig("include"),
        "background": ParameterConfig("background"),
        "conversation": ParameterConfig("conversation"),
        "max_output_tokens": ParameterConfig("max_output_tokens", min=1),
        "max_tool_calls": ParameterConfig("max_tool_calls", min=1),
        "metadata": ParameterConfig("metadata"),
        "parallel_tool_calls": ParameterConfig("parallel_tool_calls"),
        "previous_response_id": ParameterConfig("previous_response_id"),
        "prompt": ParameterConfig("prompt"),
        "prompt_cache_key": ParameterConfig("prompt_cache_key"),
        "reasoning": ParameterConfig("reasoning"),
        "safety_identifier": ParameterConfig("safety_identifier"),
        "service_tier": ParameterConfig("service_tier"),
        "store": ParameterConfig("store"),
        "stream": ParameterConfig("stream"),
        "stream_options": ParameterConfig("stream_options"),
        "temperature": ParameterConfig("temperature", min=0, max=2),
        "text": ParameterConfig("text"),
        "tool_choice": ParameterConfig("tool_choice"),
        "tools": ParameterConfig("tools"),
        "top_logprobs": ParameterConfig("top_logprobs", min=0, max=20),
        "top_p": ParameterConfig("top_p", min=0, max=1),
        "truncation": ParameterConfig("truncation"),
        "user": ParameterConfig("user"),
    }
    return _build(base, exclude, extra)


# ============================================================================
# Adapter
# ============================================================================

# Key that identifies a success body, per function
SUCCESS_KEYS: Mapping[FunctionName, str] = {
    FunctionName.CHAT_COMPLETE: "choices",
    FunctionName.COMPLETE: "choices",
    FunctionName.EMBED: "data",
    FunctionName.GENERATE_IMAGE: "data",
    FunctionName.CREATE_MODEL_RESPONSE: "output",
}

OBJECT_TYPES: Mapping[FunctionName, str] = {
    FunctionName.CHAT_COMPLETE: "chat.completion",
    FunctionName.COMPLETE: "text_completion",
    FunctionName.EMBED: "list",
    FunctionName.CREATE_MODEL_RESPONSE: "response",
}

CHUNK_OBJECT_TYPES: Mapping[FunctionName, str] = {
    FunctionName.STREAM_CHAT_COMPLETE: "chat.completion.chunk",
    FunctionName.STREAM_COMPLETE: "text_completion",
}

# Functions whose canonical response always carries usage
USAGE_FUNCTIONS = frozenset({FunctionName.CHAT_COMPLETE, FunctionName.COMPLETE, FunctionName.EMBED})


class OpenAICompatibleAdapter(ProviderAdapter):
    """
    Adapter for providers speaking OpenAI's format.

    Subclasses usually only declare their origin, endpoints and parameter
    tables. Streams are forwarded chunk by chunk with the provider tag added.
    """

    LENIENT_STREAM_PARSING = True

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.COMPLETE: "/completions",
        FunctionName.EMBED: "/embeddings",
    }

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {
            function_name: self.openai_response
            for function_name in SUCCESS_KEYS
            if self.ENDPOINTS.get(function_name)
        }

    def stream_transforms(self) -> Dict[FunctionName, StreamTransform]:
        return {
            function_name: self.openai_stream_chunk
            for function_name in CHUNK_OBJECT_TYPES
            if self.supports(function_name)
        }

    def openai_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """Tagged parse: error, else expected success shape, else invalid."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error

        function_name = self.base_function(ctx.function_name)
        success_key = SUCCESS_KEYS.get(function_name)
        if not isinstance(body, dict) or (success_key and success_key not in body):
            return invalid_provider_response(body, self.PROVIDER)

        return self.complete_response(dict(body), ctx)

    def complete_response(self, response: Dict[str, Any], ctx: TransformContext) -> Dict[str, Any]:
        """Fill in the self-describing fields of a success body."""
        function_name = self.base_function(ctx.function_name)

        if function_name in OBJECT_TYPES:
            response.setdefault("object", OBJECT_TYPES[function_name])
        if function_name != FunctionName.EMBED:
            response.setdefault("id", f"{self.PROVIDER}-{uuid.uuid4().hex}")
        response.setdefault("created", now())
        if not response.get("model") and ctx.request_body.get("model"):
            response["model"] = ctx.request_body["model"]
        if function_name in USAGE_FUNCTIONS and not response.get("usage"):
            response["usage"] = unknown_usage()

        response["provider"] = self.PROVIDER
        return response

    def openai_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        """Forward an OpenAI-format chunk, filling missing identity fields."""
        if not isinstance(parsed, dict):
            raise ValueError("Stream chunk is not a JSON object")
        if "error" in parsed and "choices" not in parsed:
            raise self.stream_error(parsed)

        chunk = dict(parsed)
        chunk.setdefault("id", state.message_id or fallback_id)
        chunk.setdefault("object", CHUNK_OBJECT_TYPES.get(ctx.function_name, "chat.completion.chunk"))
        chunk.setdefault("created", now())
        if not chunk.get("model"):
            chunk["model"] = state.model or ctx.request_body.get("model") or ""
        chunk["provider"] = self.PROVIDER

        state.message_id = state.message_id or chunk["id"]
        state.model = state.model or chunk["model"]
        if chunk.get("usage"):
            state.usage = chunk["usage"]
        return sse(chunk)
