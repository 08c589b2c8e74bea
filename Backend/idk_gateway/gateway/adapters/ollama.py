"""
Ollama Adapter.

Ollama is usually self-hosted, so the default origin is the local daemon
and an API key is optional. Chat goes through Ollama's OpenAI-compatible
endpoint; embeddings use the native `/api/embeddings` route, whose
response carries only the vector and Ollama's eval counters.
"""

from typing import Any, Dict

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderContext,
    ResponseTransform,
    TransformContext,
    build_usage,
    function_config,
    invalid_provider_response,
)
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, developer_to_system
from idk_gateway.gateway.constants import AIProvider, FunctionName


OLLAMA_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="llama2"),
    "messages": ParameterConfig("messages", default="", transform=developer_to_system),
    "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
    "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
    "response_format": ParameterConfig("response_format"),
    "seed": ParameterConfig("seed"),
    "stop": ParameterConfig("stop"),
    "stream": ParameterConfig("stream", default=False),
    "stream_options": ParameterConfig("stream_options"),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "max_tokens": ParameterConfig("max_tokens", min=0),
    "max_completion_tokens": ParameterConfig("max_tokens", min=0),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
})

OLLAMA_EMBED_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="nomic-embed-text"),
    "input": ParameterConfig("prompt", required=True),
})


class OllamaAdapter(OpenAICompatibleAdapter):
    """Adapter for a local or remote Ollama daemon."""

    PROVIDER = AIProvider.OLLAMA.value
    BASE_URL = "http://localhost:11434"

    IS_API_KEY_REQUIRED = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/v1/chat/completions",
        FunctionName.EMBED: "/api/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: OLLAMA_CHAT_COMPLETE_CONFIG,
        FunctionName.EMBED: OLLAMA_EMBED_CONFIG,
    }

    PROXY_PATH_FUNCTIONS = (
        ("/api/chat", FunctionName.CHAT_COMPLETE),
        ("/chat/completions", FunctionName.CHAT_COMPLETE),
        ("/api/generate", FunctionName.COMPLETE),
        ("/api/embed", FunctionName.EMBED),
        ("/embeddings", FunctionName.EMBED),
    )

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        transforms = super().response_transforms()
        transforms[FunctionName.EMBED] = self.embed_response
        return transforms

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        return {"x-ollama-api-key": api_key}

    def embed_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """Native embedding response as an OpenAI embedding list."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "embedding" not in body:
            return invalid_provider_response(body, self.PROVIDER)

        return {
            "object": "list",
            "data": [{"object": "embedding", "embedding": body["embedding"], "index": 0}],
            "model": body.get("model") or ctx.request_body.get("model") or "",
            "provider": self.PROVIDER,
            "usage": build_usage(body.get("prompt_eval_count"), body.get("eval_count")),
        }
