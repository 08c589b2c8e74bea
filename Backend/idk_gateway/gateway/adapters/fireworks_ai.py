"""Fireworks AI Adapter."""

from typing import Any, Dict, Optional

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    complete_params,
    developer_to_system,
    embed_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import generate_error_response


FIREWORKS_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig(
        "model", required=True, default="accounts/fireworks/models/llama-v3p1-405b-instruct"
    ),
    "messages": ParameterConfig("messages", required=True, default=[], transform=developer_to_system),
    "tools": ParameterConfig("tools"),
    "max_tokens": ParameterConfig("max_tokens", default=200, min=1),
    "max_completion_tokens": ParameterConfig("max_tokens", default=200, min=1),
    "prompt_truncate_len": ParameterConfig("prompt_truncate_len", default=1500),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "top_k": ParameterConfig("top_k", min=1, max=128),
    "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
    "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
    "n": ParameterConfig("n", default=1, min=1, max=128),
    "stop": ParameterConfig("stop"),
    "response_format": ParameterConfig("response_format"),
    "stream": ParameterConfig("stream", default=False),
    "context_length_exceeded_behavior": ParameterConfig("context_length_exceeded_behavior"),
    "user": ParameterConfig("user"),
    "logprobs": ParameterConfig("logprobs"),
    "top_logprobs": ParameterConfig("top_logprobs"),
})


class FireworksAIAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.FIREWORKS_AI.value
    BASE_URL = "https://api.fireworks.ai/inference/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.COMPLETE: "/completions",
        FunctionName.EMBED: "/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: FIREWORKS_CHAT_COMPLETE_CONFIG,
        FunctionName.COMPLETE: complete_params(
            defaults={"model": "accounts/fireworks/models/llama-v3p1-405b-instruct"},
            extra={"top_k": ParameterConfig("top_k", min=1, max=128)},
        ),
        FunctionName.EMBED: embed_params(defaults={"model": "nomic-ai/nomic-embed-text-v1.5"}),
    }

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        # Gateway-level failures arrive as {"fault": {"faultstring": ...}}
        if isinstance(body, dict) and isinstance(body.get("fault"), dict):
            fault = body["fault"]
            code = (fault.get("detail") or {}).get("errorcode")
            return generate_error_response(fault.get("faultstring") or "Unknown error", self.PROVIDER, code=code)
        return super().normalize_error(body, status)
