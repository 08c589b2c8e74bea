"""Together AI Adapter."""

from typing import Any, Dict, Optional

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, developer_to_system
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import generate_error_response


def resolve_max_tokens(body: Dict[str, Any]) -> int:
    if body.get("max_completion_tokens") is not None:
        return body["max_completion_tokens"]
    if body.get("max_tokens") is not None:
        return body["max_tokens"]
    return 128


# Sampling fields shared by chat and completion
SAMPLING = {
    "stop": ParameterConfig("stop"),
    "temperature": ParameterConfig("temperature", default=0.7, min=0, max=1),
    "top_p": ParameterConfig("top_p", default=0.9, min=0, max=1),
    "top_k": ParameterConfig("top_k", default=40, min=1),
    # Together calls it repetition_penalty and bounds it differently
    "frequency_penalty": ParameterConfig("repetition_penalty", default=1.0, min=0.1, max=2.0),
    "presence_penalty": ParameterConfig("presence_penalty", default=0, min=-2, max=2),
    "stream": ParameterConfig("stream", default=False),
    "logprobs": ParameterConfig("logprobs", default=False),
    "n": ParameterConfig("n", default=1, min=1),
}

TOGETHER_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig(
        "model", required=True, default="meta-llama/Llama-3.2-11B-Vision-Instruct-Turbo"
    ),
    "messages": ParameterConfig("messages", required=True, default="", transform=developer_to_system),
    "max_tokens": [
        ParameterConfig("max_tokens", required=True, default=128, min=1, transform=resolve_max_tokens),
        ParameterConfig("max_completion_tokens", transform=lambda body: None),
    ],
    **SAMPLING,
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
    "response_format": ParameterConfig("response_format"),
    "user": ParameterConfig("user"),
})

TOGETHER_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="togethercomputer/RedPajama-INCITE-7B-Instruct"),
    "prompt": ParameterConfig("prompt", required=True, default=""),
    "max_tokens": ParameterConfig("max_tokens", required=True, default=128, min=1),
    **SAMPLING,
    "echo": ParameterConfig("echo", default=False),
    "best_of": ParameterConfig("best_of", default=1, min=1),
    "logit_bias": ParameterConfig("logit_bias"),
})


class TogetherAIAdapter(OpenAICompatibleAdapter):
    """Adapter for api.together.xyz (chat and legacy completions)."""

    PROVIDER = AIProvider.TOGETHER_AI.value
    BASE_URL = "https://api.together.xyz/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.COMPLETE: "/completions",
        FunctionName.EMBED: "/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: TOGETHER_CHAT_COMPLETE_CONFIG,
        FunctionName.COMPLETE: TOGETHER_COMPLETE_CONFIG,
        FunctionName.EMBED: function_config({
            "model": ParameterConfig(
                "model", required=True, default="togethercomputer/m2-bert-80M-8k-retrieval"
            ),
            "input": ParameterConfig("input", required=True),
        }),
    }

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        # Top-level {message, type} errors keep their type
        if (
            isinstance(body, dict)
            and "error" not in body
            and body.get("message")
            and "choices" not in body
            and "data" not in body
        ):
            return generate_error_response(body["message"], self.PROVIDER, error_type=body.get("type"))
        return super().normalize_error(body, status)
