"""Upstage (Solar) Adapter."""

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    developer_to_system,
    embed_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName


UPSTAGE_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="solar-pro"),
    "messages": ParameterConfig("messages", default="", transform=developer_to_system),
    "max_tokens": ParameterConfig("max_tokens", default=100, min=0),
    "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=0),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "stream": ParameterConfig("stream", default=False),
    "frequency_penalty": ParameterConfig("frequency_penalty", default=0, min=-2, max=2),
    "presence_penalty": ParameterConfig("presence_penalty", default=0, min=-2, max=2),
    "stop": ParameterConfig("stop"),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
    "response_format": ParameterConfig("response_format"),
})


class UpstageAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.UPSTAGE.value
    BASE_URL = "https://api.upstage.ai/v1/solar"

    LENIENT_STREAM_PARSING = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.EMBED: "/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: UPSTAGE_CHAT_COMPLETE_CONFIG,
        FunctionName.EMBED: embed_params(
            exclude=("dimensions", "user"),
            defaults={"model": "solar-embedding-1-large-query"},
        ),
    }
