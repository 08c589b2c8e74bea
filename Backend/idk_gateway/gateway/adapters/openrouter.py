"""OpenRouter Adapter."""

from typing import Dict

from idk_gateway.gateway.adapters.base import ParameterConfig, ProviderContext, function_config
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, developer_to_system
from idk_gateway.gateway.constants import AIProvider, FunctionName


OPENROUTER_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="openrouter/auto"),
    "messages": ParameterConfig("messages", default="", transform=developer_to_system),
    "max_tokens": ParameterConfig("max_tokens", default=100, min=0),
    "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=0),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "modalities": ParameterConfig("modalities"),
    "reasoning": ParameterConfig("reasoning"),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
    "transforms": ParameterConfig("transforms"),
    "provider": ParameterConfig("provider"),
    "models": ParameterConfig("models"),
    "usage": ParameterConfig("usage"),
    "stream": ParameterConfig("stream", default=False),
    "response_format": ParameterConfig("response_format"),
})


class OpenRouterAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.OPENROUTER.value
    BASE_URL = "https://openrouter.ai/api/v1"

    LENIENT_STREAM_PARSING = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: OPENROUTER_CHAT_COMPLETE_CONFIG,
    }

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": "https://github.com/idk-gateway",
            "X-Title": "idk-gateway",
        }
