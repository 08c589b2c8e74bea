"""DeepInfra Adapter (OpenAI-compatible endpoint, strict stream parsing)."""

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, developer_to_system
from idk_gateway.gateway.constants import AIProvider, FunctionName


DEEPINFRA_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="deepinfra/airoboros-70b"),
    "messages": ParameterConfig("messages", required=True, default=[], transform=developer_to_system),
    "frequency_penalty": ParameterConfig("frequency_penalty", default=0, min=-2, max=2),
    "max_tokens": ParameterConfig("max_tokens", default=100, min=1),
    "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=1),
    # Only one choice is ever generated
    "n": ParameterConfig("n", default=1, min=1, max=1, clamp=True),
    "presence_penalty": ParameterConfig("presence_penalty", default=0, min=-2, max=2),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "stop": ParameterConfig("stop"),
    "stream": ParameterConfig("stream", default=False),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
    "response_format": ParameterConfig("response_format"),
})


class DeepInfraAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.DEEPINFRA.value
    BASE_URL = "https://api.deepinfra.com/v1/openai"

    LENIENT_STREAM_PARSING = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: DEEPINFRA_CHAT_COMPLETE_CONFIG,
    }
