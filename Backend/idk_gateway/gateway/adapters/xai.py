"""xAI (Grok) Adapter."""

from idk_gateway.gateway.adapters.base import ParameterConfig
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, chat_complete_params, embed_params
from idk_gateway.gateway.constants import AIProvider, FunctionName


class XAIAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.XAI.value
    BASE_URL = "https://api.x.ai/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.EMBED: "/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: chat_complete_params(
            exclude=("functions", "function_call"),
            defaults={"model": "grok-beta", "temperature": 1, "top_p": 1},
            extra={
                "stop": ParameterConfig("stop"),
                "max_completion_tokens": ParameterConfig("max_completion_tokens", min=0),
                "top_logprobs": ParameterConfig("top_logprobs", min=0, max=8),
                "parallel_tool_calls": ParameterConfig("parallel_tool_calls"),
                "reasoning_effort": ParameterConfig("reasoning_effort"),
                "search_parameters": ParameterConfig("search_parameters"),
            },
        ),
        FunctionName.EMBED: embed_params(defaults={"model": "v1"}),
    }
