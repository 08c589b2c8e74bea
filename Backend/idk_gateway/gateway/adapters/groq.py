"""Groq Adapter (OpenAI-compatible, single choice only)."""

from idk_gateway.gateway.adapters.base import ParameterConfig
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, chat_complete_params
from idk_gateway.gateway.constants import AIProvider, FunctionName


class GroqAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.GROQ.value
    BASE_URL = "https://api.groq.com/openai/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: chat_complete_params(
            exclude=("functions", "function_call", "logit_bias", "logprobs"),
            defaults={"model": "llama-3.1-8b-instant", "max_tokens": 100, "temperature": 1, "top_p": 1},
            extra={
                "n": ParameterConfig("n", default=1, min=1, max=1),
                "max_completion_tokens": ParameterConfig("max_tokens", min=0),
                "stop": ParameterConfig("stop"),
                "parallel_tool_calls": ParameterConfig("parallel_tool_calls"),
                "reasoning_effort": ParameterConfig("reasoning_effort"),
            },
        ),
    }
