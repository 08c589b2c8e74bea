"""Deepbricks Adapter (OpenAI-compatible aggregator)."""

from typing import Any, Dict, List, Optional

from idk_gateway.gateway.adapters.base import ParameterConfig
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    chat_complete_params,
    developer_to_system,
    image_generate_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName


def transform_messages(body: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    return developer_to_system(body) or None


class DeepbricksAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.DEEPBRICKS.value
    BASE_URL = "https://api.deepbricks.ai/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.GENERATE_IMAGE: "/images/generations",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: chat_complete_params(
            defaults={
                "model": "gpt-3.5-turbo",
                "max_tokens": 100,
                "temperature": 1,
                "top_p": 1,
                "stream": False,
                "logprobs": False,
            },
            extra={
                "messages": ParameterConfig("messages", default="", transform=transform_messages),
                "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=0),
                "stop": ParameterConfig("stop"),
                "top_logprobs": ParameterConfig("top_logprobs"),
            },
        ),
        FunctionName.GENERATE_IMAGE: image_generate_params(defaults={"model": "dall-e-3"}),
    }
