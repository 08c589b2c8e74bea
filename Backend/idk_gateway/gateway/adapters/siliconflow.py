"""SiliconFlow Adapter."""

from typing import Any, Dict, Optional

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    developer_to_system,
    embed_params,
    image_generate_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName


def resolve_max_tokens(body: Dict[str, Any]) -> Optional[int]:
    return body.get("max_completion_tokens") or body.get("max_tokens")


SILICONFLOW_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="deepseek-ai/DeepSeek-V2-Chat"),
    "messages": ParameterConfig("messages", default="", transform=developer_to_system),
    "max_tokens": ParameterConfig("max_tokens", default=100, min=0, transform=resolve_max_tokens),
    "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=0, transform=resolve_max_tokens),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "n": ParameterConfig("n", default=1),
    "stream": ParameterConfig("stream", default=False),
    "stop": ParameterConfig("stop"),
    "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
    "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
})


class SiliconFlowAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.SILICONFLOW.value
    BASE_URL = "https://api.siliconflow.cn/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.EMBED: "/embeddings",
        FunctionName.GENERATE_IMAGE: "/images/generations",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: SILICONFLOW_CHAT_COMPLETE_CONFIG,
        FunctionName.EMBED: embed_params(
            exclude=("dimensions", "user"),
            defaults={"model": "BAAI/bge-large-en-v1.5"},
        ),
        FunctionName.GENERATE_IMAGE: image_generate_params(
            exclude=("quality", "style", "background", "moderation", "output_compression", "output_format"),
            defaults={"model": "stabilityai/stable-diffusion-2-1"},
            extra={"size": ParameterConfig("image_size"), "n": ParameterConfig("batch_size", min=1, max=4)},
        ),
    }
