"""Anyscale Endpoints Adapter."""

from idk_gateway.gateway.adapters.base import ParameterConfig
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    chat_complete_params,
    complete_params,
    embed_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName


class AnyscaleAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.ANYSCALE.value
    BASE_URL = "https://api.endpoints.anyscale.com/v1"

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: chat_complete_params(
            exclude=("seed", "stream_options"),
            defaults={
                "model": "meta-llama/Llama-2-7b-chat-hf",
                "max_tokens": 100,
                "temperature": 1,
                "top_p": 1,
                "stream": False,
                "logprobs": False,
            },
            extra={
                "max_completion_tokens": ParameterConfig("max_tokens", default=100, min=0),
                "stop": ParameterConfig("stop"),
                "top_logprobs": ParameterConfig("top_logprobs"),
            },
        ),
        FunctionName.COMPLETE: complete_params(
            exclude=("best_of", "suffix", "echo", "seed", "logit_bias"),
            defaults={"model": "meta-llama/Llama-2-7b-chat-hf", "max_tokens": 100},
        ),
        FunctionName.EMBED: embed_params(
            exclude=("dimensions", "encoding_format"),
            defaults={"model": "thenlper/gte-large"},
        ),
    }
