"""
Mistral AI Adapter.

OpenAI-compatible with a few renames (`seed` -> `random_seed`,
`tool_choice: required` -> `any`) and an optional fill-in-the-middle
endpoint selected per target with `mistral_fim_completion`.
"""

from typing import Any, Dict, Optional

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderContext,
    StreamState,
    TransformContext,
    function_config,
)
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    developer_to_system,
    embed_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName


def strip_model_prefix(body: Dict[str, Any]) -> Optional[str]:
    """Bedrock-style `mistralai.` model ids are accepted as well."""
    model = body.get("model")
    return model.replace("mistralai.", "") if model else None


def transform_tool_choice(body: Dict[str, Any]) -> Any:
    tool_choice = body.get("tool_choice")
    return "any" if tool_choice == "required" else tool_choice


MISTRAL_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="mistral-tiny", transform=strip_model_prefix),
    "messages": ParameterConfig("messages", default=[], transform=developer_to_system),
    "temperature": ParameterConfig("temperature", default=0.7, min=0, max=1),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "max_tokens": ParameterConfig("max_tokens", min=1),
    "max_completion_tokens": ParameterConfig("max_tokens", min=1),
    "stream": ParameterConfig("stream", default=False),
    "stop": ParameterConfig("stop"),
    "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
    "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
    "response_format": ParameterConfig("response_format"),
    "seed": ParameterConfig("random_seed"),
    "safe_prompt": ParameterConfig("safe_prompt", default=False),
    "safe_mode": ParameterConfig("safe_prompt", default=False),
    "prompt": ParameterConfig("prompt", default=""),
    "suffix": ParameterConfig("suffix", default=""),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice", transform=transform_tool_choice),
    "parallel_tool_calls": ParameterConfig("parallel_tool_calls"),
})


def _drop_null_tool_calls(entry: Dict[str, Any], key: str) -> Dict[str, Any]:
    inner = dict(entry.get(key) or {})
    if inner.get("tool_calls") is None:
        inner.pop("tool_calls", None)
    return {**entry, key: inner}


class MistralAIAdapter(OpenAICompatibleAdapter):
    """Adapter for La Plateforme (api.mistral.ai)."""

    PROVIDER = AIProvider.MISTRAL_AI.value
    BASE_URL = "https://api.mistral.ai/v1"

    LENIENT_STREAM_PARSING = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.EMBED: "/embeddings",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: MISTRAL_CHAT_COMPLETE_CONFIG,
        FunctionName.EMBED: embed_params(
            exclude=("dimensions", "user"),
            defaults={"model": "mistral-embed"},
        ),
    }

    CUSTOM_FIELDS_SCHEMA = {
        "mistral_fim_completion": {
            "type": "boolean",
            "default": False,
            "description": "Send chat requests to the fill-in-the-middle endpoint",
        },
    }

    def get_endpoint(self, ctx: ProviderContext) -> str:
        if (
            self.base_function(ctx.function_name) == FunctionName.CHAT_COMPLETE
            and ctx.target.mistral_fim_completion
        ):
            return "/fim/completions"
        return super().get_endpoint(ctx)

    def complete_response(self, response: Dict[str, Any], ctx: TransformContext) -> Dict[str, Any]:
        if "choices" in response:
            response["choices"] = [_drop_null_tool_calls(choice, "message") for choice in response["choices"]]
        return super().complete_response(response, ctx)

    def openai_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        parsed = {**parsed, "choices": [_drop_null_tool_calls(choice, "delta") for choice in parsed["choices"]]}
        return super().openai_stream_chunk(parsed, fallback_id, state, ctx)
