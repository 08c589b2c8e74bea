"""
Predibase Adapter.

Models are addressed as `<base_model>[:<adapter_id>]`. The base model and
the tenant (sent as `user`) select the deployment URL; the adapter id is
what goes in the body's `model` field.
"""

from typing import Any, Dict

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderContext,
    StreamState,
    TransformContext,
    function_config,
    sse,
)
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter, developer_to_system
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import MissingRequiredParameter


def adapter_id(body: Dict[str, Any]) -> str:
    model = body.get("model") or ""
    return model.split(":", 1)[1] if ":" in model else ""


def base_model(model: str) -> str:
    return model.split(":", 1)[0]


PREDIBASE_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", default="", transform=adapter_id),
    "messages": ParameterConfig("messages", required=True, default=[], transform=developer_to_system),
    "max_tokens": ParameterConfig("max_tokens", default=4096, min=0),
    "max_completion_tokens": ParameterConfig("max_tokens", default=4096, min=0),
    "temperature": ParameterConfig("temperature", default=0.1, min=0, max=1),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "response_format": ParameterConfig("response_format"),
    "stream": ParameterConfig("stream", default=False),
    # Only one choice is ever generated
    "n": ParameterConfig("n", default=1, min=1, max=1, clamp=True),
    "stop": ParameterConfig("stop"),
    "top_k": ParameterConfig("top_k", default=-1),
    "best_of": ParameterConfig("best_of"),
})


class PredibaseAdapter(OpenAICompatibleAdapter):
    PROVIDER = AIProvider.PREDIBASE.value
    BASE_URL = "https://serving.app.predibase.com"

    LENIENT_STREAM_PARSING = False

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: PREDIBASE_CHAT_COMPLETE_CONFIG,
    }

    def get_endpoint(self, ctx: ProviderContext) -> str:
        """
        Deployment path for the tenant and base model.

        Raises:
            MissingRequiredParameter: If the request names no tenant (`user`)
        """
        endpoint = super().get_endpoint(ctx)
        if not endpoint or ctx.function_name == FunctionName.PROXY:
            return endpoint
        tenant = ctx.request_data.request_body.get("user")
        if not tenant:
            raise MissingRequiredParameter("user", provider=self.PROVIDER)
        model = base_model(ctx.request_data.request_body.get("model") or ctx.target.configuration.model or "")
        return f"/{tenant}/deployments/v2/llms/{model}/v1{endpoint}"

    def openai_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        if "error" in parsed and "error_type" in parsed:
            return sse({
                "id": state.message_id or fallback_id,
                "object": "chat.completion.chunk",
                "created": None,
                "model": state.model,
                "provider": self.PROVIDER,
                "choices": [{
                    "index": 0,
                    "delta": {"role": parsed["error_type"], "content": parsed["error"]},
                    "finish_reason": "error",
                }],
            })
        return super().openai_stream_chunk(parsed, fallback_id, state, ctx)
