"""
Triton Inference Server Adapter (KServe v2 generate extension).

Triton is always self-hosted: a target must name its server with
`custom_host`. Completions go to `/v2/models/{model}/generate`, with the
prompt sent as a `text_input` tensor.
"""

import uuid
from typing import Any, Dict, List, Optional

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderAdapter,
    ProviderContext,
    ResponseTransform,
    StreamState,
    StreamTransform,
    TransformContext,
    function_config,
    now,
    sse,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import (
    InvalidHostConfiguration,
    generate_error_response,
    invalid_provider_response,
)

DEFAULT_MODEL = "model"

# Output tensor names that carry generated text
TEXT_OUTPUT_NAMES = ("text_output", "output", "generated_text", "response")


def transform_inputs(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{"name": "text_input", "shape": [1], "datatype": "BYTES", "data": [body.get("prompt") or ""]}]


def transform_stop(body: Dict[str, Any]) -> List[str]:
    stop = body.get("stop")
    if stop is None:
        return []
    return list(stop) if isinstance(stop, list) else [stop]


TRITON_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model_name", required=True, default=DEFAULT_MODEL),
    "prompt": ParameterConfig("inputs", required=True, transform=transform_inputs),
    "max_tokens": ParameterConfig("parameters.max_tokens", default=100, min=1),
    "temperature": ParameterConfig("parameters.temperature", default=0.7, min=0, max=2),
    "top_p": ParameterConfig("parameters.top_p", default=0.9, min=0, max=1),
    "top_k": ParameterConfig("parameters.top_k", default=50, min=1),
    "stop": ParameterConfig("parameters.stop_words", transform=transform_stop),
    "stream": ParameterConfig("parameters.stream", default=False),
    "user": ParameterConfig("id"),
    "presence_penalty": ParameterConfig("parameters.presence_penalty", default=0, min=-2, max=2),
    "frequency_penalty": ParameterConfig("parameters.frequency_penalty", default=0, min=-2, max=2),
    "n": ParameterConfig("parameters.n", default=1, min=1, max=10),
    "logprobs": ParameterConfig("parameters.logprobs", default=False),
    "echo": ParameterConfig("parameters.echo", default=False),
    "best_of": ParameterConfig("parameters.best_of", min=1),
    "suffix": ParameterConfig("parameters.suffix"),
    "logit_bias": ParameterConfig("parameters.logit_bias"),
})


def _text_output(body: Dict[str, Any]) -> Optional[str]:
    for output in body.get("outputs") or []:
        if str(output.get("name", "")).lower() in TEXT_OUTPUT_NAMES and output.get("data"):
            return str(output["data"][0] or "")
    # The generate extension returns text_output at the top level
    if body.get("text_output") is not None:
        return str(body["text_output"])
    return None


class TritonAdapter(ProviderAdapter):
    PROVIDER = AIProvider.TRITON.value

    IS_API_KEY_REQUIRED = False
    LENIENT_STREAM_PARSING = True

    ENDPOINTS = {
        FunctionName.COMPLETE: "/generate",
        FunctionName.STREAM_COMPLETE: "/generate_stream",
    }

    FUNCTION_CONFIGS = {
        FunctionName.COMPLETE: TRITON_COMPLETE_CONFIG,
    }

    CUSTOM_FIELDS_SCHEMA = {
        "custom_host": {"type": "string", "required": True, "description": "Triton server origin"},
    }

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {FunctionName.COMPLETE: self.complete_response}

    def stream_transforms(self) -> Dict[FunctionName, StreamTransform]:
        return {FunctionName.STREAM_COMPLETE: self.complete_stream_chunk}

    def default_base_url(self, ctx: ProviderContext) -> str:
        raise InvalidHostConfiguration("`custom_host` is required for triton targets", provider=self.PROVIDER)

    def get_endpoint(self, ctx: ProviderContext) -> str:
        if ctx.function_name == FunctionName.PROXY:
            return super().get_endpoint(ctx)
        suffix = self.ENDPOINTS.get(ctx.function_name)
        if not suffix:
            return ""
        return f"/v2/models/{ctx.model or DEFAULT_MODEL}{suffix}"

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return generate_error_response(
                body["error"] or "Unknown error occurred",
                self.PROVIDER,
                error_type="triton_error",
                code=body.get("detail"),
            )
        return super().normalize_error(body, status)

    def complete_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        text = _text_output(body) if isinstance(body, dict) else None
        if text is None:
            return invalid_provider_response(body, self.PROVIDER)

        parameters = body.get("parameters") or {}
        return {
            "id": body.get("id") or f"{self.PROVIDER}-{uuid.uuid4().hex}",
            "object": "text_completion",
            "created": now(),
            "model": body.get("model_name") or ctx.request_body.get("model") or "triton-model",
            "provider": self.PROVIDER,
            "choices": [{
                "text": text,
                "index": 0,
                "logprobs": None,
                "finish_reason": parameters.get("finish_reason") or "stop",
            }],
            "usage": {
                "prompt_tokens": parameters.get("prompt_tokens") or -1,
                "completion_tokens": parameters.get("completion_tokens") or -1,
                "total_tokens": parameters.get("total_tokens") or -1,
            },
        }

    def complete_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        if "error" in parsed:
            raise self.stream_error(parsed)
        return sse({
            "id": parsed.get("id") or fallback_id,
            "object": "text_completion",
            "created": now(),
            "model": parsed.get("model_name") or ctx.request_body.get("model") or "triton-model",
            "provider": self.PROVIDER,
            "choices": [{
                "text": _text_output(parsed) or "",
                "index": 0,
                "logprobs": None,
                "finish_reason": (parsed.get("parameters") or {}).get("finish_reason"),
            }],
        })
