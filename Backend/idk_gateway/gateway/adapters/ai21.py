"""
AI21 Adapter (Jurassic chat API).

Messages are `{role, text}` pairs with the system prompt sent separately,
and penalties are objects (`{"scale": ...}`).
"""

import uuid
from typing import Any, Dict, List, Optional

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderAdapter,
    ProviderContext,
    ResponseTransform,
    TransformContext,
    build_usage,
    function_config,
    now,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import invalid_provider_response

SYSTEM_ROLES = ("system", "developer")


def _text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(item.get("text") or "" for item in content)
    return ""


def _has_system(body: Dict[str, Any]) -> bool:
    messages = body.get("messages") or []
    return bool(messages) and messages[0].get("role") in SYSTEM_ROLES


def transform_messages(body: Dict[str, Any]) -> List[Dict[str, str]]:
    messages = body.get("messages") or []
    if _has_system(body):
        messages = messages[1:]
    return [{"text": _text(message.get("content")), "role": message.get("role")} for message in messages]


def transform_system(body: Dict[str, Any]) -> str:
    if not _has_system(body):
        return ""
    return _text(body["messages"][0].get("content"))


def penalty(field_name: str):
    def transform(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if body.get(field_name) is None:
            return None
        return {"scale": body[field_name]}
    return transform


AI21_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="j2-ultra"),
    "messages": [
        ParameterConfig("messages", required=True, transform=transform_messages),
        ParameterConfig("system", transform=transform_system),
    ],
    "n": ParameterConfig("numResults", default=1),
    "max_tokens": ParameterConfig("maxTokens", default=16),
    "max_completion_tokens": ParameterConfig("maxTokens", default=16),
    "minTokens": ParameterConfig("minTokens", default=0),
    "temperature": ParameterConfig("temperature", default=0.7, min=0, max=1, clamp=True),
    "top_p": ParameterConfig("topP", default=1),
    "top_k": ParameterConfig("topKReturn", default=0),
    "stop": ParameterConfig("stopSequences"),
    "presence_penalty": ParameterConfig("presencePenalty", transform=penalty("presence_penalty")),
    "frequency_penalty": ParameterConfig("frequencyPenalty", transform=penalty("frequency_penalty")),
    "countPenalty": ParameterConfig("countPenalty"),
    "frequencyPenalty": ParameterConfig("frequencyPenalty"),
    "presencePenalty": ParameterConfig("presencePenalty"),
})


class AI21Adapter(ProviderAdapter):
    PROVIDER = AIProvider.AI21.value
    BASE_URL = "https://api.ai21.com/studio/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: AI21_CHAT_COMPLETE_CONFIG,
    }

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {FunctionName.CHAT_COMPLETE: self.chat_complete_response}

    def get_endpoint(self, ctx: ProviderContext) -> str:
        endpoint = super().get_endpoint(ctx)
        if ctx.function_name == FunctionName.CHAT_COMPLETE:
            return f"/{ctx.model or 'j2-ultra'}{endpoint}"
        return endpoint

    def finalize_request_body(self, body: Dict[str, Any], ctx: ProviderContext) -> Dict[str, Any]:
        # The model travels in the URL
        return {key: value for key, value in body.items() if key != "model"}

    def chat_complete_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "outputs" not in body:
            return invalid_provider_response(body, self.PROVIDER)

        usage = body.get("usage") or {}
        return {
            "id": body.get("id") or f"{self.PROVIDER}-{uuid.uuid4().hex}",
            "object": "chat.completion",
            "created": now(),
            "model": ctx.request_body.get("model"),
            "provider": self.PROVIDER,
            "choices": [
                {
                    "message": {"role": "assistant", "content": output.get("text")},
                    "index": index,
                    "logprobs": None,
                    "finish_reason": (output.get("finishReason") or {}).get("reason") or "stop",
                }
                for index, output in enumerate(body["outputs"])
            ],
            "usage": build_usage(usage.get("prompt_tokens"), usage.get("completion_tokens")),
        }
