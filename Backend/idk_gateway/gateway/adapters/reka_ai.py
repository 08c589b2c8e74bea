"""
Reka AI Adapter.

Reka takes a `conversation_history` of strictly alternating human/model
turns that must start with a human turn, and at most one image, which
must come first. Placeholder turns are inserted to keep the alternation.
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderAdapter,
    ResponseTransform,
    TransformContext,
    build_usage,
    function_config,
    now,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import generate_error_response, invalid_provider_response

PLACEHOLDER = "Placeholder for alternation"


def transform_conversation(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    history: List[Dict[str, Any]] = []
    last_type: Optional[str] = None

    def add(turn_type: str, text: str, media_url: Optional[str] = None) -> None:
        nonlocal last_type
        if media_url and history and history[0].get("media_url"):
            return
        turn: Dict[str, Any] = {"type": turn_type, "text": text}
        if media_url:
            turn["media_url"] = media_url
        if last_type == turn_type:
            placeholder = {"type": "model" if turn_type == "human" else "human", "text": PLACEHOLDER}
            if media_url:
                history.insert(0, placeholder)
            else:
                history.append(placeholder)
        if media_url:
            history.insert(0, turn)
        else:
            history.append(turn)
        last_type = turn_type

    for message in body.get("messages") or []:
        turn_type = "human" if message.get("role") == "user" else "model"
        content = message.get("content")
        if isinstance(content, list):
            for item in content:
                add(turn_type, item.get("text") or "", (item.get("image_url") or {}).get("url"))
        else:
            add(turn_type, content or "")

    if not history or history[0]["type"] != "human":
        history.insert(0, {"type": "human", "text": PLACEHOLDER})
    return history


def transform_stop(body: Dict[str, Any]) -> Optional[List[str]]:
    stop = body.get("stop")
    if stop is None:
        return None
    return [stop] if isinstance(stop, str) else stop


REKA_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model_name", required=True, default="reka-flash"),
    "messages": ParameterConfig("conversation_history", required=True, transform=transform_conversation),
    "max_tokens": ParameterConfig("request_output_len"),
    "max_completion_tokens": ParameterConfig("request_output_len"),
    "temperature": ParameterConfig("temperature"),
    "top_p": ParameterConfig("runtime_top_p"),
    "stop": ParameterConfig("stop_words", transform=transform_stop),
    "seed": ParameterConfig("random_seed"),
    "frequency_penalty": ParameterConfig("frequency_penalty"),
    "presence_penalty": ParameterConfig("presence_penalty"),
    "top_k": ParameterConfig("runtime_top_k"),
    "length_penalty": ParameterConfig("length_penalty"),
    "retrieval_dataset": ParameterConfig("retrieval_dataset"),
    "use_search_engine": ParameterConfig("use_search_engine"),
})


class RekaAIAdapter(ProviderAdapter):
    PROVIDER = AIProvider.REKA_AI.value
    BASE_URL = "https://api.reka.ai"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: REKA_CHAT_COMPLETE_CONFIG,
    }

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {FunctionName.CHAT_COMPLETE: self.chat_complete_response}

    def auth_headers(self, api_key: str, ctx: Any) -> Dict[str, str]:
        return {"X-Api-Key": api_key}

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        # `detail` may be a string or a list of validation errors
        if status != 200 and isinstance(body, dict) and "detail" in body:
            return generate_error_response(json.dumps(body["detail"]), self.PROVIDER)
        return super().normalize_error(body, status)

    def chat_complete_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "text" not in body:
            return invalid_provider_response(body, self.PROVIDER)

        metadata = body.get("metadata") or {}
        return {
            "id": f"{self.PROVIDER}-{uuid.uuid4().hex}",
            "object": "chat.completion",
            "created": now(),
            "model": ctx.request_body.get("model") or "Unknown",
            "provider": self.PROVIDER,
            "choices": [{
                "message": {"role": "assistant", "content": body["text"]},
                "index": 0,
                "logprobs": None,
                "finish_reason": body.get("finish_reason") or "stop",
            }],
            "usage": build_usage(metadata.get("input_tokens"), metadata.get("generated_tokens")),
        }
