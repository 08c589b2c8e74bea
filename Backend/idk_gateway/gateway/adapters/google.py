"""
Google Gemini Adapter.

Maps the chat schema onto the Gemini API (`generateContent`):
- messages become `contents` with user/model roles, consecutive turns of
  the same role merged; the leading system message becomes
  `systemInstruction`
- sampling fields are gathered into `generationConfig`
- tools become `functionDeclarations`, tool_choice becomes `tool_config`

The model is part of the URL, not the body.
"""

import json
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
    build_usage,
    function_config,
    invalid_provider_response,
    now,
    sse,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import generate_error_response

DEFAULT_MODEL = "gemini-1.5-pro"
API_VERSION = "v1beta"

SYSTEM_ROLES = ("system", "developer")

ROLES = {
    "user": "user",
    "assistant": "model",
    "tool": "function",
    "function": "function",
    "system": "user",
    "developer": "user",
}

FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "MALFORMED_FUNCTION_CALL": "stop",
}

TOOL_CHOICE_MODES = {"auto": "AUTO", "none": "NONE", "required": "ANY"}

# Fields Gemini rejects in function parameter schemas
UNSUPPORTED_SCHEMA_KEYS = ("additionalProperties", "$schema", "strict")


def map_finish_reason(reason: Optional[str], has_tool_calls: bool = False) -> Optional[str]:
    if reason is None:
        return None
    if has_tool_calls and reason == "STOP":
        return "tool_calls"
    return FINISH_REASONS.get(reason, reason.lower())


# ============================================================================
# Request transforms
# ============================================================================


def _image_part(image_url: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    url = image_url.get("url")
    if not url:
        return None
    if url.startswith("data:"):
        header, _, data = url.partition(";base64,")
        return {"inlineData": {"mimeType": header[len("data:"):], "data": data}}
    if url.startswith(("gs://", "https://", "http://")):
        return {"fileData": {"mimeType": image_url.get("mime_type") or "image/jpeg", "fileUri": url}}
    return {"inlineData": {"mimeType": "image/jpeg", "data": url}}


def _parts(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    role = message.get("role")
    content = message.get("content")

    if role == "assistant" and message.get("tool_calls"):
        return [
            {
                "functionCall": {
                    "name": call["function"]["name"],
                    "args": json.loads(call["function"].get("arguments") or "{}"),
                }
            }
            for call in message["tool_calls"]
        ]
    if role == "tool" and isinstance(content, str):
        return [{
            "functionResponse": {
                "name": message.get("name") or "gateway-tool-filler-name",
                "response": {"content": content},
            }
        }]
    if isinstance(content, list):
        parts = []
        for item in content:
            if item.get("type") == "text":
                parts.append({"text": item.get("text") or ""})
            elif item.get("type") == "image_url":
                part = _image_part(item.get("image_url") or {})
                if part:
                    parts.append(part)
        return parts
    if isinstance(content, str):
        return [{"text": content}]
    return []


def transform_contents(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Chat messages as Gemini contents; same-role turns are merged."""
    contents: List[Dict[str, Any]] = []
    last_role = None
    for message in body.get("messages") or []:
        if message.get("role") in SYSTEM_ROLES:
            continue
        role = ROLES.get(message.get("role"), "user")
        parts = _parts(message)
        if role == last_role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})
        last_role = role
    return contents


def transform_system_instruction(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    messages = body.get("messages") or []
    if not messages or messages[0].get("role") not in SYSTEM_ROLES:
        return None
    content = messages[0].get("content")
    if isinstance(content, list):
        content = content[0].get("text") if content else None
    if not content:
        return None
    return {"role": "system", "parts": [{"text": content}]}


def transform_generation_config(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Sampling fields gathered into Gemini's generationConfig."""
    config: Dict[str, Any] = {}
    if body.get("temperature") is not None:
        config["temperature"] = body["temperature"]
    if body.get("top_p") is not None:
        config["topP"] = body["top_p"]
    if body.get("top_k") is not None:
        config["topK"] = body["top_k"]
    max_tokens = body.get("max_completion_tokens") or body.get("max_tokens")
    if max_tokens is not None:
        config["maxOutputTokens"] = max_tokens
    stop = body.get("stop")
    if stop is not None:
        config["stopSequences"] = [stop] if isinstance(stop, str) else list(stop)
    if body.get("n") is not None:
        config["candidateCount"] = body["n"]
    if body.get("logprobs"):
        config["responseLogprobs"] = True
    if body.get("top_logprobs") is not None:
        config["logprobs"] = body["top_logprobs"]
    if body.get("seed") is not None:
        config["seed"] = body["seed"]

    response_format = body.get("response_format") or {}
    if response_format.get("type") == "json_object":
        config["responseMimeType"] = "application/json"
    elif response_format.get("type") == "json_schema":
        config["responseMimeType"] = "application/json"
        json_schema = response_format.get("json_schema") or {}
        config["responseSchema"] = strip_unsupported_schema_keys(json_schema.get("schema", json_schema))

    thinking = body.get("thinking")
    if isinstance(thinking, dict):
        config["thinkingConfig"] = {
            "includeThoughts": thinking.get("type") == "enabled",
            "thinkingBudget": thinking.get("budget_tokens"),
        }
    return config or None


def strip_unsupported_schema_keys(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            key: strip_unsupported_schema_keys(value)
            for key, value in schema.items()
            if key not in UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [strip_unsupported_schema_keys(item) for item in schema]
    return schema


def transform_tools(body: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    tools: List[Dict[str, Any]] = []
    declarations = []
    for tool in body.get("tools") or []:
        if tool.get("type") != "function":
            continue
        function = {key: value for key, value in tool["function"].items() if key != "strict"}
        if function["name"] in ("googleSearch", "google_search"):
            tools.append({"googleSearch": {}})
            continue
        if "parameters" in function:
            function["parameters"] = strip_unsupported_schema_keys(function["parameters"])
        declarations.append(function)
    if declarations:
        tools.append({"functionDeclarations": declarations})
    return tools or None


def transform_tool_choice(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    tool_choice = body.get("tool_choice")
    if not tool_choice:
        return None
    if isinstance(tool_choice, dict):
        return {
            "function_calling_config": {
                "mode": "ANY",
                "allowed_function_names": [tool_choice["function"]["name"]],
            }
        }
    return {"function_calling_config": {"mode": TOOL_CHOICE_MODES.get(tool_choice, "AUTO")}}


# Every sampling field resolves to the same generationConfig object
GENERATION_CONFIG = ParameterConfig("generationConfig", transform=transform_generation_config)

GENERATION_FIELDS = (
    "temperature", "top_p", "top_k", "max_tokens", "max_completion_tokens", "stop",
    "n", "logprobs", "top_logprobs", "seed", "response_format", "thinking",
)

GOOGLE_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default=DEFAULT_MODEL),
    "messages": [
        ParameterConfig("contents", required=True, transform=transform_contents),
        ParameterConfig("systemInstruction", transform=transform_system_instruction),
    ],
    **{name: GENERATION_CONFIG for name in GENERATION_FIELDS},
    "tools": ParameterConfig("tools", transform=transform_tools),
    "tool_choice": ParameterConfig("tool_config", transform=transform_tool_choice),
    "safety_settings": ParameterConfig("safety_settings"),
})


def transform_embed_content(body: Dict[str, Any]) -> Dict[str, Any]:
    text = body["input"]
    if not isinstance(text, str):
        raise ValueError("Gemini embeddings take a single string input")
    return {"parts": [{"text": text}]}


GOOGLE_EMBED_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="text-embedding-004"),
    "input": ParameterConfig("content", required=True, transform=transform_embed_content),
    "dimensions": ParameterConfig("outputDimensionality"),
    "task_type": ParameterConfig("taskType"),
})


# ============================================================================
# Adapter
# ============================================================================


class GoogleAdapter(ProviderAdapter):
    """Adapter for the Gemini API (generativelanguage.googleapis.com)."""

    PROVIDER = AIProvider.GOOGLE.value
    BASE_URL = "https://generativelanguage.googleapis.com"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: ":generateContent",
        FunctionName.STREAM_CHAT_COMPLETE: ":streamGenerateContent?alt=sse",
        FunctionName.EMBED: ":embedContent",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: GOOGLE_CHAT_COMPLETE_CONFIG,
        FunctionName.EMBED: GOOGLE_EMBED_CONFIG,
    }

    PROXY_PATH_FUNCTIONS = (
        (":streamGenerateContent", FunctionName.STREAM_CHAT_COMPLETE),
        (":generateContent", FunctionName.CHAT_COMPLETE),
        (":embedContent", FunctionName.EMBED),
    )

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {
            FunctionName.CHAT_COMPLETE: self.chat_complete_response,
            FunctionName.EMBED: self.embed_response,
        }

    def stream_transforms(self) -> Dict[FunctionName, StreamTransform]:
        return {FunctionName.STREAM_CHAT_COMPLETE: self.chat_complete_stream_chunk}

    def get_endpoint(self, ctx: ProviderContext) -> str:
        function_name = ctx.function_name
        if function_name == FunctionName.CHAT_COMPLETE and ctx.request_data.stream:
            function_name = FunctionName.STREAM_CHAT_COMPLETE
        suffix = self.ENDPOINTS.get(function_name)
        if function_name == FunctionName.PROXY or not suffix:
            return super().get_endpoint(ctx)
        return f"/{API_VERSION}/models/{ctx.model or DEFAULT_MODEL}{suffix}"

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        return {"x-goog-api-key": api_key}

    def finalize_request_body(self, body: Dict[str, Any], ctx: ProviderContext) -> Dict[str, Any]:
        # The model travels in the URL
        return {key: value for key, value in body.items() if key not in ("model", "stream")}

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        # Stream requests report errors as a one-element array
        if isinstance(body, list) and body and isinstance(body[0], dict) and "error" in body[0]:
            body = body[0]
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            return generate_error_response(
                error.get("message") or json.dumps(error),
                self.PROVIDER,
                error_type=error.get("status"),
                code=str(error["code"]) if error.get("code") is not None else None,
            )
        return super().normalize_error(body, status)

    @staticmethod
    def _usage(metadata: Optional[Dict[str, Any]]) -> Dict[str, int]:
        metadata = metadata or {}
        usage = build_usage(metadata.get("promptTokenCount"), metadata.get("candidatesTokenCount"))
        if metadata.get("totalTokenCount") is not None:
            usage["total_tokens"] = metadata["totalTokenCount"]
        return usage

    def chat_complete_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """generateContent response as a chat completion."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "candidates" not in body:
            return invalid_provider_response(body, self.PROVIDER)

        choices = []
        for index, candidate in enumerate(body["candidates"]):
            parts = (candidate.get("content") or {}).get("parts") or []
            tool_calls = []
            thoughts = []
            content: Optional[str] = None
            for part in parts:
                if part.get("functionCall"):
                    tool_calls.append({
                        "id": f"{self.PROVIDER}-{uuid.uuid4().hex}",
                        "type": "function",
                        "function": {
                            "name": part["functionCall"]["name"],
                            "arguments": json.dumps(part["functionCall"].get("args") or {}),
                        },
                    })
                elif part.get("thought") and part.get("text"):
                    thoughts.append({"type": "thinking", "thinking": part["text"]})
                elif part.get("text"):
                    content = part["text"] if content is None else content + part["text"]

            message: Dict[str, Any] = {"role": "assistant", "content": content or ""}
            if tool_calls:
                message["tool_calls"] = tool_calls
            if thoughts and not ctx.strict_compliance:
                message["content_blocks"] = thoughts + [{"type": "text", "text": content or ""}]

            choice: Dict[str, Any] = {
                "message": message,
                "index": candidate.get("index", index),
                "logprobs": None,
                "finish_reason": map_finish_reason(candidate.get("finishReason"), bool(tool_calls)),
            }
            if not ctx.strict_compliance:
                if candidate.get("safetyRatings"):
                    choice["safetyRatings"] = candidate["safetyRatings"]
                if candidate.get("groundingMetadata"):
                    choice["groundingMetadata"] = candidate["groundingMetadata"]
            choices.append(choice)

        return {
            "id": body.get("responseId") or f"{self.PROVIDER}-{uuid.uuid4().hex}",
            "object": "chat.completion",
            "created": now(),
            "model": body.get("modelVersion") or ctx.request_body.get("model"),
            "provider": self.PROVIDER,
            "choices": choices,
            "usage": self._usage(body.get("usageMetadata")),
        }

    def embed_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "embedding" not in body:
            return invalid_provider_response(body, self.PROVIDER)
        return {
            "object": "list",
            "data": [{"object": "embedding", "index": 0, "embedding": body["embedding"]["values"]}],
            "model": ctx.request_body.get("model") or "",
            "provider": self.PROVIDER,
            "usage": self._usage(body.get("usageMetadata")),
        }

    def chat_complete_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        """One streamGenerateContent event as a chat completion chunk."""
        if "error" in parsed:
            raise self.stream_error(parsed)

        choices = []
        for index, candidate in enumerate(parsed["candidates"]):
            parts = (candidate.get("content") or {}).get("parts") or []
            delta: Dict[str, Any] = {"role": "assistant", "content": ""}
            calls = [part for part in parts if part.get("functionCall")]
            if calls:
                delta["tool_calls"] = [
                    {
                        "index": call_index,
                        "id": f"{self.PROVIDER}-{uuid.uuid4().hex}",
                        "type": "function",
                        "function": {
                            "name": part["functionCall"]["name"],
                            "arguments": json.dumps(part["functionCall"].get("args") or {}),
                        },
                    }
                    for call_index, part in enumerate(calls)
                ]
            else:
                delta["content"] = self._stream_text(parts, state, ctx.strict_compliance)

            choice: Dict[str, Any] = {
                "index": candidate.get("index", index),
                "delta": delta,
                "finish_reason": map_finish_reason(candidate.get("finishReason"), bool(calls)),
            }
            if not ctx.strict_compliance and candidate.get("safetyRatings"):
                choice["safetyRatings"] = candidate["safetyRatings"]
            choices.append(choice)

        chunk: Dict[str, Any] = {
            "id": fallback_id,
            "object": "chat.completion.chunk",
            "created": now(),
            "model": parsed.get("modelVersion") or ctx.request_body.get("model") or "",
            "provider": self.PROVIDER,
            "choices": choices,
        }
        metadata = parsed.get("usageMetadata") or {}
        if metadata.get("candidatesTokenCount"):
            chunk["usage"] = self._usage(metadata)
            state.usage = chunk["usage"]
        return sse(chunk)

    @staticmethod
    def _stream_text(parts: List[Dict[str, Any]], state: StreamState, strict: bool) -> str:
        """
        Visible text of a chunk.

        Thought parts are dropped in strict mode; otherwise they are kept and
        separated from the answer by a blank line when the answer starts.
        """
        text = ""
        for part in parts:
            if not part.get("text"):
                continue
            if part.get("thought"):
                state.contains_chain_of_thought_message = True
                if not strict:
                    text += part["text"]
                continue
            if state.contains_chain_of_thought_message:
                state.contains_chain_of_thought_message = False
                if not strict:
                    text += "\r\n\r\n"
            text += part["text"]
        return text
