"""
Anthropic Adapter.

Translates between the OpenAI chat schema and Anthropic's Messages API:

- System and developer messages move to the top-level `system` blocks
- Assistant tool calls become `tool_use` blocks and tool messages become
  `tool_result` blocks on a user turn
- `response_format` is emulated with a forced `__json_output` tool whose
  input is returned as the message content
- The event stream (`message_start`, `content_block_delta`, ...) is folded
  into chat completion chunks
"""

import json
from typing import Any, Dict, List, Optional

import structlog

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderAdapter,
    ProviderContext,
    ResponseTransform,
    StreamState,
    StreamTransform,
    TransformContext,
    function_config,
    invalid_provider_response,
    now,
    sse,
)
from idk_gateway.gateway.constants import SSE_DONE, AIProvider, FunctionName
from idk_gateway.gateway.routing.config import Target

logger = structlog.get_logger(__name__)

DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-2.1"
JSON_OUTPUT_TOOL = "__json_output"

SYSTEM_ROLES = ("system", "developer")

# Anthropic requires dated model names for these aliases
MODEL_ALIASES = {
    "claude-3-5-sonnet-latest": "claude-3-5-sonnet-20241022",
    "claude-3-opus-latest": "claude-3-opus-20240229",
    "claude-3-haiku-latest": "claude-3-haiku-20240307",
    "claude-3-sonnet-latest": "claude-3-sonnet-20240229",
}

STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}

# JSON schema keywords Anthropic accepts in a tool input schema
SCHEMA_KEYWORDS = (
    "type", "description", "enum", "const", "pattern", "format",
    "minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum",
    "minLength", "maxLength", "minItems", "maxItems", "uniqueItems",
    "required", "default",
)
NESTED_SCHEMA_LISTS = ("anyOf", "oneOf", "allOf")


def map_stop_reason(stop_reason: Optional[str]) -> str:
    return STOP_REASONS.get(stop_reason or "", "stop")


# ============================================================================
# Request transforms
# ============================================================================


def _ephemeral(item: Dict[str, Any]) -> Dict[str, Any]:
    return {"cache_control": {"type": "ephemeral"}} if item.get("cache_control") else {}


def _image_block(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    url = (item.get("image_url") or {}).get("url")
    if not url:
        return None
    if not url.startswith("data:"):
        return {"type": "image", "source": {"type": "url", "url": url}}

    # data:<media type>;base64,<payload>
    header, _, payload = url.partition(",")
    media_type = header[len("data:"):].split(";", 1)[0]
    if not media_type or not payload:
        return None
    return {
        "type": "document" if media_type == "application/pdf" else "image",
        "source": {"type": "base64", "media_type": media_type, "data": payload},
        **_ephemeral(item),
    }


def _file_block(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    file = item.get("file") or {}
    mime_type = file.get("mime_type") or "application/pdf"
    if file.get("file_url"):
        return {"type": "document", "source": {"type": "url", "url": file["file_url"]}}
    if file.get("file_data"):
        source_type = "text" if mime_type == "text/plain" else "base64"
        return {
            "type": "document",
            "source": {"type": source_type, "data": file["file_data"], "media_type": mime_type},
        }
    return None


def _assistant_message(message: Dict[str, Any]) -> Dict[str, Any]:
    blocks: List[Dict[str, Any]] = []
    content = message.get("content_blocks") or message.get("content")
    if isinstance(content, str) and content:
        blocks.append({"type": "text", "text": content})
    elif isinstance(content, list):
        blocks.extend(item for item in content if item.get("type") != "tool_use")

    for tool_call in message.get("tool_calls") or []:
        function = tool_call.get("function") or {}
        try:
            tool_input = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("Unparseable tool call arguments", tool=function.get("name"))
            tool_input = {"raw_arguments": function.get("arguments")}
        blocks.append({
            "type": "tool_use",
            "name": function.get("name"),
            "id": tool_call.get("id"),
            "input": tool_input,
        })
    return {"role": "assistant", "content": blocks}


def _user_message(message: Dict[str, Any]) -> Dict[str, Any]:
    content = message.get("content")
    if not isinstance(content, list) or not content:
        return {"role": message["role"], "content": content}

    blocks: List[Dict[str, Any]] = []
    for item in content:
        kind = item.get("type")
        if kind == "text":
            blocks.append({"type": "text", "text": item.get("text") or "", **_ephemeral(item)})
        elif kind == "image_url":
            block = _image_block(item)
            if block:
                blocks.append(block)
        elif kind == "file":
            block = _file_block(item)
            if block:
                blocks.append(block)
    return {"role": message["role"], "content": blocks}


def transform_messages(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Non-system chat messages as Anthropic turns."""
    messages = []
    for message in body.get("messages") or []:
        role = message.get("role")
        if role in SYSTEM_ROLES:
            continue
        if role == "assistant":
            messages.append(_assistant_message(message))
        elif role == "tool" and not isinstance(message.get("content"), list):
            messages.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": message.get("tool_call_id") or "",
                    "content": message.get("content"),
                }],
            })
        else:
            messages.append(_user_message(message))
    return messages


def json_mode_instruction(response_format: Optional[Dict[str, Any]]) -> str:
    kind = (response_format or {}).get("type")
    if kind == "json_object":
        return (
            "\n\nIMPORTANT: You must respond by calling the __json_output tool with a valid JSON "
            "object. Do not include any text outside of the tool call."
        )
    if kind == "json_schema":
        return (
            "\n\nIMPORTANT: You must respond by calling the __json_output tool with a JSON object "
            "that matches the specified schema. Do not include any text outside of the tool call."
        )
    return ""


def transform_system(body: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    """System and developer messages as `system` text blocks."""
    blocks: List[Dict[str, Any]] = []
    for message in body.get("messages") or []:
        if message.get("role") not in SYSTEM_ROLES:
            continue
        content = message.get("content")
        if isinstance(content, str):
            blocks.append({"type": "text", "text": content})
        elif isinstance(content, list):
            blocks.extend(
                {"type": "text", "text": item.get("text") or "", **_ephemeral(item)}
                for item in content
                if item.get("text")
            )

    instruction = json_mode_instruction(body.get("response_format"))
    if instruction:
        if blocks:
            blocks[-1] = {**blocks[-1], "text": blocks[-1]["text"] + instruction}
        else:
            blocks.append({"type": "text", "text": instruction.strip()})
    return blocks or None


def convert_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """JSON schema reduced to the keywords Anthropic tool schemas accept."""
    result = {key: schema[key] for key in SCHEMA_KEYWORDS if key in schema}

    properties = schema.get("properties")
    if isinstance(properties, dict):
        converted = {name: convert_schema(value) for name, value in properties.items() if isinstance(value, dict)}
        if converted:
            result["properties"] = converted

    additional = schema.get("additionalProperties")
    if isinstance(additional, bool):
        result["additionalProperties"] = additional
    elif isinstance(additional, dict):
        result["additionalProperties"] = convert_schema(additional)

    items = schema.get("items")
    if isinstance(items, list):
        result["items"] = [convert_schema(item) if isinstance(item, dict) else item for item in items]
    elif isinstance(items, dict):
        result["items"] = convert_schema(items)

    for key in NESTED_SCHEMA_LISTS:
        if isinstance(schema.get(key), list):
            result[key] = [convert_schema(sub) if isinstance(sub, dict) else sub for sub in schema[key]]
    if isinstance(schema.get("not"), dict):
        result["not"] = convert_schema(schema["not"])
    return result


def json_output_tool(response_format: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Tool that carries the JSON answer when a response format is requested."""
    kind = (response_format or {}).get("type")
    if kind == "json_object":
        return {
            "name": JSON_OUTPUT_TOOL,
            "description": (
                "Output the response as a JSON object. This tool must be called with a valid JSON "
                "object. The entire input should be the JSON object you want to output."
            ),
            "input_schema": {"type": "object", "additionalProperties": True},
        }
    if kind == "json_schema":
        json_schema = response_format.get("json_schema") or {}
        schema = json_schema.get("schema", json_schema)
        if not isinstance(schema, dict) or not schema:
            return None
        converted = convert_schema(schema)
        return {
            "name": JSON_OUTPUT_TOOL,
            "description": (
                "Output the response as a JSON object matching the specified schema. This tool must "
                "be called with a valid JSON object that conforms to the schema."
            ),
            "input_schema": {"type": converted.get("type") or "object", **converted},
        }
    return None


def transform_tools(body: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    tools = []
    for tool in body.get("tools") or []:
        function = tool.get("function")
        if not function:
            continue
        parameters = function.get("parameters") or {}
        tools.append({
            "name": function["name"],
            "description": function.get("description") or "",
            "input_schema": {
                "type": parameters.get("type") or "object",
                "properties": parameters.get("properties") or {},
                "required": parameters.get("required") or [],
            },
            **_ephemeral(tool),
        })

    output_tool = json_output_tool(body.get("response_format"))
    if output_tool:
        tools.append(output_tool)
    return tools or None


def transform_tool_choice(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """OpenAI tool_choice as Anthropic's; `none` has no equivalent."""
    tool_choice = body.get("tool_choice")
    if body.get("response_format") and not tool_choice:
        return {"type": "tool", "name": JSON_OUTPUT_TOOL}
    if tool_choice == "required":
        return {"type": "any"}
    if tool_choice == "auto":
        return {"type": "auto"}
    if isinstance(tool_choice, dict):
        return {"type": "tool", "name": tool_choice["function"]["name"]}
    return None


def transform_model(body: Dict[str, Any]) -> str:
    model = body.get("model") or DEFAULT_MODEL
    return MODEL_ALIASES.get(model, model)


def transform_stop(body: Dict[str, Any]) -> Optional[List[str]]:
    stop = body.get("stop")
    if stop is None:
        return None
    return [stop] if isinstance(stop, str) else list(stop)


ANTHROPIC_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default=DEFAULT_MODEL, transform=transform_model),
    "messages": [
        ParameterConfig("messages", required=True, transform=transform_messages),
        ParameterConfig("system", transform=transform_system),
    ],
    "tools": ParameterConfig("tools", transform=transform_tools),
    "tool_choice": ParameterConfig("tool_choice", transform=transform_tool_choice),
    "max_tokens": ParameterConfig("max_tokens", required=True, default=4096),
    "max_completion_tokens": ParameterConfig("max_tokens"),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=1),
    "top_p": ParameterConfig("top_p", default=-1, min=-1),
    "top_k": ParameterConfig("top_k", default=-1),
    "stop": ParameterConfig("stop_sequences", transform=transform_stop),
    "stream": ParameterConfig("stream", default=False),
    "user": ParameterConfig("metadata.user_id"),
    "thinking": ParameterConfig("thinking"),
})


# ============================================================================
# Adapter
# ============================================================================


class AnthropicAdapter(ProviderAdapter):
    """Adapter for Anthropic's Messages API."""

    PROVIDER = AIProvider.ANTHROPIC.value
    BASE_URL = "https://api.anthropic.com/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/messages",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: ANTHROPIC_CHAT_COMPLETE_CONFIG,
    }

    CUSTOM_FIELDS_SCHEMA = {
        "anthropic_version": {"type": "string", "default": DEFAULT_ANTHROPIC_VERSION},
        "anthropic_beta": {"type": "string", "description": "anthropic-beta header"},
    }

    PROXY_PATH_FUNCTIONS = (("/messages", FunctionName.CHAT_COMPLETE),)

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        return {FunctionName.CHAT_COMPLETE: self.chat_complete_response}

    def stream_transforms(self) -> Dict[FunctionName, StreamTransform]:
        return {FunctionName.STREAM_CHAT_COMPLETE: self.chat_complete_stream_chunk}

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ctx.target.anthropic_version or DEFAULT_ANTHROPIC_VERSION,
        }
        if ctx.target.anthropic_beta:
            headers["anthropic-beta"] = ctx.target.anthropic_beta
        return headers

    def get_proxy_endpoint(self, path: str, query: str, target: Target) -> str:
        # Base URL already ends in /v1
        if path.startswith("/v1/"):
            path = path[3:]
        return super().get_proxy_endpoint(path, query, target)

    def chat_complete_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """Anthropic message as a chat completion."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "content" not in body:
            return invalid_provider_response(body, self.PROVIDER)

        blocks = body["content"] or []
        json_input = None
        json_extracted = False
        tool_calls = []
        for block in blocks:
            if block.get("type") != "tool_use":
                continue
            if block.get("name") == JSON_OUTPUT_TOOL:
                json_input = block.get("input")
                json_extracted = True
            else:
                tool_calls.append({
                    "id": block.get("id"),
                    "type": "function",
                    "function": {"name": block.get("name"), "arguments": json.dumps(block.get("input"))},
                })

        if json_extracted:
            content = json.dumps(json_input)
        else:
            content = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")

        message: Dict[str, Any] = {"role": "assistant", "content": content}
        if not ctx.strict_compliance:
            message["content_blocks"] = [block for block in blocks if block.get("type") != "tool_use"]
        if tool_calls:
            message["tool_calls"] = tool_calls
        if json_extracted:
            message["parsed"] = json_input

        return {
            "id": body.get("id"),
            "object": "chat.completion",
            "created": now(),
            "model": body.get("model") or ctx.request_body.get("model"),
            "provider": self.PROVIDER,
            "choices": [{
                "message": message,
                "index": 0,
                "logprobs": None,
                "finish_reason": map_stop_reason(body.get("stop_reason")),
            }],
            "usage": self._usage(body.get("usage") or {}),
        }

    @staticmethod
    def _usage(usage: Dict[str, Any], completion_tokens: Optional[int] = None) -> Dict[str, Any]:
        input_tokens = usage.get("input_tokens") or 0
        output_tokens = (usage.get("output_tokens") or 0) if completion_tokens is None else completion_tokens
        cache_creation = usage.get("cache_creation_input_tokens")
        cache_read = usage.get("cache_read_input_tokens")
        result = {
            "prompt_tokens": input_tokens,
            "completion_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens + (cache_creation or 0) + (cache_read or 0),
        }
        if cache_creation or cache_read:
            result["cache_read_input_tokens"] = cache_read
            result["cache_creation_input_tokens"] = cache_creation
        return result

    def _chunk(
        self,
        fallback_id: str,
        state: StreamState,
        choice: Dict[str, Any],
        usage: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload = {
            "id": fallback_id,
            "object": "chat.completion.chunk",
            "created": now(),
            "model": state.model or "",
            "provider": self.PROVIDER,
            "choices": [choice],
        }
        if usage is not None:
            payload["usage"] = usage
        return sse(payload)

    def chat_complete_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        """One Messages API stream event as chat completion chunks."""
        event_type = parsed["type"]

        if event_type in ("ping", "content_block_stop"):
            return ""
        if event_type == "message_stop":
            return SSE_DONE
        if event_type == "error":
            error = parsed.get("error") or {}
            choice = {"index": 0, "finish_reason": error.get("type"), "delta": {"content": ""}}
            return self._chunk(fallback_id, state, choice) + SSE_DONE

        if event_type == "message_start":
            message = parsed.get("message") or {}
            usage = message.get("usage") or {}
            state.model = message.get("model") or ""
            state.usage = {
                "input_tokens": usage.get("input_tokens") or 0,
                "cache_creation_input_tokens": usage.get("cache_creation_input_tokens"),
                "cache_read_input_tokens": usage.get("cache_read_input_tokens"),
            }
            choice = {"index": 0, "delta": {"content": ""}, "logprobs": None, "finish_reason": None}
            return self._chunk(fallback_id, state, choice)

        delta = parsed.get("delta") or {}

        if event_type == "message_delta":
            usage = self._usage(state.usage, completion_tokens=(parsed.get("usage") or {}).get("output_tokens") or 0)
            stop_reason = delta.get("stop_reason")
            choice = {
                "index": 0,
                "delta": {},
                "finish_reason": map_stop_reason(stop_reason) if stop_reason else None,
            }
            return self._chunk(fallback_id, state, choice, usage=usage)

        content_block = parsed.get("content_block") or {}
        tool_calls = []
        is_json_output = False

        if event_type == "content_block_start" and content_block.get("type") == "tool_use":
            state.tool_index += 1
            if content_block.get("name") == JSON_OUTPUT_TOOL:
                state.extra["json_output_index"] = parsed.get("index")
            else:
                tool_calls.append({
                    "index": state.tool_index,
                    "id": content_block.get("id"),
                    "type": "function",
                    "function": {"name": content_block.get("name"), "arguments": ""},
                })

        content = delta.get("text")
        if event_type == "content_block_delta" and "partial_json" in delta:
            is_json_output = (
                "json_output_index" in state.extra and parsed.get("index") == state.extra["json_output_index"]
            )
            if is_json_output:
                content = delta["partial_json"] or None
            else:
                tool_calls.append({"index": state.tool_index, "function": {"arguments": delta["partial_json"]}})

        out_delta: Dict[str, Any] = {"content": content}
        if tool_calls:
            out_delta["tool_calls"] = tool_calls
        elif not ctx.strict_compliance:
            block = {key: value for key, value in (delta or content_block).items() if key != "type"}
            out_delta["content_blocks"] = [{"index": parsed.get("index"), "delta": block}]

        stop_reason = delta.get("stop_reason")
        choice = {
            "index": 0,
            "delta": out_delta,
            "logprobs": None,
            "finish_reason": map_stop_reason(stop_reason) if stop_reason else None,
        }
        return self._chunk(fallback_id, state, choice)
