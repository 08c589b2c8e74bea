"""
AI Gateway Provider Adapter Base Class.

This module defines the base interface for provider adapters.
Each adapter bundles everything the gateway knows about one provider:

1. Parameter tables - per function, how canonical fields map to the
   provider's native request fields
2. API descriptor - base URL, endpoint path and headers for a target
3. Response transforms - provider JSON back to the canonical schema
4. Stream transforms - provider SSE chunks back to canonical chunks
5. Error normalization - provider error payloads to the canonical error

Adapters are stateless singletons; everything request-scoped travels in
ProviderContext, TransformContext and StreamState.
"""

import json
import time
from abc import ABC
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import structlog

from idk_gateway.gateway.constants import (
    SSE_DONE,
    STREAM_BASE_FUNCTION,
    FunctionName,
)
from idk_gateway.gateway.errors import (
    MissingRequiredParameter,
    StreamTransformError,
    generate_error_response,
    invalid_provider_response,
    is_error_response,
)
from idk_gateway.gateway.middleware.host_guard import validate_custom_host
from idk_gateway.gateway.routing.config import Target
from idk_gateway.gateway.schemas import RequestData

logger = structlog.get_logger(__name__)


# ============================================================================
# Parameter tables
# ============================================================================

ParamTransform = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class ParameterConfig:
    """
    How one canonical field lands in a provider request.

    Attributes:
        param: Provider field name; dotted paths write nested objects
        required: Field must resolve to a value (using `default` if needed)
        default: Value, or callable `(request_body, target)`, used when a
            required field is absent or sent as "ra-default"
        min: Inclusive lower bound for numeric values
        max: Inclusive upper bound for numeric values
        transform: Callable `(request_body)` computing the provider value
        clamp: Clamp out-of-range values instead of rejecting them
    """

    param: str
    required: bool = False
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    transform: Optional[ParamTransform] = None
    clamp: bool = False


ParameterSpec = Union[ParameterConfig, Tuple[ParameterConfig, ...]]
FunctionConfig = Mapping[str, ParameterSpec]


def function_config(entries: Dict[str, Union[ParameterConfig, Sequence[ParameterConfig]]]) -> FunctionConfig:
    """Freeze a parameter table; fan-out lists become tuples."""
    frozen: Dict[str, ParameterSpec] = {}
    for name, spec in entries.items():
        frozen[name] = spec if isinstance(spec, ParameterConfig) else tuple(spec)
    return MappingProxyType(frozen)


def extend_config(base: FunctionConfig, entries: Dict[str, Any], drop: Sequence[str] = ()) -> FunctionConfig:
    """Derive a parameter table from another one."""
    merged: Dict[str, Any] = {k: v for k, v in base.items() if k not in drop}
    merged.update(entries)
    return function_config(merged)


# ============================================================================
# Contexts
# ============================================================================


@dataclass
class ProviderContext:
    """Inputs to the API descriptor for one target attempt."""

    target: Target
    request_data: RequestData
    # Provider-native body, once built
    provider_body: Dict[str, Any] = field(default_factory=dict)

    @property
    def function_name(self) -> FunctionName:
        return self.request_data.function_name

    @property
    def api_key(self) -> Optional[str]:
        return self.target.api_key_value

    @property
    def model(self) -> Optional[str]:
        return (
            self.provider_body.get("model")
            or self.request_data.request_body.get("model")
            or self.target.configuration.model
        )


@dataclass
class TransformContext:
    """Inputs shared by response and stream transforms."""

    provider: str
    function_name: FunctionName
    request_data: RequestData
    response_headers: Dict[str, str] = field(default_factory=dict)
    strict_compliance: bool = True

    @property
    def request_body(self) -> Dict[str, Any]:
        return self.request_data.request_body


@dataclass
class StreamState:
    """Scratch space for one stream; never shared between requests."""

    contains_chain_of_thought_message: bool = False
    message_id: Optional[str] = None
    model: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    tool_index: int = -1
    chunk_index: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)


ResponseTransform = Callable[[Any, int, TransformContext], Dict[str, Any]]
StreamTransform = Callable[[Dict[str, Any], str, StreamState, TransformContext], str]


# ============================================================================
# Helpers shared by transforms
# ============================================================================


def sse(payload: Dict[str, Any]) -> str:
    """Encode one canonical SSE line."""
    return f"data: {json.dumps(payload)}\n\n"


def now() -> int:
    return int(time.time())


def fallback_stream_id(provider: str) -> str:
    """Chunk id used when the provider does not supply one."""
    return f"{provider}-{int(time.time() * 1000)}"


def unknown_usage() -> Dict[str, int]:
    """Usage for providers that report no counters at all."""
    return {"prompt_tokens": -1, "completion_tokens": -1, "total_tokens": -1}


def build_usage(prompt_tokens: Optional[int], completion_tokens: Optional[int]) -> Dict[str, int]:
    """Usage from provider counters, -1 marking an unknown side."""
    prompt = prompt_tokens if prompt_tokens is not None else -1
    completion = completion_tokens if completion_tokens is not None else -1
    if prompt < 0 and completion < 0:
        total = -1
    else:
        total = max(prompt, 0) + max(completion, 0)
    return {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": total}


def is_success_status(status: int) -> bool:
    return 200 <= status < 300


class _Done:
    """Marker for the [DONE] sentinel in a parsed chunk."""


DONE = _Done()


# ============================================================================
# Adapter base
# ============================================================================


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses declare their provider id, default origin, endpoint table and
    parameter tables as class attributes, and register transforms through
    `response_transforms()` / `stream_transforms()`. Functions without a
    response transform are passed through with the provider tag added.
    """

    # Provider identifier (AIProvider value)
    PROVIDER: str = "base"

    # Default origin when the target sets no custom host
    BASE_URL: str = ""

    # Endpoint path per function
    ENDPOINTS: Mapping[FunctionName, str] = MappingProxyType({})

    # Parameter table per function; streaming variants reuse the base table
    FUNCTION_CONFIGS: Mapping[FunctionName, FunctionConfig] = MappingProxyType({})

    # Extra target fields this provider understands (for the /v1/providers listing)
    CUSTOM_FIELDS_SCHEMA: Mapping[str, Any] = MappingProxyType({})

    IS_API_KEY_REQUIRED: bool = True

    # Emit an empty chunk on unparseable stream data instead of failing
    LENIENT_STREAM_PARSING: bool = False

    # Ordered (path fragment, function) pairs used to classify proxy paths
    PROXY_PATH_FUNCTIONS: Tuple[Tuple[str, FunctionName], ...] = (
        ("/chat/completions", FunctionName.CHAT_COMPLETE),
        ("/completions", FunctionName.COMPLETE),
        ("/embeddings", FunctionName.EMBED),
        ("/images/generations", FunctionName.GENERATE_IMAGE),
        ("/responses", FunctionName.CREATE_MODEL_RESPONSE),
    )

    # Keys holding a message in non-OpenAI error payloads, tried in order
    ERROR_MESSAGE_KEYS: Tuple[str, ...] = ("message", "detail")

    def __init__(self) -> None:
        self._response_transforms: Mapping[FunctionName, ResponseTransform] = MappingProxyType(
            dict(self.response_transforms())
        )
        self._stream_transforms: Mapping[FunctionName, StreamTransform] = MappingProxyType(
            dict(self.stream_transforms())
        )

    # ------------------------------------------------------------------
    # Registration hooks
    # ------------------------------------------------------------------

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        """Response transform per function."""
        return {}

    def stream_transforms(self) -> Dict[FunctionName, StreamTransform]:
        """Stream chunk transform per streaming function."""
        return {}

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @staticmethod
    def base_function(function_name: FunctionName) -> FunctionName:
        return STREAM_BASE_FUNCTION.get(function_name, function_name)

    def get_function_config(self, function_name: FunctionName) -> Optional[FunctionConfig]:
        """Parameter table for a function, or None when it is passed through."""
        return self.FUNCTION_CONFIGS.get(self.base_function(function_name))

    def supports(self, function_name: FunctionName) -> bool:
        """Check whether this provider implements a function."""
        if function_name == FunctionName.PROXY:
            return True
        return bool(self.ENDPOINTS.get(function_name)) or bool(
            self.ENDPOINTS.get(self.base_function(function_name))
        )

    def supported_functions(self) -> Sequence[str]:
        return [fn.value for fn in FunctionName if self.supports(fn)]

    # ------------------------------------------------------------------
    # API descriptor
    # ------------------------------------------------------------------

    def get_base_url(self, ctx: ProviderContext) -> str:
        """
        Provider origin for a target.

        An explicit custom host always wins and is validated; an invalid one
        raises rather than falling back to the default origin.

        Raises:
            InvalidHostConfiguration: If the custom host is unusable
        """
        if ctx.target.custom_host is not None:
            return validate_custom_host(ctx.target.custom_host, provider=self.PROVIDER)
        return self.default_base_url(ctx)

    def default_base_url(self, ctx: ProviderContext) -> str:
        return self.BASE_URL

    def get_endpoint(self, ctx: ProviderContext) -> str:
        """
        Endpoint path for the request's function.

        Returns "" for unsupported functions and for proxy paths that do not
        map to a known function.
        """
        function_name = ctx.function_name
        if function_name == FunctionName.PROXY:
            sniffed = self.sniff_proxy_function(ctx.request_data.url)
            if sniffed is None:
                return ""
            function_name = sniffed
        return self.ENDPOINTS.get(function_name) or self.ENDPOINTS.get(self.base_function(function_name), "")

    def sniff_proxy_function(self, url: str) -> Optional[FunctionName]:
        """Best-effort canonical function behind a proxied path."""
        path = url.split("?", 1)[0]
        for fragment, function_name in self.PROXY_PATH_FUNCTIONS:
            if fragment in path:
                return function_name
        return None

    def headers(self, ctx: ProviderContext) -> Dict[str, str]:
        """
        Auth and content headers for a target.

        Raises:
            MissingRequiredParameter: If the provider needs a key and none was given
        """
        headers = {"Content-Type": "application/json"}
        api_key = self._require_api_key(ctx)
        if api_key:
            headers.update(self.auth_headers(api_key, ctx))
        return headers

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _require_api_key(self, ctx: ProviderContext) -> Optional[str]:
        api_key = ctx.api_key
        if not api_key and self.IS_API_KEY_REQUIRED:
            raise MissingRequiredParameter("api_key", provider=self.PROVIDER)
        return api_key

    def get_proxy_endpoint(self, path: str, query: str, target: Target) -> str:
        """Path appended to the base URL for the raw proxy route."""
        return f"{path}{'?' + query if query else ''}"

    def finalize_request_body(self, body: Dict[str, Any], ctx: ProviderContext) -> Dict[str, Any]:
        """Last adjustments to a built body that depend on the target."""
        return body

    # ------------------------------------------------------------------
    # Error normalization
    # ------------------------------------------------------------------

    def normalize_error(self, body: Any, status: int) -> Optional[Dict[str, Any]]:
        """
        Canonical error for a provider payload.

        Returns None when a 2xx body carries no in-band error. For a non-2xx
        status some error with a non-empty message is always produced.
        """
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                message = error.get("message") or json.dumps(error)
                return generate_error_response(
                    str(message),
                    self.PROVIDER,
                    error_type=error.get("type"),
                    param=error.get("param"),
                    code=error.get("code"),
                )
            if isinstance(error, str) and error:
                return generate_error_response(error, self.PROVIDER)
            if is_success_status(status):
                return None
            for key in self.ERROR_MESSAGE_KEYS:
                value = body.get(key)
                if value:
                    message = value if isinstance(value, str) else json.dumps(value)
                    return generate_error_response(message, self.PROVIDER)
            return generate_error_response(json.dumps(body) if body else f"HTTP {status}", self.PROVIDER)

        if is_success_status(status):
            return None
        text = body if isinstance(body, str) and body.strip() else f"{self.PROVIDER} returned HTTP {status}"
        return generate_error_response(text, self.PROVIDER)

    # ------------------------------------------------------------------
    # Response transformation
    # ------------------------------------------------------------------

    def transform_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """
        Canonical response or canonical error for a provider response.

        Exceptions raised inside a transform never cross this boundary; they
        become an invalid-response error.
        """
        transform = self._response_transforms.get(self.base_function(ctx.function_name))
        try:
            if transform is None:
                result = self.passthrough_response(body, status, ctx)
            else:
                result = transform(body, status, ctx)
        except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
            logger.warning(
                "Response transform failed",
                provider=self.PROVIDER,
                function_name=ctx.function_name.value,
                status=status,
                error=str(e),
            )
            return invalid_provider_response(body, self.PROVIDER)

        if not is_success_status(status) and not is_error_response(result):
            return self.normalize_error(body, status) or generate_error_response(
                f"{self.PROVIDER} returned HTTP {status}", self.PROVIDER
            )
        return result

    def passthrough_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """Provider already speaks the canonical schema."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict):
            return invalid_provider_response(body, self.PROVIDER)
        return {**body, "provider": self.PROVIDER}

    # ------------------------------------------------------------------
    # Stream transformation
    # ------------------------------------------------------------------

    def parse_stream_chunk(self, chunk: str) -> Any:
        """
        Decode one raw SSE event.

        Returns DONE for the sentinel, None for events without data
        (comments, keep-alives), else the decoded JSON.

        Raises:
            ValueError: If the payload is not JSON
        """
        lines = chunk.strip().splitlines()
        data_lines = [line[5:].strip() for line in lines if line.startswith("data:")]
        if data_lines:
            payload = "\n".join(data_lines)
        elif any(line.startswith(("event:", ":", "id:", "retry:")) for line in lines):
            return None
        else:
            payload = chunk.strip()

        if payload == "[DONE]":
            return DONE
        if not payload:
            return None
        return json.loads(payload)

    def transform_stream_chunk(
        self,
        chunk: str,
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        """
        Canonical SSE output for one provider chunk.

        Returns "" when the chunk produces no output.

        Raises:
            StreamTransformError: If a strict provider sends an unusable chunk
        """
        try:
            parsed = self.parse_stream_chunk(chunk)
            if parsed is DONE:
                return SSE_DONE
            if parsed is None:
                return ""
            transform = self._stream_transforms.get(ctx.function_name)
            if transform is None:
                output = self.passthrough_stream_chunk(parsed, fallback_id, state, ctx)
            else:
                output = transform(parsed, fallback_id, state, ctx)
        except StreamTransformError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
            if self.LENIENT_STREAM_PARSING:
                logger.debug("Dropping unparseable stream chunk", provider=self.PROVIDER, error=str(e))
                return self.empty_stream_chunk(fallback_id, state, ctx)
            raise StreamTransformError(
                f"Unable to parse stream chunk from {self.PROVIDER}: {e}",
                provider=self.PROVIDER,
                chunk=chunk,
            )
        state.chunk_index += 1
        return output

    def passthrough_stream_chunk(
        self,
        parsed: Dict[str, Any],
        fallback_id: str,
        state: StreamState,
        ctx: TransformContext,
    ) -> str:
        """Provider already streams canonical chunks."""
        if isinstance(parsed, dict):
            if "error" in parsed and "choices" not in parsed:
                raise self.stream_error(parsed)
            return sse({**parsed, "provider": self.PROVIDER})
        raise ValueError("Stream chunk is not a JSON object")

    def stream_error(self, parsed: Any) -> StreamTransformError:
        """Terminal stream error for an error payload sent in place of a chunk."""
        body = self.normalize_error(parsed, 500)
        return StreamTransformError(body["error"]["message"], provider=self.PROVIDER, body=body)

    def empty_stream_chunk(self, fallback_id: str, state: StreamState, ctx: TransformContext) -> str:
        """Best-effort chunk with empty content, used by lenient providers."""
        if self.base_function(ctx.function_name) == FunctionName.COMPLETE:
            choice: Dict[str, Any] = {"index": 0, "text": "", "logprobs": None, "finish_reason": None}
            object_type = "text_completion"
        else:
            choice = {"index": 0, "delta": {"role": "assistant", "content": ""}, "finish_reason": None}
            object_type = "chat.completion.chunk"
        return sse({
            "id": state.message_id or fallback_id,
            "object": object_type,
            "created": now(),
            "model": state.model or ctx.request_body.get("model") or "",
            "provider": self.PROVIDER,
            "choices": [choice],
        })

    def describe(self) -> Dict[str, Any]:
        """Registry listing entry."""
        return {
            "provider": self.PROVIDER,
            "base_url": self.BASE_URL or None,
            "functions": list(self.supported_functions()),
            "is_api_key_required": self.IS_API_KEY_REQUIRED,
            "lenient_stream_parsing": self.LENIENT_STREAM_PARSING,
            "custom_fields": dict(self.CUSTOM_FIELDS_SCHEMA),
        }
