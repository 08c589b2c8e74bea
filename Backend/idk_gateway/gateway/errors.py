"""
Gateway error taxonomy.

Every failure that can reach a client is a GatewayError subclass. Each one
carries its HTTP status, an OpenAI-style error type and the provider it
concerns, and renders the single canonical error body:

    {"error": {"message", "type"?, "param"?, "code"?}, "provider"}
"""

import json
from typing import Any, Dict, Optional, Union

from idk_gateway.gateway.constants import REQUEST_TIMEOUT_STATUS_CODE, RETRY_STATUS_CODES


def generate_error_response(
    message: str,
    provider: Optional[str],
    error_type: Optional[str] = None,
    param: Optional[str] = None,
    code: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the canonical error body.

    Optional fields are omitted rather than sent as null, and the message is
    passed through untouched (no provider prefix).

    Args:
        message: Human-readable error message
        provider: Provider the error concerns
        error_type: Optional error type (e.g., "invalid_request_error")
        param: Optional parameter that caused the error
        code: Optional error code

    Returns:
        Canonical error response dict
    """
    error: Dict[str, Any] = {"message": message}
    if error_type is not None:
        error["type"] = error_type
    if param is not None:
        error["param"] = param
    if code is not None:
        error["code"] = str(code)

    body: Dict[str, Any] = {"error": error}
    if provider is not None:
        body["provider"] = provider
    return body


def is_error_response(body: Any) -> bool:
    """Check whether a transformed body is the canonical error shape."""
    return isinstance(body, dict) and isinstance(body.get("error"), dict) and "message" in body["error"]


class GatewayError(Exception):
    """Base exception for all gateway failures."""

    status_code: int = 500
    error_type: str = "gateway_error"
    retryable: bool = False
    # Retries spent before the error surfaced
    retry_attempt: int = 0

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_type: Optional[str] = None,
        status_code: Optional[int] = None,
        param: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        if error_type is not None:
            self.error_type = error_type
        if status_code is not None:
            self.status_code = status_code
        self.param = param
        self.code = code

    def to_error_body(self) -> Dict[str, Any]:
        """Convert to the canonical error body."""
        return generate_error_response(
            self.message,
            self.provider,
            error_type=self.error_type,
            param=self.param,
            code=self.code,
        )


# ============================================================================
# Client-side errors (never retried)
# ============================================================================


class ValidationError(GatewayError):
    """The canonical request is malformed or out of bounds."""

    status_code = 400
    error_type = "invalid_request_error"


class ParameterOutOfRange(ValidationError):
    """A numeric parameter falls outside the provider's accepted range."""

    def __init__(self, field: str, value: Any, minimum: Any, maximum: Any, provider: Optional[str] = None):
        bounds = []
        if minimum is not None:
            bounds.append(f">= {minimum}")
        if maximum is not None:
            bounds.append(f"<= {maximum}")
        super().__init__(
            f"Invalid value for '{field}': {value}. Expected a value {' and '.join(bounds)}.",
            provider=provider,
            param=field,
            code="parameter_out_of_range",
        )
        self.value = value


class UnsupportedFunction(ValidationError):
    """The selected provider does not implement the requested function."""

    def __init__(self, function_name: str, provider: Optional[str] = None):
        super().__init__(
            f"{function_name} is not supported by {provider}",
            provider=provider,
            code="unsupported_function",
        )
        self.function_name = function_name


class MissingRequiredParameter(GatewayError):
    """A required parameter is absent and has no default."""

    status_code = 400
    error_type = "invalid_request_error"

    def __init__(self, field: str, provider: Optional[str] = None):
        super().__init__(
            f"Missing required parameter: '{field}'",
            provider=provider,
            param=field,
            code="missing_required_parameter",
        )
        self.field = field


class InvalidHostConfiguration(GatewayError):
    """A custom host or provider base URL is unusable."""

    status_code = 400
    error_type = "invalid_request_error"

    def __init__(self, message: str, provider: Optional[str] = None, url: Optional[str] = None):
        super().__init__(message, provider=provider, code="invalid_host")
        self.url = url


class RouterError(GatewayError):
    """The routing config is malformed or selects no target."""

    status_code = 400
    error_type = "invalid_request_error"


# ============================================================================
# Upstream errors
# ============================================================================


class UpstreamProviderError(GatewayError):
    """
    The provider answered with a non-2xx status.

    The body is the normalized provider error when one could be produced,
    otherwise the raw response text.
    """

    error_type = "upstream_error"

    def __init__(
        self,
        status_code: int,
        body: Union[Dict[str, Any], str, None],
        provider: Optional[str] = None,
        status_text: str = "",
    ):
        message = _message_from_body(body) or status_text or f"Upstream returned HTTP {status_code}"
        super().__init__(message, provider=provider, status_code=status_code or 502)
        self.status_text = status_text
        self.body = body
        self.retryable = self.status_code in RETRY_STATUS_CODES

    def to_error_body(self) -> Dict[str, Any]:
        if is_error_response(self.body):
            body = dict(self.body)
            body.setdefault("provider", self.provider)
            return body
        return generate_error_response(self.message, self.provider)


class InvalidProviderResponse(GatewayError):
    """A 2xx provider body matched no known success or error shape."""

    status_code = 502
    error_type = "invalid_response_error"

    def __init__(self, body: Any = None, provider: Optional[str] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid response received from {provider}: {_preview(body)}",
            provider=provider,
            code="invalid_provider_response",
        )
        self.body = body


class GatewayTimeoutError(GatewayError):
    """The upstream call exceeded its timeout."""

    status_code = REQUEST_TIMEOUT_STATUS_CODE
    error_type = "timeout_error"
    retryable = True

    def __init__(self, timeout_ms: int, provider: Optional[str] = None):
        super().__init__(
            f"Request exceeded the timeout sent in the request: {timeout_ms}ms",
            provider=provider,
        )
        self.timeout_ms = timeout_ms

    def to_error_body(self) -> Dict[str, Any]:
        # Timeout bodies always spell out param and code
        return {
            "error": {"message": self.message, "type": self.error_type, "param": None, "code": None},
            "provider": self.provider,
        }


class StreamTransformError(GatewayError):
    """
    A stream could not continue.

    Raised for a chunk a strict provider sent that cannot be transformed, and
    for an error payload any provider sent in place of a chunk. In the latter
    case `body` holds the provider error in canonical form.
    """

    status_code = 502
    error_type = "stream_error"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        chunk: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, provider=provider, code="stream_transform_error")
        self.chunk = chunk
        self.body = body

    def to_error_body(self) -> Dict[str, Any]:
        if not is_error_response(self.body):
            return super().to_error_body()
        body = {**self.body, "error": dict(self.body["error"])}
        body["error"].setdefault("type", self.error_type)
        body.setdefault("provider", self.provider)
        return body


def invalid_provider_response(body: Any, provider: Optional[str]) -> Dict[str, Any]:
    """Canonical error body for an unrecognized provider response."""
    return InvalidProviderResponse(body, provider).to_error_body()


def _message_from_body(body: Union[Dict[str, Any], str, None]) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or "")
        if isinstance(error, str):
            return error
        return str(body.get("message") or "")
    return body or ""


def _preview(body: Any, limit: int = 200) -> str:
    if isinstance(body, (dict, list)):
        text = json.dumps(body, default=str)
    else:
        text = str(body)
    return text if len(text) <= limit else text[:limit] + "..."
