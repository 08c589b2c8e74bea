"""
Request tracing.

Each inbound request gets a request id and a trace id, taken from the
caller's headers when present. Both live in contextvars and are bound into
structlog's context, so the dispatcher, the stream handler and every log
line of the request see them without passing them around.
"""

import contextvars
import secrets
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import structlog

REQUEST_ID_HEADER = "X-Request-ID"
TRACE_ID_HEADER = "X-Trace-ID"
TRACEPARENT_HEADER = "traceparent"

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("idk_request_id", default=None)
_trace_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("idk_trace_id", default=None)


@dataclass(frozen=True)
class TraceIds:
    request_id: str
    trace_id: str

    def response_headers(self) -> Dict[str, str]:
        return {REQUEST_ID_HEADER: self.request_id, TRACE_ID_HEADER: self.trace_id}


def new_request_id() -> str:
    """`req_<epoch ms hex>_<12 random hex>`, e.g. req_18d5b3f2a01_a7b9c4d2e1f0."""
    return f"req_{int(time.time() * 1000):x}_{secrets.token_hex(6)}"


def new_trace_id() -> str:
    """32 hex characters, the W3C Trace Context trace-id format."""
    return secrets.token_hex(16)


def trace_id_from_traceparent(value: Optional[str]) -> Optional[str]:
    """Trace id field of a `version-traceid-parentid-flags` header."""
    if not value:
        return None
    parts = value.split("-")
    if len(parts) < 2:
        return None
    return parts[1] or None


def bind_trace(headers: Mapping[str, str]) -> TraceIds:
    """
    Adopt or create the ids for the current request.

    Args:
        headers: Inbound request headers (case-insensitive mapping)

    Returns:
        The ids now bound to the current context
    """
    request_id = headers.get(REQUEST_ID_HEADER) or new_request_id()
    trace_id = (
        headers.get(TRACE_ID_HEADER)
        or trace_id_from_traceparent(headers.get(TRACEPARENT_HEADER))
        or new_trace_id()
    )
    _request_id.set(request_id)
    _trace_id.set(trace_id)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, trace_id=trace_id)
    return TraceIds(request_id=request_id, trace_id=trace_id)


def get_request_id() -> str:
    """Request id of the current context, or a fresh one outside a request."""
    return _request_id.get() or new_request_id()


def get_trace_id() -> Optional[str]:
    return _trace_id.get()


class RequestTimer:
    """Wall time of one upstream call, plus time to first streamed token."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.first_token_time: Optional[float] = None

    def start(self) -> None:
        self.start_time = time.monotonic()

    def stop(self) -> None:
        # First stop wins; stream teardown may call it again
        if self.end_time is None:
            self.end_time = time.monotonic()

    def record_first_token(self) -> None:
        if self.first_token_time is None:
            self.first_token_time = time.monotonic()

    def _since_start(self, moment: Optional[float]) -> Optional[int]:
        if self.start_time is None or moment is None:
            return None
        return int((moment - self.start_time) * 1000)

    @property
    def total_ms(self) -> Optional[int]:
        return self._since_start(self.end_time or time.monotonic())

    @property
    def ttft_ms(self) -> Optional[int]:
        return self._since_start(self.first_token_time)
