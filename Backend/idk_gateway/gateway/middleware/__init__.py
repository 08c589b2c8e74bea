"""
Gateway Middleware Package.

- Host Guard: validation of target custom hosts
- Tracing: request/trace ids and upstream call timing

Usage:
    from idk_gateway.gateway.middleware import bind_trace, validate_custom_host
"""

from idk_gateway.gateway.middleware.host_guard import (
    HostGuard,
    get_host_guard,
    validate_custom_host,
)
from idk_gateway.gateway.middleware.trace import (
    RequestTimer,
    TraceIds,
    bind_trace,
    get_request_id,
    get_trace_id,
)

__all__ = [
    # Host validation
    "HostGuard",
    "get_host_guard",
    "validate_custom_host",
    # Tracing
    "RequestTimer",
    "TraceIds",
    "bind_trace",
    "get_request_id",
    "get_trace_id",
]
