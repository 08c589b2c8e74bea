"""
Non-streaming response handling.

Reads the upstream body, decodes it, and runs the provider's response
transform. Proxy calls skip the transform: their bodies go back as sent.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

from idk_gateway.gateway.adapters.base import ProviderAdapter, TransformContext, is_success_status
from idk_gateway.gateway.constants import HOP_BY_HOP_RESPONSE_HEADERS, FunctionName
from idk_gateway.gateway.errors import is_error_response

logger = structlog.get_logger(__name__)


@dataclass
class HandledResponse:
    """Upstream response after transformation."""

    status_code: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)
    raw_body: Optional[str] = None
    content_type: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return not is_success_status(self.status_code) or is_error_response(self.body)


def forwardable_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Upstream headers minus the ones the gateway recomputes."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in HOP_BY_HOP_RESPONSE_HEADERS
    }


async def read_body(response: httpx.Response) -> Tuple[Any, str]:
    """
    Read and decode an upstream body.

    Returns:
        Tuple of (decoded JSON or the text itself, raw text)
    """
    raw = (await response.aread()).decode("utf-8", errors="replace")
    if not raw.strip():
        return None, raw
    try:
        return json.loads(raw), raw
    except ValueError:
        return raw, raw


async def handle_response(
    adapter: ProviderAdapter,
    response: httpx.Response,
    ctx: TransformContext,
) -> HandledResponse:
    """
    Canonical response for a complete upstream response.

    Args:
        adapter: Adapter of the provider that answered
        response: Upstream response (body may be unread)
        ctx: Transform context for the request

    Returns:
        HandledResponse with the canonical body or the canonical error
    """
    try:
        body, raw = await read_body(response)
    finally:
        await response.aclose()

    status = response.status_code
    if ctx.function_name == FunctionName.PROXY:
        transformed = body
    else:
        transformed = adapter.transform_response(body, status, ctx)

    if not is_success_status(status):
        logger.info(
            "Upstream returned an error",
            provider=adapter.PROVIDER,
            function_name=ctx.function_name.value,
            status=status,
        )

    return HandledResponse(
        status_code=status,
        body=transformed,
        headers=forwardable_headers(response.headers),
        raw_body=raw,
        content_type=response.headers.get("content-type"),
    )
