"""
Streaming response handling.

Splits an upstream SSE body into events, runs each through the provider's
stream transform and re-emits canonical `data: ...` lines. Whatever the
provider sends, the client sees exactly one `data: [DONE]` as the last
event.

Failures after the stream has opened end it with a canonical error event,
still followed by [DONE].

The first-chunk callback fires on the first emitted event. The end callback
fires exactly once when the stream finishes, fails or is abandoned by the
client.
"""

import json
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

import httpx
import structlog

from idk_gateway.core.config import settings
from idk_gateway.gateway.adapters.base import ProviderAdapter, StreamState, TransformContext, fallback_stream_id
from idk_gateway.gateway.constants import SSE_DONE, FunctionName
from idk_gateway.gateway.errors import GatewayError, GatewayTimeoutError, StreamTransformError
from idk_gateway.gateway.middleware.trace import RequestTimer
from idk_gateway.gateway.services.retry import unreachable_error

logger = structlog.get_logger(__name__)

FirstChunkCallback = Callable[[], None]
StreamEndCallback = Callable[["StreamSummary"], Awaitable[None]]


class StreamSummary:
    """What a finished stream produced, for the final request log."""

    def __init__(self, state: StreamState):
        self.state = state
        self.chunks: List[str] = []
        self.error: Optional[GatewayError] = None
        self.completed = False

    @property
    def response_body(self) -> Any:
        return {
            "chunks": len(self.chunks),
            "model": self.state.model,
            "usage": self.state.usage or None,
            "error": self.error.to_error_body() if self.error else None,
        }


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[str]:
    """Group upstream lines into blank-line separated SSE events."""
    buffer: List[str] = []
    async for line in response.aiter_lines():
        if line.strip():
            buffer.append(line)
            continue
        if buffer:
            yield "\n".join(buffer)
            buffer = []
    if buffer:
        yield "\n".join(buffer)


class StreamHandler:
    """
    Transforms one upstream stream.

    Usage:
        handler = StreamHandler(adapter, response, ctx, timer, on_end=write_log)
        return StreamingResponse(handler.stream(), media_type="text/event-stream")
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        response: httpx.Response,
        ctx: TransformContext,
        timer: Optional[RequestTimer] = None,
        on_first_chunk: Optional[FirstChunkCallback] = None,
        on_end: Optional[StreamEndCallback] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.adapter = adapter
        self.response = response
        self.ctx = ctx
        self.timer = timer or RequestTimer()
        self.on_first_chunk = on_first_chunk
        self.on_end = on_end
        self.timeout_ms = timeout_ms or settings.gateway.default_timeout_ms
        self.state = StreamState()
        self.summary = StreamSummary(self.state)
        self._first_chunk_seen = False

    async def stream(self) -> AsyncIterator[str]:
        """Canonical SSE events, ending with one [DONE]."""
        if self.ctx.function_name == FunctionName.PROXY:
            async for event in self._raw():
                yield event
            return

        fallback_id = fallback_stream_id(self.adapter.PROVIDER)
        done_sent = False
        try:
            try:
                async for event in iter_sse_events(self.response):
                    try:
                        output = self.adapter.transform_stream_chunk(event, fallback_id, self.state, self.ctx)
                    except StreamTransformError as e:
                        yield self._fail(e, "Stream transform failed")
                        break
                    if not output:
                        continue

                    before, marker, _ = output.partition(SSE_DONE)
                    if before:
                        yield self._emit(before)
                    if marker:
                        done_sent = True
                        yield self._emit(SSE_DONE)
                        break
            except httpx.TimeoutException:
                error = GatewayTimeoutError(self.timeout_ms, provider=self.adapter.PROVIDER)
                yield self._fail(error, "Upstream stream timed out")
            except httpx.TransportError as e:
                yield self._fail(unreachable_error(self.adapter.PROVIDER, e), "Upstream stream interrupted")

            if not done_sent:
                yield self._emit(SSE_DONE)
            self.summary.completed = self.summary.error is None
        finally:
            await self._finish()

    async def _raw(self) -> AsyncIterator[str]:
        # Proxied bodies are opaque, so a broken upstream just ends the stream
        try:
            try:
                async for text in self.response.aiter_text():
                    if text:
                        yield self._emit(text)
            except httpx.TimeoutException:
                error = GatewayTimeoutError(self.timeout_ms, provider=self.adapter.PROVIDER)
                self._record(error, "Upstream stream timed out")
            except httpx.TransportError as e:
                self._record(unreachable_error(self.adapter.PROVIDER, e), "Upstream stream interrupted")
            self.summary.completed = self.summary.error is None
        finally:
            await self._finish()

    def _record(self, error: GatewayError, event: str) -> None:
        logger.warning(
            event,
            provider=self.adapter.PROVIDER,
            function_name=self.ctx.function_name.value,
            error=error.message,
        )
        self.summary.error = error

    def _fail(self, error: GatewayError, event: str) -> str:
        """Record the error and render it as the stream's error event."""
        self._record(error, event)
        return self._emit(f"data: {json.dumps(error.to_error_body())}\n\n")

    def _emit(self, event: str) -> str:
        if not self._first_chunk_seen:
            self._first_chunk_seen = True
            self.timer.record_first_token()
            if self.on_first_chunk is not None:
                self.on_first_chunk()
        self.summary.chunks.append(event)
        return event

    async def _finish(self) -> None:
        await self.response.aclose()
        self.timer.stop()
        if self.on_end is not None:
            callback, self.on_end = self.on_end, None
            await callback(self.summary)
