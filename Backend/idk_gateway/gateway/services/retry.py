"""
Upstream call with timeout and retries.

One target attempt may send the same request several times. A response is
retried when its status is in the target's retry codes, up to the target's
attempt budget. Between attempts the policy waits either the provider's
retry-after hint (429 only, when the target opts in) or an exponential
backoff.

Transport failures are folded into the same flow: any timeout (connect
timeouts included) behaves like a 408 and an unreachable host like a 503,
so both can be retried and both surface as GatewayErrors once retries are
exhausted.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple

import httpx
import structlog

from idk_gateway.core.config import settings
from idk_gateway.gateway.constants import (
    MAX_RETRY_LIMIT_MS,
    REQUEST_TIMEOUT_STATUS_CODE,
    RETRY_AFTER_HEADERS,
    RETRY_STATUS_CODES,
)
from idk_gateway.gateway.errors import GatewayError, GatewayTimeoutError, UpstreamProviderError
from idk_gateway.gateway.routing.config import Target

logger = structlog.get_logger(__name__)

UNREACHABLE_STATUS_CODE = 503

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for one target."""

    attempts: int = 0
    on_status_codes: Tuple[int, ...] = RETRY_STATUS_CODES
    use_retry_after_header: bool = False
    backoff_base_ms: int = 500
    max_retry_limit_ms: int = MAX_RETRY_LIMIT_MS

    @classmethod
    def for_target(cls, target: Target) -> "RetryPolicy":
        """Policy from the target's retry block, capped by gateway settings."""
        retry = target.retry
        return cls(
            attempts=min(retry.attempts, settings.gateway.max_retry_attempts),
            on_status_codes=tuple(retry.on_status_codes or settings.gateway.retry_status_codes_list),
            use_retry_after_header=retry.use_retry_after_header,
            backoff_base_ms=settings.gateway.retry_backoff_base_ms,
            max_retry_limit_ms=settings.gateway.max_retry_limit_ms,
        )

    def backoff_ms(self, attempt: int) -> int:
        return min(self.backoff_base_ms * 2 ** attempt, self.max_retry_limit_ms)


@dataclass
class RetryOutcome:
    """
    Result of a retried upstream call.

    Exactly one of `response` and `error` is set. `attempt` counts the
    retries performed (0 when the first call was final).
    """

    response: Optional[httpx.Response] = None
    error: Optional[GatewayError] = None
    attempt: int = 0
    # A provider retry-after hint ended the retries early
    retry_skipped: bool = False
    started_at: float = field(default_factory=time.time)


def retry_after_ms(headers: httpx.Headers) -> Optional[int]:
    """
    Provider retry hint in milliseconds.

    Headers are checked in order; only `retry-after` is in seconds.
    Unparseable or non-positive values count as no hint.
    """
    for header in RETRY_AFTER_HEADERS:
        raw = headers.get(header)
        if not raw:
            continue
        try:
            value = int(raw.strip())
        except ValueError:
            return None
        if header == "retry-after":
            value *= 1000
        return value if value > 0 else None
    return None


async def send_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    policy: RetryPolicy,
    timeout_ms: int,
    provider: str,
    stream: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> RetryOutcome:
    """
    Send a request, retrying per policy.

    Args:
        client: Shared HTTP client
        request: Built request (its timeout extension is already set)
        policy: Target retry policy
        timeout_ms: Per-call timeout, for the timeout error message
        provider: Provider id, for errors and logs
        stream: Leave the final response body unread
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        RetryOutcome with the final response or the final transport error
    """
    outcome = RetryOutcome()
    remaining_retry_ms = policy.max_retry_limit_ms

    while True:
        response: Optional[httpx.Response] = None
        error: Optional[GatewayError] = None
        try:
            response = await client.send(request, stream=stream)
            status = response.status_code
        except httpx.TimeoutException:
            error = GatewayTimeoutError(timeout_ms, provider=provider)
            status = REQUEST_TIMEOUT_STATUS_CODE
        except httpx.TransportError as e:
            error = unreachable_error(provider, e)
            status = UNREACHABLE_STATUS_CODE

        if status not in policy.on_status_codes or outcome.attempt >= policy.attempts:
            break

        delay_ms = policy.backoff_ms(outcome.attempt)
        if response is not None and status == 429 and policy.use_retry_after_header:
            hint = retry_after_ms(response.headers)
            if hint is not None:
                if hint >= MAX_RETRY_LIMIT_MS or hint > remaining_retry_ms:
                    outcome.retry_skipped = True
                    break
                remaining_retry_ms -= hint
                delay_ms = hint

        if response is not None:
            await response.aclose()
        logger.warning(
            "Retrying upstream request",
            provider=provider,
            status=status,
            attempt=outcome.attempt + 1,
            delay_ms=delay_ms,
        )
        await sleep(delay_ms / 1000)
        outcome.attempt += 1

    if error is not None:
        error.retry_attempt = outcome.attempt
        outcome.error = error
    else:
        outcome.response = response
    return outcome


def unreachable_error(provider: str, exc: Exception) -> UpstreamProviderError:
    """503 error for an upstream that could not be reached or dropped the connection."""
    message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    return UpstreamProviderError(
        UNREACHABLE_STATUS_CODE,
        message,
        provider=provider,
        status_text="Service Unavailable",
    )
