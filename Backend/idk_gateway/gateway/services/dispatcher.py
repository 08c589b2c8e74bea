"""
Gateway Dispatcher.

Runs one canonical request through the routing plan:

    Received -> Validated -> Built -> Sent -> {Transformed, StreamOpened}
             -> Logged -> {Completed, Failed}

Per target attempt the dispatcher merges target defaults and config
overrides into the body, builds the provider body from the adapter's
parameter table, resolves URL and headers, sends with retries, and hands
the response to the response or stream handler. Every attempt that
reaches a provider is logged through the storage connector.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx
import structlog

from idk_gateway.core.config import settings
from idk_gateway.gateway.adapters import get_adapter
from idk_gateway.gateway.adapters.base import ProviderAdapter, ProviderContext, TransformContext, is_success_status
from idk_gateway.gateway.constants import (
    MAX_COMPLETION_TOKENS_MODELS,
    UNSUPPORTED_REASONING_MODELS,
    UNSUPPORTED_TEMPERATURE_MODELS,
    UNSUPPORTED_TOP_P_MODELS,
    FunctionName,
    StrategyMode,
)
from idk_gateway.gateway.errors import (
    GatewayError,
    GatewayTimeoutError,
    InvalidProviderResponse,
    UnsupportedFunction,
    UpstreamProviderError,
    ValidationError,
)
from idk_gateway.gateway.middleware.trace import RequestTimer, get_request_id
from idk_gateway.gateway.routing import GatewayConfig, RoutingContext, RoutingEngine, SelectedTarget, Target
from idk_gateway.gateway.routing.config import TargetConfiguration
from idk_gateway.gateway.schemas import RequestData, validate_request_body
from idk_gateway.gateway.services.request_builder import build_provider_request
from idk_gateway.gateway.services.request_log import (
    AIProviderRequestLog,
    LoggingStorageConnector,
    UserDataStorageConnector,
)
from idk_gateway.gateway.services.response_handler import forwardable_headers, handle_response
from idk_gateway.gateway.services.retry import RetryPolicy, send_with_retry
from idk_gateway.gateway.services.stream_handler import StreamHandler, StreamSummary

logger = structlog.get_logger(__name__)

BODYLESS_METHODS = ("GET", "DELETE")

SYSTEM_PROMPT_FUNCTIONS = frozenset({
    FunctionName.CHAT_COMPLETE,
    FunctionName.STREAM_CHAT_COMPLETE,
    FunctionName.CREATE_MODEL_RESPONSE,
})

# Failures after which a fallback strategy moves on to the next target
FALLBACK_ERRORS = (UpstreamProviderError, GatewayTimeoutError, InvalidProviderResponse)


@dataclass
class DispatchResult:
    """
    Outcome of a dispatched request.

    `body` is set for complete responses; `stream` for streams, which the
    caller must iterate (or close) to release the upstream connection.
    """

    status_code: int
    provider: str
    target_index: int = 0
    retry_attempt: int = 0
    body: Any = None
    stream: Optional[AsyncIterator[str]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    _response: Optional[httpx.Response] = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None

    async def aclose(self) -> None:
        """Release an unconsumed stream."""
        if self._response is not None:
            await self._response.aclose()


# ============================================================================
# Request preparation
# ============================================================================


def hyperparameter_defaults(function_name: FunctionName, configuration: TargetConfiguration) -> Dict[str, Any]:
    """
    Body fields a target configuration imposes on every request.

    Sampling fields are skipped for models that reject them, and
    `max_tokens` becomes `max_completion_tokens` for models that need it.
    """
    model = configuration.model
    defaults: Dict[str, Any] = dict(configuration.additional_params)
    if model:
        defaults["model"] = model

    if configuration.temperature is not None and model not in UNSUPPORTED_TEMPERATURE_MODELS:
        defaults["temperature"] = configuration.temperature
    if configuration.max_tokens is not None:
        if model in MAX_COMPLETION_TOKENS_MODELS:
            defaults["max_completion_tokens"] = configuration.max_tokens
        else:
            defaults["max_tokens"] = configuration.max_tokens
    if configuration.top_p is not None and model not in UNSUPPORTED_TOP_P_MODELS:
        defaults["top_p"] = configuration.top_p
    if configuration.frequency_penalty is not None:
        defaults["frequency_penalty"] = configuration.frequency_penalty
    if configuration.presence_penalty is not None:
        defaults["presence_penalty"] = configuration.presence_penalty
    if configuration.stop is not None:
        defaults["stop"] = configuration.stop
    if configuration.seed is not None:
        defaults["seed"] = configuration.seed

    if configuration.reasoning_effort is not None and model not in UNSUPPORTED_REASONING_MODELS:
        if function_name in (FunctionName.CHAT_COMPLETE, FunctionName.STREAM_CHAT_COMPLETE):
            defaults["reasoning_effort"] = configuration.reasoning_effort
        elif function_name == FunctionName.CREATE_MODEL_RESPONSE:
            defaults["reasoning"] = {"effort": configuration.reasoning_effort}

    return defaults


def _with_system_message(messages: List[Dict[str, Any]], system_prompt: str) -> List[Dict[str, Any]]:
    system_message = {"role": "system", "content": system_prompt}
    messages = list(messages)
    for index, message in enumerate(messages):
        if isinstance(message, dict) and message.get("role") == "system":
            messages[index] = system_message
            return messages
    return [system_message] + messages


def merge_hyperparameters(
    function_name: FunctionName,
    request_body: Dict[str, Any],
    target: Target,
    override_params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Merge request body, target defaults and config overrides, in that order.

    A target `system_prompt` replaces the first system message (or is
    prepended) for chat and responses requests. The input body is not
    mutated.
    """
    merged = copy.deepcopy(request_body)
    merged.update(hyperparameter_defaults(function_name, target.configuration))
    merged.update(copy.deepcopy(override_params or {}))

    system_prompt = target.configuration.system_prompt
    if system_prompt and function_name in SYSTEM_PROMPT_FUNCTIONS:
        if function_name == FunctionName.CREATE_MODEL_RESPONSE:
            items = merged.get("input")
            if not isinstance(items, list):
                items = [{"role": "user", "content": items}]
            merged["input"] = _with_system_message(items, system_prompt)
        else:
            merged["messages"] = _with_system_message(merged.get("messages") or [], system_prompt)
    return merged


def proxy_path(url: str) -> Tuple[str, str]:
    """Provider path and query behind a `/v1/proxy/...` (or `/v1/...`) URL."""
    parts = urlsplit(url)
    path = parts.path
    prefix = "/v1/proxy" if "/v1/proxy" in path else "/v1"
    return path.replace(prefix, "", 1), parts.query


def resolve_timeout_ms(target: Target, config: GatewayConfig) -> int:
    return target.request_timeout or config.request_timeout or settings.gateway.default_timeout_ms


def forwarded_headers(target: Target, config: GatewayConfig, request_headers: Dict[str, str]) -> Dict[str, str]:
    """Client headers the target or config asks to pass upstream."""
    names = target.forward_headers or config.forward_headers
    lowered = {key.lower(): value for key, value in request_headers.items()}
    return {name: lowered[name.lower()] for name in names if name.lower() in lowered}


# ============================================================================
# Dispatcher
# ============================================================================


class Dispatcher:
    """
    Sends canonical requests to providers.

    Usage:
        dispatcher = Dispatcher(client)
        result = await dispatcher.dispatch(config, request_data)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        storage: Optional[UserDataStorageConnector] = None,
        engine: Optional[RoutingEngine] = None,
    ):
        self.client = client
        self.storage = storage or LoggingStorageConnector()
        self.engine = engine or RoutingEngine()

    async def dispatch(self, config: GatewayConfig, request_data: RequestData) -> DispatchResult:
        """
        Dispatch a request according to the config's strategy.

        Raises:
            ValidationError: If the body is invalid or a target cannot serve it
            RouterError: If the strategy selects no target
            UpstreamProviderError: If the last tried target failed upstream
            GatewayTimeoutError: If the last tried target timed out
        """
        request_id = get_request_id()
        log = logger.bind(request_id=request_id, function_name=request_data.function_name.value)
        log.debug("Request received", strategy=config.strategy.mode.value)

        validate_request_body(request_data.function_name, request_data.request_body)
        log.debug("Request validated")

        plan = self.engine.plan(
            config,
            RoutingContext(metadata=config.metadata, params=request_data.request_body),
        )

        for position, selected in enumerate(plan):
            is_last = position == len(plan) - 1
            try:
                result = await self._try_target(config, selected, request_data)
            except FALLBACK_ERRORS as e:
                if is_last or config.strategy.mode != StrategyMode.FALLBACK:
                    log.info("Request failed", status=e.status_code, target_index=selected.index)
                    raise
                log.info("Falling back to next target", status=e.status_code, target_index=selected.index)
                continue

            if not is_last and result.status_code in self._fallback_codes(config, selected.target):
                log.info("Falling back to next target", status=result.status_code, target_index=selected.index)
                await result.aclose()
                continue

            log.debug("Request completed", status=result.status_code, target_index=selected.index)
            return result

        raise GatewayError("Routing plan selected no target")

    @staticmethod
    def _fallback_codes(config: GatewayConfig, target: Target) -> List[int]:
        if config.strategy.mode != StrategyMode.FALLBACK:
            return []
        return target.on_status_codes or config.strategy.on_status_codes or []

    @staticmethod
    def _adapter(provider: str) -> ProviderAdapter:
        try:
            return get_adapter(provider)
        except ValueError:
            raise ValidationError(f"Invalid provider: {provider}", provider=provider, param="provider")

    async def _try_target(
        self,
        config: GatewayConfig,
        selected: SelectedTarget,
        request_data: RequestData,
    ) -> DispatchResult:
        target = selected.target
        provider = target.provider
        adapter = self._adapter(provider)
        function_name = request_data.function_name
        log = logger.bind(
            request_id=get_request_id(),
            provider=provider,
            function_name=function_name.value,
            target_index=selected.index,
        )

        if not adapter.supports(function_name):
            raise UnsupportedFunction(function_name.value, provider=provider)

        # Built
        if function_name == FunctionName.PROXY:
            body = dict(request_data.request_body)
        else:
            body = merge_hyperparameters(function_name, request_data.request_body, target, config.override_params)
        data = replace(request_data, request_body=body)

        table = adapter.get_function_config(function_name)
        if table is None or request_data.method in BODYLESS_METHODS or function_name == FunctionName.PROXY:
            provider_body = dict(body)
        else:
            provider_body = build_provider_request(table, body, provider, target)

        ctx = ProviderContext(target=target, request_data=data, provider_body=provider_body)
        base_url = adapter.get_base_url(ctx)
        if function_name == FunctionName.PROXY:
            path, query = proxy_path(data.url)
            endpoint = adapter.get_proxy_endpoint(path, query, target)
        else:
            endpoint = adapter.get_endpoint(ctx)
            if not endpoint:
                raise UnsupportedFunction(function_name.value, provider=provider)
        url = f"{base_url}{endpoint}"

        headers = adapter.headers(ctx)
        headers.update(forwarded_headers(target, config, data.request_headers))
        provider_body = adapter.finalize_request_body(provider_body, ctx)
        log.debug("Request built", url=url)

        # Sent
        timeout_ms = resolve_timeout_ms(target, config)
        timeout = httpx.Timeout(
            timeout_ms / 1000,
            connect=min(settings.gateway.connect_timeout_ms, timeout_ms) / 1000,
        )
        method = data.method.upper()
        send_body = method not in BODYLESS_METHODS and (provider_body or function_name != FunctionName.PROXY)
        upstream_request = self.client.build_request(
            method,
            url,
            headers=headers,
            json=provider_body if send_body else None,
            timeout=timeout,
        )

        timer = RequestTimer()
        timer.start()
        outcome = await send_with_retry(
            self.client,
            upstream_request,
            RetryPolicy.for_target(target),
            timeout_ms,
            provider,
            stream=data.stream,
        )
        log.debug("Request sent", attempt=outcome.attempt)

        log_entry = AIProviderRequestLog(
            provider=provider,
            function_name=function_name.value,
            method=method,
            request_url=url,
            status=0,
            request_body=provider_body,
            raw_request_body=upstream_request.content.decode("utf-8", errors="replace") or None,
            target_index=selected.index,
            retry_attempt=outcome.attempt,
            stream=data.stream,
            request_id=get_request_id(),
            config=config.redacted(),
        )

        if outcome.error is not None:
            timer.stop()
            await self._write_log(replace(
                log_entry,
                status=outcome.error.status_code,
                response_body=outcome.error.to_error_body(),
                latency_ms=timer.total_ms,
            ))
            raise outcome.error

        response = outcome.response
        strict = config.strict_open_ai_compliance
        if "strict_open_ai_compliance" not in config.model_fields_set:
            strict = settings.gateway.strict_open_ai_compliance
        transform_ctx = TransformContext(
            provider=provider,
            function_name=function_name,
            request_data=data,
            response_headers=dict(response.headers),
            strict_compliance=strict,
        )

        # StreamOpened
        if data.stream and is_success_status(response.status_code):
            first_token_ms: Optional[int] = None

            def on_first_chunk() -> None:
                nonlocal first_token_ms
                first_token_ms = timer.ttft_ms
                log.debug("First chunk received", first_token_ms=first_token_ms)

            async def on_end(summary: StreamSummary) -> None:
                await self._write_log(replace(
                    log_entry,
                    status=response.status_code if summary.error is None else summary.error.status_code,
                    response_body=summary.response_body,
                    latency_ms=timer.total_ms,
                    first_token_ms=first_token_ms,
                ))

            handler = StreamHandler(
                adapter,
                response,
                transform_ctx,
                timer=timer,
                on_first_chunk=on_first_chunk,
                on_end=on_end,
                timeout_ms=timeout_ms,
            )
            await self._write_log(replace(log_entry, status=response.status_code, is_placeholder=True))
            log.debug("Stream opened", status=response.status_code)
            return DispatchResult(
                status_code=response.status_code,
                provider=provider,
                target_index=selected.index,
                retry_attempt=outcome.attempt,
                stream=handler.stream(),
                headers=forwardable_headers(response.headers),
                content_type="text/event-stream",
                _response=response,
            )

        # Transformed
        handled = await handle_response(adapter, response, transform_ctx)
        timer.stop()
        await self._write_log(replace(
            log_entry,
            status=handled.status_code,
            response_body=handled.body,
            raw_response_body=handled.raw_body,
            latency_ms=timer.total_ms,
        ))

        if handled.is_error and function_name != FunctionName.PROXY:
            status_code = handled.status_code if not is_success_status(handled.status_code) else 502
            error = UpstreamProviderError(
                status_code,
                handled.body,
                provider=provider,
                status_text=response.reason_phrase,
            )
            error.retry_attempt = outcome.attempt
            raise error

        return DispatchResult(
            status_code=handled.status_code,
            provider=provider,
            target_index=selected.index,
            retry_attempt=outcome.attempt,
            body=handled.body,
            headers=handled.headers,
            content_type=handled.content_type,
        )

    async def _write_log(self, entry: AIProviderRequestLog) -> None:
        try:
            await self.storage.create_log_output(entry)
        except Exception as e:
            # Storage failures never fail the request
            logger.error("Failed to write request log", error=str(e), provider=entry.provider)
