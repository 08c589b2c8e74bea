"""
Gateway Data Plane Router.

This module implements the OpenAI-compatible API endpoints of the gateway.
Each endpoint resolves the routing config, wraps the body in a canonical
request and hands it to the dispatcher.

Endpoints:
- POST /v1/chat/completions - Chat completions (streaming supported)
- POST /v1/completions - Legacy text completions (streaming supported)
- POST /v1/embeddings - Vector embeddings
- POST /v1/images/generations - Image generation
- POST /v1/responses - Create a model response
- GET /v1/responses/{response_id} - Retrieve a model response
- DELETE /v1/responses/{response_id} - Delete a model response
- GET /v1/responses/{response_id}/input_items - List response input items
- GET /v1/providers - Registered providers and their capabilities
- /v1/proxy/{path} - Raw passthrough to the selected provider
- GET /health - Liveness check
"""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from idk_gateway.core.config import settings
from idk_gateway.gateway.adapters import get_adapter, list_adapters
from idk_gateway.gateway.constants import FunctionName
from idk_gateway.gateway.errors import RouterError, ValidationError
from idk_gateway.gateway.routing import GatewayConfig, parse_config_header, single_target_config
from idk_gateway.gateway.schemas import RequestData
from idk_gateway.gateway.services.dispatcher import DispatchResult, Dispatcher

router = APIRouter(prefix="/v1", tags=["gateway"])
health_router = APIRouter(tags=["health"])

PROVIDER_HEADER = "x-idk-provider"

STREAM_VARIANTS = {
    FunctionName.CHAT_COMPLETE: FunctionName.STREAM_CHAT_COMPLETE,
    FunctionName.COMPLETE: FunctionName.STREAM_COMPLETE,
}


# =============================================================================
# Dependencies
# =============================================================================

def get_dispatcher(request: Request) -> Dispatcher:
    """Dispatcher created in the app lifespan."""
    return request.app.state.dispatcher


def get_gateway_config(request: Request) -> GatewayConfig:
    """
    Routing config for the request.

    The JSON config header wins; otherwise a single target is built from
    the provider header (or the configured default provider) and the
    bearer key.

    Raises:
        RouterError: If neither a config nor a provider is available
    """
    raw = request.headers.get(settings.gateway.config_header)
    if raw:
        return parse_config_header(raw)

    provider = request.headers.get(PROVIDER_HEADER) or settings.gateway.default_provider
    if not provider:
        raise RouterError(
            f"Missing routing config: send the {settings.gateway.config_header} header "
            f"or the {PROVIDER_HEADER} header"
        )
    return single_target_config(provider, _bearer_token(request.headers.get("authorization")))


# =============================================================================
# Helper Functions
# =============================================================================

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def read_json_body(request: Request) -> Dict[str, Any]:
    """
    Decode the request body.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def dispatch_headers(result: DispatchResult) -> Dict[str, str]:
    return {
        "x-idk-provider": result.provider,
        "x-idk-target-index": str(result.target_index),
        "x-idk-retry-attempt": str(result.retry_attempt),
    }


def build_response(result: DispatchResult, passthrough: bool = False) -> Response:
    """HTTP response for a dispatch result."""
    headers = dispatch_headers(result)

    if result.is_stream:
        headers.update({"Cache-Control": "no-cache", "Connection": "keep-alive"})
        return StreamingResponse(
            result.stream,
            status_code=result.status_code,
            media_type=result.content_type or "text/event-stream",
            headers=headers,
        )

    upstream_headers = dict(result.headers)
    if not passthrough:
        upstream_headers = {k: v for k, v in upstream_headers.items() if k.lower() != "content-type"}
    headers = {**upstream_headers, **headers}

    if isinstance(result.body, (dict, list)):
        return JSONResponse(content=result.body, status_code=result.status_code, headers=headers)
    if result.body is None:
        return Response(status_code=result.status_code, headers=headers)
    return Response(
        content=str(result.body),
        status_code=result.status_code,
        media_type=result.content_type,
        headers=headers,
    )


async def run_function(
    request: Request,
    function_name: FunctionName,
    config: GatewayConfig,
    dispatcher: Dispatcher,
) -> Response:
    """Wrap the request as canonical request data and dispatch it."""
    body = await read_json_body(request)
    if body.get("stream") and function_name in STREAM_VARIANTS:
        function_name = STREAM_VARIANTS[function_name]

    request_data = RequestData(
        function_name=function_name,
        method=request.method,
        url=str(request.url),
        request_body=body,
        request_headers=dict(request.headers),
    )
    result = await dispatcher.dispatch(config, request_data)
    return build_response(result, passthrough=function_name == FunctionName.PROXY)


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/chat/completions")
async def chat_completions(
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Create a chat completion.

    Compatible with OpenAI's /v1/chat/completions endpoint.
    Supports streaming via SSE when stream=true.
    """
    return await run_function(request, FunctionName.CHAT_COMPLETE, config, dispatcher)


@router.post("/completions")
async def completions(
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Create a text completion."""
    return await run_function(request, FunctionName.COMPLETE, config, dispatcher)


@router.post("/embeddings")
async def embeddings(
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Create embeddings for text input.

    Compatible with OpenAI's /v1/embeddings endpoint.
    """
    return await run_function(request, FunctionName.EMBED, config, dispatcher)


@router.post("/images/generations")
async def images_generations(
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Create images from a text prompt."""
    return await run_function(request, FunctionName.GENERATE_IMAGE, config, dispatcher)


@router.post("/responses")
async def create_response(
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Create a model response (Responses API)."""
    return await run_function(request, FunctionName.CREATE_MODEL_RESPONSE, config, dispatcher)


@router.get("/responses/{response_id}")
async def get_response(
    response_id: str,
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await run_function(request, FunctionName.GET_MODEL_RESPONSE, config, dispatcher)


@router.delete("/responses/{response_id}")
async def delete_response(
    response_id: str,
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await run_function(request, FunctionName.DELETE_MODEL_RESPONSE, config, dispatcher)


@router.get("/responses/{response_id}/input_items")
async def list_response_input_items(
    response_id: str,
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await run_function(request, FunctionName.LIST_RESPONSE_INPUT_ITEMS, config, dispatcher)


@router.get("/providers")
async def list_providers():
    """Registered providers with their functions and custom target fields."""
    return {
        "object": "list",
        "data": [get_adapter(provider).describe() for provider in sorted(list_adapters())],
    }


@router.api_route("/proxy/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy(
    path: str,
    request: Request,
    config: GatewayConfig = Depends(get_gateway_config),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Forward a request to the selected provider unchanged.

    The path after /v1/proxy is appended to the provider's base URL.
    """
    return await run_function(request, FunctionName.PROXY, config, dispatcher)


@health_router.get("/health")
async def health():
    return {"status": "ok", "version": settings.app.app_version}
