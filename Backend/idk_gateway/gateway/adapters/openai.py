"""
OpenAI Adapter - the reference provider.

The gateway's canonical schema is OpenAI's, so requests are only filtered
through the parameter table and responses are tagged and checked for the
expected success shape. Streams are forwarded as they arrive.
"""

from typing import Any, Dict
from urllib.parse import urlsplit

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderContext,
    ResponseTransform,
    TransformContext,
    function_config,
)
from idk_gateway.gateway.adapters.openai_compatible import (
    OpenAICompatibleAdapter,
    complete_params,
    create_model_response_params,
    embed_params,
    image_generate_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName

# Functions whose endpoint is the incoming path itself (they carry an id)
RESPONSE_LOOKUP_FUNCTIONS = frozenset({
    FunctionName.GET_MODEL_RESPONSE,
    FunctionName.DELETE_MODEL_RESPONSE,
    FunctionName.LIST_RESPONSE_INPUT_ITEMS,
})


OPENAI_CHAT_COMPLETE_CONFIG = function_config({
    "model": ParameterConfig("model", required=True, default="gpt-3.5-turbo"),
    "messages": ParameterConfig("messages", default=""),
    "functions": ParameterConfig("functions"),
    "function_call": ParameterConfig("function_call"),
    "max_tokens": ParameterConfig("max_tokens", default=100, min=0),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", default=1, min=0, max=1),
    "n": ParameterConfig("n", default=1),
    "stream": ParameterConfig("stream", default=False),
    "stop": ParameterConfig("stop"),
    "presence_penalty": ParameterConfig("presence_penalty", min=-2, max=2),
    "frequency_penalty": ParameterConfig("frequency_penalty", min=-2, max=2),
    "logit_bias": ParameterConfig("logit_bias"),
    "user": ParameterConfig("user"),
    "seed": ParameterConfig("seed"),
    "tools": ParameterConfig("tools"),
    "tool_choice": ParameterConfig("tool_choice"),
    "response_format": ParameterConfig("response_format"),
    "logprobs": ParameterConfig("logprobs", default=False),
    "top_logprobs": ParameterConfig("top_logprobs"),
    "stream_options": ParameterConfig("stream_options"),
    "service_tier": ParameterConfig("service_tier"),
    "parallel_tool_calls": ParameterConfig("parallel_tool_calls"),
    "max_completion_tokens": ParameterConfig("max_completion_tokens"),
    "store": ParameterConfig("store"),
    "metadata": ParameterConfig("metadata"),
    "modalities": ParameterConfig("modalities"),
    "audio": ParameterConfig("audio"),
    "prediction": ParameterConfig("prediction"),
    "reasoning_effort": ParameterConfig("reasoning_effort"),
    "web_search_options": ParameterConfig("web_search_options"),
    "verbosity": ParameterConfig("verbosity"),
})


def response_lookup_endpoint(request_url: str, prefix: str = "") -> str:
    """Incoming `/v1/responses/...` path re-rooted under a provider prefix."""
    parts = urlsplit(request_url)
    path = parts.path
    if path.startswith("/v1/"):
        path = path[3:]
    return f"{prefix}{path}{'?' + parts.query if parts.query else ''}"


class OpenAIAdapter(OpenAICompatibleAdapter):
    """
    Adapter for the official OpenAI API.

    Main responsibilities:
    - Bearer, organization, project and beta headers
    - Parameter filtering for chat, completion, embedding, image and
      responses requests
    - Responses API lookups (get, delete, list input items)
    """

    PROVIDER = AIProvider.OPENAI.value
    BASE_URL = "https://api.openai.com/v1"

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/chat/completions",
        FunctionName.COMPLETE: "/completions",
        FunctionName.EMBED: "/embeddings",
        FunctionName.GENERATE_IMAGE: "/images/generations",
        FunctionName.CREATE_MODEL_RESPONSE: "/responses",
        FunctionName.GET_MODEL_RESPONSE: "/responses",
        FunctionName.DELETE_MODEL_RESPONSE: "/responses",
        FunctionName.LIST_RESPONSE_INPUT_ITEMS: "/responses",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: OPENAI_CHAT_COMPLETE_CONFIG,
        FunctionName.COMPLETE: complete_params(defaults={"model": "gpt-3.5-turbo-instruct"}),
        FunctionName.EMBED: embed_params(defaults={"model": "text-embedding-3-small"}),
        FunctionName.GENERATE_IMAGE: image_generate_params(),
        FunctionName.CREATE_MODEL_RESPONSE: create_model_response_params(),
    }

    CUSTOM_FIELDS_SCHEMA = {
        "openai_organization": {"type": "string", "description": "OpenAI-Organization header"},
        "openai_project": {"type": "string", "description": "OpenAI-Project header"},
        "openai_beta": {"type": "string", "description": "OpenAI-Beta header"},
    }

    def response_transforms(self) -> Dict[FunctionName, ResponseTransform]:
        transforms = super().response_transforms()
        for function_name in RESPONSE_LOOKUP_FUNCTIONS:
            transforms[function_name] = self.lookup_response
        return transforms

    def get_endpoint(self, ctx: ProviderContext) -> str:
        if ctx.function_name in RESPONSE_LOOKUP_FUNCTIONS:
            return response_lookup_endpoint(ctx.request_data.url)
        return super().get_endpoint(ctx)

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {api_key}"}
        if ctx.target.openai_organization:
            headers["OpenAI-Organization"] = ctx.target.openai_organization
        if ctx.target.openai_project:
            headers["OpenAI-Project"] = ctx.target.openai_project
        if ctx.target.openai_beta:
            headers["OpenAI-Beta"] = ctx.target.openai_beta
        return headers

    def get_proxy_endpoint(self, path: str, query: str, target: Any) -> str:
        # Base URL already ends in /v1
        if path.startswith("/v1/"):
            path = path[3:]
        return super().get_proxy_endpoint(path, query, target)

    def lookup_response(self, body: Any, status: int, ctx: TransformContext) -> Dict[str, Any]:
        """Responses API get/delete/list results are already canonical."""
        error = self.normalize_error(body, status)
        if error is not None:
            return error
        if not isinstance(body, dict) or "object" not in body:
            return self.openai_response(body, status, ctx)
        return {**body, "provider": self.PROVIDER}
