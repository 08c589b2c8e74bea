"""
Azure OpenAI Adapter.

Azure serves the OpenAI wire format from a per-resource origin. The
target's `azure_openai_config.url` is that origin, and authentication uses
the `api-key` header instead of a bearer token.
"""

from typing import Dict
from urllib.parse import parse_qsl, urlencode, urlsplit

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderContext,
    extend_config,
)
from idk_gateway.gateway.adapters.openai import (
    OPENAI_CHAT_COMPLETE_CONFIG,
    RESPONSE_LOOKUP_FUNCTIONS,
    OpenAIAdapter,
)
from idk_gateway.gateway.adapters.openai_compatible import (
    complete_params,
    create_model_response_params,
    embed_params,
    image_generate_params,
)
from idk_gateway.gateway.constants import AIProvider, FunctionName
from idk_gateway.gateway.errors import InvalidHostConfiguration
from idk_gateway.gateway.middleware.host_guard import validate_custom_host
from idk_gateway.gateway.routing.config import Target


# The deployment decides the model, so none is required
AZURE_CHAT_COMPLETE_CONFIG = extend_config(
    OPENAI_CHAT_COMPLETE_CONFIG,
    {"model": ParameterConfig("model")},
)


class AzureOpenAIAdapter(OpenAIAdapter):
    """Adapter for Azure OpenAI resources (v1 API surface)."""

    PROVIDER = AIProvider.AZURE_OPENAI.value
    BASE_URL = ""

    ENDPOINTS = {
        FunctionName.CHAT_COMPLETE: "/openai/v1/chat/completions",
        FunctionName.COMPLETE: "/openai/v1/completions",
        FunctionName.EMBED: "/openai/v1/models/embeddings",
        FunctionName.GENERATE_IMAGE: "/openai/v1/images/generations",
        FunctionName.CREATE_MODEL_RESPONSE: "/openai/v1/responses",
        FunctionName.GET_MODEL_RESPONSE: "/openai/v1/responses",
        FunctionName.DELETE_MODEL_RESPONSE: "/openai/v1/responses",
        FunctionName.LIST_RESPONSE_INPUT_ITEMS: "/openai/v1/responses",
    }

    FUNCTION_CONFIGS = {
        FunctionName.CHAT_COMPLETE: AZURE_CHAT_COMPLETE_CONFIG,
        FunctionName.COMPLETE: complete_params(extra={"model": ParameterConfig("model")}),
        FunctionName.EMBED: embed_params(extra={"model": ParameterConfig("model")}),
        FunctionName.GENERATE_IMAGE: image_generate_params(extra={"model": ParameterConfig("model")}),
        FunctionName.CREATE_MODEL_RESPONSE: create_model_response_params(),
    }

    CUSTOM_FIELDS_SCHEMA = {
        "azure_openai_config": {
            "type": "object",
            "required": True,
            "description": "Resource origin, e.g. {\"url\": \"https://my-resource.openai.azure.com\"}",
        },
        "azure_api_version": {"type": "string", "description": "Appended as ?api-version= when set"},
        "openai_beta": {"type": "string", "description": "OpenAI-Beta header"},
    }

    def default_base_url(self, ctx: ProviderContext) -> str:
        """
        Resource origin from `azure_openai_config`.

        Raises:
            InvalidHostConfiguration: If the target has no Azure config
        """
        config = ctx.target.azure_openai_config
        if config is None or not config.url:
            raise InvalidHostConfiguration(
                "`azure_openai_config` is required in target", provider=self.PROVIDER
            )
        return validate_custom_host(config.url, provider=self.PROVIDER)

    def get_endpoint(self, ctx: ProviderContext) -> str:
        if ctx.function_name in RESPONSE_LOOKUP_FUNCTIONS:
            path = "/openai/v1" + urlsplit(ctx.request_data.url).path[len("/v1"):]
            query = dict(parse_qsl(urlsplit(ctx.request_data.url).query))
            if ctx.target.azure_api_version:
                query["api-version"] = ctx.target.azure_api_version
            return f"{path}{'?' + urlencode(query) if query else ''}"
        endpoint = super(OpenAIAdapter, self).get_endpoint(ctx)
        if endpoint and ctx.target.azure_api_version:
            endpoint = f"{endpoint}?api-version={ctx.target.azure_api_version}"
        return endpoint

    def auth_headers(self, api_key: str, ctx: ProviderContext) -> Dict[str, str]:
        headers = {"api-key": api_key}
        if ctx.target.openai_beta:
            headers["OpenAI-Beta"] = ctx.target.openai_beta
        return headers

    def get_proxy_endpoint(self, path: str, query: str, target: Target) -> str:
        """Proxy path, adding `api-version` when the caller did not send one."""
        version = target.azure_api_version
        if version and "api-version" not in query:
            query = f"{query}&api-version={version}" if query else f"api-version={version}"
        return f"{path}{'?' + query if query else ''}"
