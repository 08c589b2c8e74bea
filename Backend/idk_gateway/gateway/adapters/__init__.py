"""
AI Gateway Adapters Package.

This module provides adapters for the supported upstream providers.
Each adapter handles the translation between the OpenAI-compatible
canonical format and the provider's native API format.

Available adapters:
- OpenAIAdapter / AzureOpenAIAdapter: OpenAI API (passthrough)
- AnthropicAdapter: Messages API
- GoogleAdapter: Gemini API
- MistralAIAdapter, TogetherAIAdapter, OllamaAdapter, GroqAdapter, ...:
  OpenAI-compatible APIs with their own parameter tables
- AI21Adapter, RekaAIAdapter, TritonAdapter: native request formats

Usage:
    from idk_gateway.gateway.adapters import get_adapter

    adapter = get_adapter("anthropic")
    endpoint = adapter.get_endpoint(provider_ctx)
"""

from typing import Dict, Type

from idk_gateway.gateway.adapters.base import (
    ParameterConfig,
    ProviderAdapter,
    ProviderContext,
    StreamState,
    TransformContext,
)
from idk_gateway.gateway.adapters.ai21 import AI21Adapter
from idk_gateway.gateway.adapters.anthropic import AnthropicAdapter
from idk_gateway.gateway.adapters.anyscale import AnyscaleAdapter
from idk_gateway.gateway.adapters.azure_openai import AzureOpenAIAdapter
from idk_gateway.gateway.adapters.deepbricks import DeepbricksAdapter
from idk_gateway.gateway.adapters.deepinfra import DeepInfraAdapter
from idk_gateway.gateway.adapters.fireworks_ai import FireworksAIAdapter
from idk_gateway.gateway.adapters.google import GoogleAdapter
from idk_gateway.gateway.adapters.groq import GroqAdapter
from idk_gateway.gateway.adapters.mistral_ai import MistralAIAdapter
from idk_gateway.gateway.adapters.ollama import OllamaAdapter
from idk_gateway.gateway.adapters.openai import OpenAIAdapter
from idk_gateway.gateway.adapters.openai_compatible import OpenAICompatibleAdapter
from idk_gateway.gateway.adapters.openrouter import OpenRouterAdapter
from idk_gateway.gateway.adapters.predibase import PredibaseAdapter
from idk_gateway.gateway.adapters.reka_ai import RekaAIAdapter
from idk_gateway.gateway.adapters.siliconflow import SiliconFlowAdapter
from idk_gateway.gateway.adapters.together_ai import TogetherAIAdapter
from idk_gateway.gateway.adapters.triton import TritonAdapter
from idk_gateway.gateway.adapters.upstage import UpstageAdapter
from idk_gateway.gateway.adapters.xai import XAIAdapter
from idk_gateway.gateway.constants import AIProvider


# Registry of available adapters
_ADAPTER_REGISTRY: Dict[str, Type[ProviderAdapter]] = {
    AIProvider.OPENAI.value: OpenAIAdapter,
    AIProvider.AZURE_OPENAI.value: AzureOpenAIAdapter,
    AIProvider.ANTHROPIC.value: AnthropicAdapter,
    AIProvider.GOOGLE.value: GoogleAdapter,
    AIProvider.MISTRAL_AI.value: MistralAIAdapter,
    AIProvider.TOGETHER_AI.value: TogetherAIAdapter,
    AIProvider.OLLAMA.value: OllamaAdapter,
    AIProvider.GROQ.value: GroqAdapter,
    AIProvider.DEEPINFRA.value: DeepInfraAdapter,
    AIProvider.FIREWORKS_AI.value: FireworksAIAdapter,
    AIProvider.OPENROUTER.value: OpenRouterAdapter,
    AIProvider.ANYSCALE.value: AnyscaleAdapter,
    AIProvider.XAI.value: XAIAdapter,
    AIProvider.AI21.value: AI21Adapter,
    AIProvider.REKA_AI.value: RekaAIAdapter,
    AIProvider.DEEPBRICKS.value: DeepbricksAdapter,
    AIProvider.SILICONFLOW.value: SiliconFlowAdapter,
    AIProvider.UPSTAGE.value: UpstageAdapter,
    AIProvider.PREDIBASE.value: PredibaseAdapter,
    AIProvider.TRITON.value: TritonAdapter,
}

# Singleton instances (adapters are stateless)
_ADAPTER_INSTANCES: Dict[str, ProviderAdapter] = {}


def get_adapter(provider: str) -> ProviderAdapter:
    """
    Get an adapter instance by provider id.

    Args:
        provider: One of the registered provider ids

    Returns:
        ProviderAdapter instance

    Raises:
        ValueError: If the provider is not registered
    """
    if provider not in _ADAPTER_REGISTRY:
        raise ValueError(f"Unknown adapter type: {provider}. "
                         f"Available types: {list(_ADAPTER_REGISTRY.keys())}")

    if provider not in _ADAPTER_INSTANCES:
        _ADAPTER_INSTANCES[provider] = _ADAPTER_REGISTRY[provider]()

    return _ADAPTER_INSTANCES[provider]


def register_adapter(provider: str, adapter_class: Type[ProviderAdapter]) -> None:
    """
    Register a new adapter type.

    Args:
        provider: Unique provider id
        adapter_class: ProviderAdapter subclass
    """
    _ADAPTER_REGISTRY[provider] = adapter_class
    # Clear cached instance if exists
    if provider in _ADAPTER_INSTANCES:
        del _ADAPTER_INSTANCES[provider]


def list_adapters() -> Dict[str, Type[ProviderAdapter]]:
    """Get all registered adapters."""
    return _ADAPTER_REGISTRY.copy()


__all__ = [
    # Base classes
    "ParameterConfig",
    "ProviderAdapter",
    "ProviderContext",
    "StreamState",
    "TransformContext",
    # Adapters
    "AI21Adapter",
    "AnthropicAdapter",
    "AnyscaleAdapter",
    "AzureOpenAIAdapter",
    "DeepbricksAdapter",
    "DeepInfraAdapter",
    "FireworksAIAdapter",
    "GoogleAdapter",
    "GroqAdapter",
    "MistralAIAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "OpenRouterAdapter",
    "PredibaseAdapter",
    "RekaAIAdapter",
    "SiliconFlowAdapter",
    "TogetherAIAdapter",
    "TritonAdapter",
    "UpstageAdapter",
    "XAIAdapter",
    # Factory functions
    "get_adapter",
    "register_adapter",
    "list_adapters",
]
