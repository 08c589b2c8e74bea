"""
Gateway Routing Package.

Routing config parsing and target selection:
- `x-idk-config` header models and redaction
- Single, fallback, load-balanced and conditional strategies

Usage:
    from idk_gateway.gateway.routing import RoutingEngine, RoutingContext, parse_config_header

    config = parse_config_header(request.headers["x-idk-config"])
    plan = RoutingEngine().plan(config, RoutingContext(metadata=config.metadata, params=body))
"""

from idk_gateway.gateway.routing.config import (
    AzureOpenAIConfig,
    Condition,
    GatewayConfig,
    RetrySettings,
    Strategy,
    Target,
    TargetConfiguration,
    parse_config_header,
    redact,
    single_target_config,
)
from idk_gateway.gateway.routing.engine import (
    ConditionalRouter,
    RoutingContext,
    RoutingEngine,
    SelectedTarget,
)

__all__ = [
    "AzureOpenAIConfig",
    "Condition",
    "GatewayConfig",
    "RetrySettings",
    "Strategy",
    "Target",
    "TargetConfiguration",
    "parse_config_header",
    "redact",
    "single_target_config",
    "ConditionalRouter",
    "RoutingContext",
    "RoutingEngine",
    "SelectedTarget",
]
