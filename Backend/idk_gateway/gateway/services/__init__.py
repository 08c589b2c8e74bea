"""
Gateway Services Package.

- Request Builder: canonical body to provider body via parameter tables
- Retry: upstream send loop with timeout and retry-after handling
- Response / Stream handlers: provider responses back to canonical form
- Dispatcher: strategies, request assembly, logging
- Request log: AIProviderRequestLog and storage connectors
"""

from idk_gateway.gateway.services.dispatcher import (
    DispatchResult,
    Dispatcher,
    merge_hyperparameters,
)
from idk_gateway.gateway.services.request_builder import build_provider_request
from idk_gateway.gateway.services.request_log import (
    AIProviderRequestLog,
    InMemoryStorageConnector,
    LoggingStorageConnector,
    UserDataStorageConnector,
)
from idk_gateway.gateway.services.retry import RetryPolicy, send_with_retry
from idk_gateway.gateway.services.stream_handler import StreamHandler

__all__ = [
    "DispatchResult",
    "Dispatcher",
    "merge_hyperparameters",
    "build_provider_request",
    "AIProviderRequestLog",
    "InMemoryStorageConnector",
    "LoggingStorageConnector",
    "UserDataStorageConnector",
    "RetryPolicy",
    "send_with_retry",
    "StreamHandler",
]
