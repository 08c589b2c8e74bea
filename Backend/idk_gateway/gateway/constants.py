"""
Gateway-wide constants: provider identifiers, function names and
retry tuning values shared by the adapters and the dispatcher.
"""

from enum import Enum
from typing import FrozenSet, Tuple


class AIProvider(str, Enum):
    """Registered upstream providers."""

    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL_AI = "mistral-ai"
    TOGETHER_AI = "together-ai"
    OLLAMA = "ollama"
    GROQ = "groq"
    DEEPINFRA = "deepinfra"
    FIREWORKS_AI = "fireworks-ai"
    OPENROUTER = "openrouter"
    ANYSCALE = "anyscale"
    XAI = "x-ai"
    AI21 = "ai21"
    REKA_AI = "reka-ai"
    DEEPBRICKS = "deepbricks"
    SILICONFLOW = "siliconflow"
    UPSTAGE = "upstage"
    PREDIBASE = "predibase"
    TRITON = "triton"


class FunctionName(str, Enum):
    """Canonical gateway operations."""

    CHAT_COMPLETE = "chat_complete"
    STREAM_CHAT_COMPLETE = "stream_chat_complete"
    COMPLETE = "complete"
    STREAM_COMPLETE = "stream_complete"
    EMBED = "embed"
    GENERATE_IMAGE = "generate_image"
    CREATE_MODEL_RESPONSE = "create_model_response"
    GET_MODEL_RESPONSE = "get_model_response"
    DELETE_MODEL_RESPONSE = "delete_model_response"
    LIST_RESPONSE_INPUT_ITEMS = "list_response_input_items"
    PROXY = "proxy"


STREAM_FUNCTIONS: FrozenSet[FunctionName] = frozenset({
    FunctionName.STREAM_CHAT_COMPLETE,
    FunctionName.STREAM_COMPLETE,
})

# Canonical function whose parameter table backs each streaming variant
STREAM_BASE_FUNCTION = {
    FunctionName.STREAM_CHAT_COMPLETE: FunctionName.CHAT_COMPLETE,
    FunctionName.STREAM_COMPLETE: FunctionName.COMPLETE,
}


class StrategyMode(str, Enum):
    """Target selection strategies for a routing config."""

    SINGLE = "single"
    FALLBACK = "fallback"
    LOADBALANCE = "loadbalance"
    CONDITIONAL = "conditional"


# ============================================================================
# Retry
# ============================================================================

RETRY_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)

# Checked in order; only `retry-after` is expressed in seconds
RETRY_AFTER_HEADERS: Tuple[str, ...] = (
    "retry-after-ms",
    "x-ms-retry-after-ms",
    "retry-after",
)

MAX_RETRY_LIMIT_MS = 60000

REQUEST_TIMEOUT_STATUS_CODE = 408

# ============================================================================
# Request building
# ============================================================================

# Value a client may send to request the provider default for a field
DEFAULT_SENTINEL = "ra-default"

SSE_DONE = "data: [DONE]\n\n"

# Upstream response headers that must not be copied onto the client response
HOP_BY_HOP_RESPONSE_HEADERS: FrozenSet[str] = frozenset({
    "content-encoding",
    "content-length",
    "transfer-encoding",
    "vary",
    "connection",
})

# Reasoning models that reject sampling parameters from target defaults
UNSUPPORTED_TEMPERATURE_MODELS: FrozenSet[str] = frozenset({
    "o1", "o1-mini", "o1-preview", "o3", "o3-mini", "o4-mini",
    "gpt-5", "gpt-5-mini", "gpt-5-nano",
})
UNSUPPORTED_TOP_P_MODELS = UNSUPPORTED_TEMPERATURE_MODELS

# Models that take `max_completion_tokens` instead of `max_tokens`
MAX_COMPLETION_TOKENS_MODELS = UNSUPPORTED_TEMPERATURE_MODELS

UNSUPPORTED_REASONING_MODELS: FrozenSet[str] = frozenset({
    "gpt-3.5-turbo", "gpt-4", "gpt-4-turbo", "gpt-4o", "gpt-4o-mini",
    "gpt-4.1", "gpt-4.1-mini", "gpt-4.1-nano",
})
