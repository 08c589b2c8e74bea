"""
Routing configuration carried by the `x-idk-config` request header.

The header holds a JSON document describing the targets a request may be
sent to and the strategy for choosing between them:

    {
        "strategy": {"mode": "fallback", "on_status_codes": [429]},
        "targets": [
            {"provider": "openai", "model": "gpt-4o-mini", "api_key": "sk-..."},
            {"configuration": {"ai_provider": "anthropic", "model": "claude-3-5-haiku-latest"},
             "api_key": "sk-ant-..."}
        ]
    }
"""

import json
from typing import Any, Dict, List, Optional

import structlog
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from idk_gateway.core.config import settings
from idk_gateway.gateway.constants import RETRY_STATUS_CODES, StrategyMode
from idk_gateway.gateway.errors import RouterError

logger = structlog.get_logger(__name__)

REDACTED = "[REDACTED]"

# Keys whose values never reach the logs
SENSITIVE_KEY_MARKERS = ("api_key", "apikey", "authorization", "secret", "password")


class RetrySettings(BaseModel):
    """Per-target retry behaviour."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=0, ge=0)
    on_status_codes: List[int] = Field(default_factory=lambda: list(RETRY_STATUS_CODES))
    use_retry_after_header: bool = False


class AzureOpenAIConfig(BaseModel):
    """Azure OpenAI resource location."""

    model_config = ConfigDict(frozen=True)

    url: str

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class TargetConfiguration(BaseModel):
    """Provider, model and default hyperparameters for a target."""

    model_config = ConfigDict(frozen=True, extra="allow")

    ai_provider: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    stop: Optional[List[str]] = None
    seed: Optional[int] = None
    reasoning_effort: Optional[str] = None
    additional_params: Dict[str, Any] = Field(default_factory=dict)


class Target(BaseModel):
    """
    One provider a request may be dispatched to.

    Accepts either a full `configuration` block or the shorthand
    `provider` + `model` pair at the top level.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "name"))
    configuration: TargetConfiguration
    api_key: Optional[SecretStr] = None

    # Target settings
    weight: float = Field(default=1, ge=0)
    on_status_codes: Optional[List[int]] = None
    request_timeout: Optional[int] = Field(default=None, gt=0)
    custom_host: Optional[str] = None
    forward_headers: List[str] = Field(default_factory=list)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    # OpenAI specific
    openai_organization: Optional[str] = None
    openai_project: Optional[str] = None
    openai_beta: Optional[str] = None

    # Anthropic specific
    anthropic_version: Optional[str] = None
    anthropic_beta: Optional[str] = None

    # Azure OpenAI specific
    azure_openai_config: Optional[AzureOpenAIConfig] = None
    azure_api_version: Optional[str] = None

    # Mistral specific
    mistral_fim_completion: bool = False

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, dict) and "configuration" not in data and data.get("provider"):
            data = dict(data)
            data["configuration"] = {"ai_provider": data.pop("provider"), "model": data.pop("model", None)}
        return data

    @property
    def provider(self) -> str:
        return self.configuration.ai_provider

    @property
    def api_key_value(self) -> Optional[str]:
        """Plain API key, or None when the target carries no key."""
        if self.api_key is None:
            return None
        return self.api_key.get_secret_value() or None


class Condition(BaseModel):
    """A conditional routing rule: a query and the target it selects."""

    model_config = ConfigDict(frozen=True)

    query: Dict[str, Any]
    target: str = Field(validation_alias=AliasChoices("target", "then"))


class Strategy(BaseModel):
    """How targets are chosen."""

    model_config = ConfigDict(frozen=True)

    mode: StrategyMode = StrategyMode.SINGLE
    on_status_codes: Optional[List[int]] = None
    conditions: List[Condition] = Field(default_factory=list)
    default: Optional[str] = None


class GatewayConfig(BaseModel):
    """Parsed routing config for one request."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    strategy: Strategy = Field(default_factory=Strategy)
    targets: List[Target] = Field(min_length=1)
    override_params: Dict[str, Any] = Field(default_factory=dict)
    request_timeout: Optional[int] = Field(default=None, gt=0)
    forward_headers: List[str] = Field(default_factory=list)
    strict_open_ai_compliance: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)
    trace_id: Optional[str] = None

    @model_validator(mode="after")
    def check_conditional_targets(self) -> "GatewayConfig":
        if self.strategy.mode == StrategyMode.CONDITIONAL and not self.strategy.conditions:
            raise ValueError("Conditional strategy requires at least one condition")
        return self

    def redacted(self) -> Dict[str, Any]:
        """Config as a loggable dict with every secret masked."""
        dumped = self.model_dump(mode="json", exclude_none=True)
        if not settings.log.sanitize:
            return dumped
        return redact(dumped)


def redact(value: Any) -> Any:
    """Recursively mask values stored under sensitive keys."""
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_sensitive(key) and item is not None else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


def _is_sensitive(key: str) -> bool:
    lowered = str(key).lower().replace("-", "_")
    # `*_token` is a credential, `*_tokens` a counter
    return lowered.endswith("token") or any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def parse_config_header(raw: str) -> GatewayConfig:
    """
    Parse the JSON routing config header.

    Args:
        raw: Header value

    Returns:
        Validated GatewayConfig

    Raises:
        RouterError: If the header is not JSON or fails validation
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RouterError(f"Invalid routing config header: {e.msg}")

    if not isinstance(data, dict):
        raise RouterError("Invalid routing config header: expected a JSON object")

    try:
        return GatewayConfig.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "config"
        logger.info("Rejected routing config", error_count=e.error_count(), location=location)
        raise RouterError(f"Invalid routing config: {location}: {first['msg']}")


def single_target_config(provider: str, api_key: Optional[str], model: Optional[str] = None) -> GatewayConfig:
    """Config with one target, used when a request carries no routing header."""
    return GatewayConfig(
        targets=[Target(configuration=TargetConfiguration(ai_provider=provider, model=model), api_key=api_key)],
    )
