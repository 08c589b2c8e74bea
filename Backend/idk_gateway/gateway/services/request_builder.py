"""
Request Builder.

Applies a provider parameter table to a canonical request body and
produces the provider-native body. Pure: no I/O, no mutation of inputs.

Resolution per parameter entry:
1. Field present: the entry's transform result, else the raw value;
   "ra-default" selects the entry default.
2. Field absent: the transform result when a transform exists.
3. Still unresolved and required: the default (callables receive
   `(request_body, target)`); nothing at all raises MissingRequiredParameter.
4. Numeric values outside min/max are rejected, or clamped when the entry
   says so.
5. A present field whose transform yields None removes that provider key.
"""

from typing import Any, Dict, Iterable, Optional

import structlog

from idk_gateway.gateway.adapters.base import FunctionConfig, ParameterConfig
from idk_gateway.gateway.constants import DEFAULT_SENTINEL
from idk_gateway.gateway.errors import MissingRequiredParameter, ParameterOutOfRange, ValidationError
from idk_gateway.gateway.routing.config import Target

logger = structlog.get_logger(__name__)


def build_provider_request(
    function_config: FunctionConfig,
    request_body: Dict[str, Any],
    provider: str,
    target: Optional[Target] = None,
) -> Dict[str, Any]:
    """
    Build a provider-native request body.

    Args:
        function_config: Parameter table for the provider and function
        request_body: Canonical request body
        provider: Provider identifier, for error reporting
        target: Target the request is built for

    Returns:
        Provider-native request body

    Raises:
        MissingRequiredParameter: If a required field resolves to nothing
        ParameterOutOfRange: If a numeric value is out of bounds
        ValidationError: If a field transform rejects the input
    """
    provider_body: Dict[str, Any] = {}

    for field_name, mapping in function_config.items():
        present = request_body.get(field_name) is not None

        for entry in _entries(mapping):
            try:
                value = _resolve(field_name, entry, request_body, target, present)
            except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
                logger.warning("Parameter transform failed", provider=provider, field=field_name, error=str(e))
                raise ValidationError(
                    f"Invalid value for '{field_name}': {e}",
                    provider=provider,
                    param=field_name,
                )

            if value is None:
                if entry.required:
                    logger.warning("Required parameter missing", provider=provider, field=field_name)
                    raise MissingRequiredParameter(field_name, provider=provider)
                if present and entry.transform is not None:
                    _delete_path(provider_body, entry.param)
                continue

            value = _check_bounds(field_name, entry, value, provider)
            _set_path(provider_body, entry.param, value)

    return provider_body


def _entries(mapping: Any) -> Iterable[ParameterConfig]:
    if isinstance(mapping, ParameterConfig):
        return (mapping,)
    return mapping


def _resolve(
    field_name: str,
    entry: ParameterConfig,
    request_body: Dict[str, Any],
    target: Optional[Target],
    present: bool,
) -> Any:
    if present:
        raw = request_body[field_name]
        if isinstance(raw, str) and raw == DEFAULT_SENTINEL:
            return _default(entry, request_body, target)
        value = entry.transform(request_body) if entry.transform is not None else raw
    else:
        value = entry.transform(request_body) if entry.transform is not None else None

    if value is None and entry.required:
        value = _default(entry, request_body, target)
    return value


def _default(entry: ParameterConfig, request_body: Dict[str, Any], target: Optional[Target]) -> Any:
    if callable(entry.default):
        return entry.default(request_body, target)
    return entry.default


def _check_bounds(field_name: str, entry: ParameterConfig, value: Any, provider: str) -> Any:
    if entry.min is None and entry.max is None:
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value

    below = entry.min is not None and value < entry.min
    above = entry.max is not None and value > entry.max
    if not (below or above):
        return value
    if entry.clamp:
        return entry.min if below else entry.max
    raise ParameterOutOfRange(field_name, value, entry.min, entry.max, provider=provider)


def _set_path(body: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = body
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _delete_path(body: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current: Any = body
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if current is None:
            return
    if isinstance(current, dict):
        current.pop(parts[-1], None)
