"""
Gateway Routing Engine.

Turns a routing config into the ordered list of targets the dispatcher
will try for one request:

- single: the first target
- fallback: every target, in order
- loadbalance: one target picked by weighted random selection
- conditional: the target named by the first matching query rule
"""

import random
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from idk_gateway.gateway.constants import StrategyMode
from idk_gateway.gateway.errors import RouterError
from idk_gateway.gateway.routing.config import GatewayConfig, Target


@dataclass
class RoutingContext:
    """Values conditional rules can query."""

    metadata: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SelectedTarget:
    """Result of target selection."""

    target: Target
    index: int
    selection_reason: str = ""


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(predicate: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, expected: Any) -> bool:
        left, right = _as_float(value), _as_float(expected)
        return left is not None and right is not None and predicate(left, right)
    return check


def _regex(value: Any, pattern: Any) -> bool:
    try:
        return isinstance(value, str) and re.search(str(pattern), value) is not None
    except re.error:
        return False


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda value, expected: value == expected,
    "$ne": lambda value, expected: value != expected,
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
    "$in": lambda value, expected: isinstance(expected, list) and value in expected,
    "$nin": lambda value, expected: isinstance(expected, list) and value not in expected,
    "$regex": _regex,
}


class ConditionalRouter:
    """
    Resolves a conditional strategy to a single target.

    Queries are Mongo-style documents over dotted context paths:

        {"metadata.tier": {"$eq": "pro"}}
        {"$or": [{"params.model": "gpt-4o"}, {"params.max_tokens": {"$gt": 1000}}]}

    A bare value is an equality check. Rules are evaluated in order; the
    first match wins, then the strategy default.
    """

    def __init__(self, config: GatewayConfig, context: RoutingContext):
        if config.strategy.mode != StrategyMode.CONDITIONAL:
            raise RouterError("Unsupported strategy mode for conditional routing")
        self.config = config
        self.context = context

    def resolve(self) -> SelectedTarget:
        """
        Select the target for the current context.

        Raises:
            RouterError: If a rule uses an unknown operator, names an unknown
                target, or nothing matches and no default is set
        """
        for condition in self.config.strategy.conditions:
            if self.evaluate(condition.query):
                return self._find_target(condition.target, f"matched condition -> {condition.target}")

        if self.config.strategy.default:
            return self._find_target(self.config.strategy.default, "no condition matched, using default")

        raise RouterError("Conditional routing did not resolve to any target")

    def evaluate(self, query: Dict[str, Any]) -> bool:
        """Check whether a query matches the context."""
        for key, expected in query.items():
            if key == "$or" and isinstance(expected, list):
                if not any(self.evaluate(sub) for sub in expected):
                    return False
                continue
            if key == "$and" and isinstance(expected, list):
                if not all(self.evaluate(sub) for sub in expected):
                    return False
                continue

            value = self._context_value(key)
            if isinstance(expected, dict):
                if not self._apply_operators(expected, value):
                    return False
            elif value != expected:
                return False
        return True

    def _apply_operators(self, operators: Dict[str, Any], value: Any) -> bool:
        for op, expected in operators.items():
            check = OPERATORS.get(op)
            if check is None:
                raise RouterError(f"Unsupported operator used in conditional routing: {op}")
            if not check(value, expected):
                return False
        return True

    def _context_value(self, key: str) -> Any:
        current: Any = {"metadata": self.context.metadata, "params": self.context.params}
        for part in key.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
        return current

    def _find_target(self, target_id: str, reason: str) -> SelectedTarget:
        for index, target in enumerate(self.config.targets):
            if target.id == target_id:
                return SelectedTarget(target=target, index=index, selection_reason=reason)
        raise RouterError(f"Invalid target id found in conditional routing: {target_id}")


class RoutingEngine:
    """
    Plans which targets a request is sent to.

    Usage:
        engine = RoutingEngine()
        plan = engine.plan(config, RoutingContext(metadata=..., params=body))
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def plan(self, config: GatewayConfig, ctx: RoutingContext) -> List[SelectedTarget]:
        """
        Build the ordered list of targets to try.

        Args:
            config: Parsed routing config
            ctx: Values available to conditional rules

        Returns:
            Targets in attempt order (one entry except for fallback)

        Raises:
            RouterError: If the strategy cannot select a target
        """
        mode = config.strategy.mode

        if mode == StrategyMode.FALLBACK:
            return [
                SelectedTarget(target=target, index=index, selection_reason=f"fallback position {index}")
                for index, target in enumerate(config.targets)
            ]

        if mode == StrategyMode.LOADBALANCE:
            return [self._weighted_random_select(config.targets)]

        if mode == StrategyMode.CONDITIONAL:
            return [ConditionalRouter(config, ctx).resolve()]

        return [SelectedTarget(target=config.targets[0], index=0, selection_reason="single target")]

    def _weighted_random_select(self, targets: List[Target]) -> SelectedTarget:
        """Select randomly based on weights."""
        total_weight = sum(t.weight for t in targets)
        if total_weight <= 0:
            return SelectedTarget(target=targets[0], index=0, selection_reason="all weights zero")

        r = self._rng.uniform(0, total_weight)
        current = 0.0
        for index, target in enumerate(targets):
            current += target.weight
            if r <= current:
                return SelectedTarget(target=target, index=index, selection_reason="weighted random")

        return SelectedTarget(target=targets[-1], index=len(targets) - 1, selection_reason="weighted random")
