import json
import random

import pytest

from idk_gateway.gateway.constants import StrategyMode
from idk_gateway.gateway.errors import RouterError
from idk_gateway.gateway.routing import (
    ConditionalRouter,
    RoutingContext,
    RoutingEngine,
    parse_config_header,
    redact,
    single_target_config,
)


def _header(data) -> str:
    return json.dumps(data)


# =============================================================================
# Config parsing
# =============================================================================

def test_parse_shorthand_and_full_targets() -> None:
    config = parse_config_header(_header({
        "strategy": {"mode": "fallback", "on_status_codes": [429]},
        "targets": [
            {"provider": "openai", "model": "gpt-4o-mini", "api_key": "sk-1"},
            {"configuration": {"ai_provider": "anthropic", "model": "claude-3-5-haiku-latest"}, "api_key": "sk-2"},
        ],
    }))

    assert config.strategy.mode == StrategyMode.FALLBACK
    assert config.strategy.on_status_codes == [429]
    assert [t.provider for t in config.targets] == ["openai", "anthropic"]
    assert config.targets[0].configuration.model == "gpt-4o-mini"
    assert config.targets[1].api_key_value == "sk-2"


def test_target_name_is_accepted_as_id() -> None:
    config = parse_config_header(_header({"targets": [{"provider": "openai", "name": "primary"}]}))

    assert config.targets[0].id == "primary"


def test_defaults() -> None:
    config = parse_config_header(_header({"targets": [{"provider": "openai"}]}))

    assert config.strategy.mode == StrategyMode.SINGLE
    assert config.targets[0].retry.attempts == 0
    assert config.targets[0].weight == 1
    assert config.targets[0].api_key_value is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        _header({"targets": []}),
        _header({"targets": [{"model": "x"}]}),
        _header({"strategy": {"mode": "roundrobin"}, "targets": [{"provider": "openai"}]}),
        _header({"strategy": {"mode": "conditional"}, "targets": [{"provider": "openai"}]}),
        _header({"targets": [{"provider": "openai", "configuration": {"ai_provider": "openai", "temperature": 5}}]}),
    ],
)
def test_invalid_configs_raise_router_error(raw: str) -> None:
    with pytest.raises(RouterError) as exc_info:
        parse_config_header(raw)

    assert exc_info.value.status_code == 400


def test_redacted_config_masks_secrets() -> None:
    config = parse_config_header(_header({
        "targets": [{"provider": "openai", "api_key": "sk-secret", "openai_organization": "org-1"}],
        "metadata": {"Authorization": "Bearer x", "team": "search"},
    }))

    dumped = config.redacted()

    assert "sk-secret" not in json.dumps(dumped)
    assert dumped["targets"][0]["api_key"] == "[REDACTED]"
    assert dumped["metadata"] == {"Authorization": "[REDACTED]", "team": "search"}
    assert dumped["targets"][0]["openai_organization"] == "org-1"


def test_redact_walks_lists() -> None:
    assert redact([{"access_token": "t"}, {"ok": 1}]) == [{"access_token": "[REDACTED]"}, {"ok": 1}]
    assert redact({"max_tokens": 5, "usage": {"total_tokens": 9}}) == {"max_tokens": 5, "usage": {"total_tokens": 9}}


def test_single_target_config() -> None:
    config = single_target_config("groq", "gsk-1", model="llama3-8b-8192")

    assert config.strategy.mode == StrategyMode.SINGLE
    assert config.targets[0].provider == "groq"
    assert config.targets[0].api_key_value == "gsk-1"
    assert config.targets[0].configuration.model == "llama3-8b-8192"


# =============================================================================
# Strategies
# =============================================================================

def _config(strategy, targets):
    return parse_config_header(_header({"strategy": strategy, "targets": targets}))


def test_single_plans_first_target() -> None:
    config = _config({"mode": "single"}, [{"provider": "openai"}, {"provider": "groq"}])

    plan = RoutingEngine().plan(config, RoutingContext())

    assert [(s.target.provider, s.index) for s in plan] == [("openai", 0)]


def test_fallback_plans_all_targets_in_order() -> None:
    config = _config({"mode": "fallback"}, [{"provider": "openai"}, {"provider": "groq"}, {"provider": "xai"}])

    plan = RoutingEngine().plan(config, RoutingContext())

    assert [s.target.provider for s in plan] == ["openai", "groq", "xai"]
    assert [s.index for s in plan] == [0, 1, 2]


def test_loadbalance_follows_weights() -> None:
    config = _config(
        {"mode": "loadbalance"},
        [{"provider": "openai", "weight": 0}, {"provider": "groq", "weight": 1}],
    )
    engine = RoutingEngine(rng=random.Random(7))

    picks = {engine.plan(config, RoutingContext())[0].target.provider for _ in range(50)}

    assert picks == {"groq"}


def test_loadbalance_with_seeded_rng_is_reproducible() -> None:
    config = _config(
        {"mode": "loadbalance"},
        [{"provider": "openai", "weight": 1}, {"provider": "groq", "weight": 3}],
    )

    first = [RoutingEngine(rng=random.Random(42)).plan(config, RoutingContext())[0].index for _ in range(5)]
    second = [RoutingEngine(rng=random.Random(42)).plan(config, RoutingContext())[0].index for _ in range(5)]

    assert first == second


def test_loadbalance_all_zero_weights_picks_first() -> None:
    config = _config({"mode": "loadbalance"}, [{"provider": "openai", "weight": 0}, {"provider": "groq", "weight": 0}])

    plan = RoutingEngine().plan(config, RoutingContext())

    assert plan[0].index == 0


CONDITIONAL_TARGETS = [
    {"provider": "openai", "id": "fast"},
    {"provider": "anthropic", "id": "smart"},
]


def test_conditional_first_matching_rule_wins() -> None:
    config = _config(
        {
            "mode": "conditional",
            "conditions": [
                {"query": {"metadata.tier": {"$eq": "pro"}}, "then": "smart"},
                {"query": {"metadata.tier": {"$in": ["pro", "free"]}}, "then": "fast"},
            ],
            "default": "fast",
        },
        CONDITIONAL_TARGETS,
    )

    plan = RoutingEngine().plan(config, RoutingContext(metadata={"tier": "pro"}))

    assert plan[0].target.id == "smart"
    assert plan[0].index == 1


def test_conditional_operators_over_params() -> None:
    config = _config(
        {
            "mode": "conditional",
            "conditions": [
                {
                    "query": {"$or": [{"params.max_tokens": {"$gt": 1000}}, {"params.model": {"$regex": "^o1"}}]},
                    "target": "smart",
                },
            ],
            "default": "fast",
        },
        CONDITIONAL_TARGETS,
    )
    engine = RoutingEngine()

    assert engine.plan(config, RoutingContext(params={"max_tokens": 2000}))[0].target.id == "smart"
    assert engine.plan(config, RoutingContext(params={"model": "o1-mini"}))[0].target.id == "smart"
    assert engine.plan(config, RoutingContext(params={"max_tokens": 10}))[0].target.id == "fast"


def test_conditional_without_match_or_default_raises() -> None:
    config = _config(
        {"mode": "conditional", "conditions": [{"query": {"metadata.tier": "pro"}, "then": "smart"}]},
        CONDITIONAL_TARGETS,
    )

    with pytest.raises(RouterError):
        RoutingEngine().plan(config, RoutingContext(metadata={"tier": "free"}))


def test_conditional_unknown_operator_raises() -> None:
    config = _config(
        {"mode": "conditional", "conditions": [{"query": {"metadata.tier": {"$like": "p%"}}, "then": "smart"}]},
        CONDITIONAL_TARGETS,
    )

    with pytest.raises(RouterError, match=r"\$like"):
        ConditionalRouter(config, RoutingContext(metadata={"tier": "pro"})).resolve()


def test_conditional_unknown_target_raises() -> None:
    config = _config(
        {"mode": "conditional", "conditions": [{"query": {"metadata.tier": "pro"}, "then": "missing"}]},
        CONDITIONAL_TARGETS,
    )

    with pytest.raises(RouterError, match="missing"):
        RoutingEngine().plan(config, RoutingContext(metadata={"tier": "pro"}))
