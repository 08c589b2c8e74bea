import pytest

from idk_gateway.gateway.adapters.base import ParameterConfig, function_config
from idk_gateway.gateway.errors import MissingRequiredParameter, ParameterOutOfRange, ValidationError
from idk_gateway.gateway.services.request_builder import build_provider_request


TABLE = function_config({
    "model": ParameterConfig("model", required=True, default="base-model"),
    "temperature": ParameterConfig("temperature", default=1, min=0, max=2),
    "top_p": ParameterConfig("top_p", min=0, max=1, clamp=True),
    "user": ParameterConfig("metadata.user_id"),
    "messages": [
        ParameterConfig("messages", required=True, transform=lambda body: body.get("messages") or []),
        ParameterConfig("system", transform=lambda body: body.get("system_hint")),
    ],
})


def test_copies_present_fields_and_drops_unknown_ones() -> None:
    body = {"model": "m-1", "temperature": 0.5, "messages": [{"role": "user"}], "unknown": True}

    built = build_provider_request(TABLE, body, "test")

    assert built == {"model": "m-1", "temperature": 0.5, "messages": [{"role": "user"}]}


def test_required_field_uses_default_and_optional_default_is_not_applied() -> None:
    built = build_provider_request(TABLE, {"messages": []}, "test")

    assert built["model"] == "base-model"
    assert "temperature" not in built


def test_default_sentinel_selects_entry_default() -> None:
    built = build_provider_request(TABLE, {"model": "ra-default", "messages": []}, "test")

    assert built["model"] == "base-model"


def test_callable_default_receives_body_and_target() -> None:
    seen = {}

    def default(body, target):
        seen["args"] = (body, target)
        return "computed"

    table = function_config({"model": ParameterConfig("model", required=True, default=default)})
    built = build_provider_request(table, {"x": 1}, "test", target="target-sentinel")

    assert built == {"model": "computed"}
    assert seen["args"] == ({"x": 1}, "target-sentinel")


def test_missing_required_without_default_raises() -> None:
    table = function_config({"input": ParameterConfig("input", required=True)})

    with pytest.raises(MissingRequiredParameter) as exc_info:
        build_provider_request(table, {}, "test")

    assert exc_info.value.field == "input"
    assert exc_info.value.status_code == 400


def test_out_of_range_value_is_rejected() -> None:
    with pytest.raises(ParameterOutOfRange) as exc_info:
        build_provider_request(TABLE, {"temperature": 3, "messages": []}, "test")

    assert exc_info.value.param == "temperature"
    assert exc_info.value.to_error_body()["error"]["code"] == "parameter_out_of_range"


def test_out_of_range_value_is_clamped_when_entry_allows_it() -> None:
    built = build_provider_request(TABLE, {"top_p": 1.7, "messages": []}, "test")

    assert built["top_p"] == 1


def test_dotted_param_writes_nested_object() -> None:
    built = build_provider_request(TABLE, {"user": "u-1", "messages": []}, "test")

    assert built["metadata"] == {"user_id": "u-1"}


def test_fan_out_entry_writes_several_provider_fields() -> None:
    body = {"messages": [{"role": "user", "content": "hi"}], "system_hint": "be brief"}

    built = build_provider_request(TABLE, body, "test")

    assert built["messages"] == [{"role": "user", "content": "hi"}]
    assert built["system"] == "be brief"


def test_transform_returning_none_removes_the_provider_key() -> None:
    table = function_config({
        "stop": [
            ParameterConfig("stop_sequences", transform=lambda body: ["x"]),
            ParameterConfig("stop_sequences", transform=lambda body: None),
        ],
    })

    built = build_provider_request(table, {"stop": "x"}, "test")

    assert "stop_sequences" not in built


def test_transform_failure_is_a_validation_error() -> None:
    table = function_config({"messages": ParameterConfig("messages", transform=lambda body: body["missing"])})

    with pytest.raises(ValidationError) as exc_info:
        build_provider_request(table, {"messages": []}, "test")

    assert exc_info.value.param == "messages"


def test_rejected_fields_are_logged(monkeypatch) -> None:
    from idk_gateway.gateway.services import request_builder

    warnings = []

    class Recorder:
        def warning(self, event, **kw):
            warnings.append((event, kw))

    monkeypatch.setattr(request_builder, "logger", Recorder())
    broken = function_config({"messages": ParameterConfig("messages", transform=lambda body: body["missing"])})
    required = function_config({"input": ParameterConfig("input", required=True)})

    with pytest.raises(ValidationError):
        build_provider_request(broken, {"messages": []}, "test")
    with pytest.raises(MissingRequiredParameter):
        build_provider_request(required, {}, "test")

    assert [event for event, _ in warnings] == ["Parameter transform failed", "Required parameter missing"]
    assert warnings[0][1]["field"] == "messages"
    assert warnings[1][1] == {"provider": "test", "field": "input"}


def test_input_body_is_not_mutated() -> None:
    body = {"user": "u-1", "messages": []}

    build_provider_request(TABLE, body, "test")

    assert body == {"user": "u-1", "messages": []}
