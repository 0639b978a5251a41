"""Unit tests for the input/output pipeline stages."""

from __future__ import annotations

import pytest

from step_runner.runner.workflow.dataflow import ROOT, PayloadTemplate, place_result, select, shape
from step_runner.runner.workflow.errors import (
    STATES_PARAMETER_PATH_FAILURE,
    STATES_RESULT_PATH_MATCH_FAILURE,
    STATES_RUNTIME,
    DefinitionError,
    StatesError,
)
from step_runner.runner.workflow.paths import parse


def test_select_passthrough_null_and_path() -> None:
    data = {"a": {"b": 1}}
    assert select(ROOT, data, {}) is data
    assert select(None, data, {}) == {}
    assert select(parse("$.a"), data, {}) == {"b": 1}


def test_select_missing_path_is_runtime_error() -> None:
    with pytest.raises(StatesError) as excinfo:
        select(parse("$.nope"), {"a": 1}, {})
    assert excinfo.value.error == STATES_RUNTIME


def test_place_result_variants() -> None:
    raw = {"a": 1}
    assert place_result(ROOT, raw, {"r": 2}) == {"r": 2}
    assert place_result(None, raw, {"r": 2}) is raw
    assert place_result(parse("$.out"), raw, 2) == {"a": 1, "out": 2}
    assert raw == {"a": 1}


def test_place_result_failure() -> None:
    with pytest.raises(StatesError) as excinfo:
        place_result(parse("$.a.b"), {"a": "scalar"}, 1)
    assert excinfo.value.error == STATES_RESULT_PATH_MATCH_FAILURE


def test_template_renders_paths_and_literals() -> None:
    template = PayloadTemplate.compile(
        {
            "literal": "x",
            "value.$": "$.v",
            "nested": {"items.$": "$.list[*]", "fixed": [1, {"id.$": "$$.Execution.Id"}]},
        }
    )
    assert template is not None
    rendered = template.render({"v": 3, "list": [1, 2]}, {"Execution": {"Id": "run"}})
    assert rendered == {
        "literal": "x",
        "value": 3,
        "nested": {"items": [1, 2], "fixed": [1, {"id": "run"}]},
    }


def test_template_missing_path_is_parameter_path_failure() -> None:
    template = PayloadTemplate.compile({"value.$": "$.missing"})
    with pytest.raises(StatesError) as excinfo:
        shape(template, {}, {})
    assert excinfo.value.error == STATES_PARAMETER_PATH_FAILURE


def test_template_compile_errors() -> None:
    with pytest.raises(DefinitionError):
        PayloadTemplate.compile({"value.$": 3})
    with pytest.raises(DefinitionError):
        PayloadTemplate.compile({"value.$": "$.items[?(@.ok)]"})


def test_shape_without_template_passes_through() -> None:
    value = {"a": 1}
    assert shape(None, value, {}) is value
