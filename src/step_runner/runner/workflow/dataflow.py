"""Input/output processing shared by every state.

A state moves data through four stages:

1. InputPath selects the effective input from the raw input.
2. The state evaluates (Parameters shape the value it operates on).
3. ResultSelector shapes the raw result, then ResultPath splices it into the raw input.
4. OutputPath selects the state output.

This module also holds the pydantic field types used by the definition model,
so paths and payload templates are compiled exactly once.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, PlainValidator
from pydantic.alias_generators import to_pascal

from .errors import (
    STATES_PARAMETER_PATH_FAILURE,
    STATES_RESULT_PATH_MATCH_FAILURE,
    STATES_RUNTIME,
    DefinitionError,
    PathNotFoundError,
    StatesError,
)
from .paths import ReferencePath, parse

ROOT = parse("$")


class DefinitionModel(BaseModel):
    """Base for definition records: PascalCase keys, immutable once compiled."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )


class PayloadTemplate:
    """A compiled Parameters / ResultSelector / ItemSelector template.

    Keys ending in `.$` hold a path; the rendered payload stores the resolved
    value under the key without the suffix. Everything else is copied as is.
    """

    __slots__ = ("_node",)

    def __init__(self, node: Any) -> None:
        self._node = node

    def __repr__(self) -> str:
        return f"PayloadTemplate({self._node!r})"

    @classmethod
    def compile(cls, raw: Any) -> PayloadTemplate | None:
        if raw is None or isinstance(raw, PayloadTemplate):
            return raw
        return cls(_compile_node(raw))

    def render(self, data: Any, context: Any) -> Any:
        return _render_node(self._node, data, context)


def _compile_node(node: Any) -> Any:
    if isinstance(node, dict):
        compiled: dict[str, Any] = {}
        for key, value in node.items():
            if key.endswith(".$"):
                if not isinstance(value, str):
                    raise DefinitionError(f"value of {key!r} must be a path string")
                compiled[key[:-2]] = parse(value)
            else:
                compiled[key] = _compile_node(value)
        return compiled
    if isinstance(node, list):
        return [_compile_node(item) for item in node]
    return node


def _render_node(node: Any, data: Any, context: Any) -> Any:
    if isinstance(node, ReferencePath):
        try:
            return node.get(data, context)
        except PathNotFoundError:
            raise StatesError(
                STATES_PARAMETER_PATH_FAILURE,
                f"The JSONPath '{node}' could not be found in the input",
            ) from None
    if isinstance(node, dict):
        return {key: _render_node(value, data, context) for key, value in node.items()}
    if isinstance(node, list):
        return [_render_node(item, data, context) for item in node]
    return node


def _to_path(value: Any) -> ReferencePath | None:
    if value is None or isinstance(value, ReferencePath):
        return value
    return parse(value)


def _to_result_path(value: Any) -> ReferencePath | None:
    path = _to_path(value)
    if path is not None and (path.is_context or not path.is_definite):
        raise DefinitionError(f"ResultPath must be a definite data path: {path}")
    return path


PathField = Annotated[ReferencePath | None, PlainValidator(_to_path)]
ResultPathField = Annotated[ReferencePath | None, PlainValidator(_to_result_path)]
TemplateField = Annotated[PayloadTemplate | None, PlainValidator(PayloadTemplate.compile)]


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


def select(path: ReferencePath | None, value: Any, context: Any) -> Any:
    """Apply an InputPath/OutputPath style filter.

    `None` (an explicit JSON null) discards the value and yields `{}`.
    """
    if path is None:
        return {}
    if path.is_root:
        return value
    try:
        return path.get(value, context)
    except PathNotFoundError:
        raise StatesError(
            STATES_RUNTIME,
            f"Invalid path '{path}': the path does not resolve against the state's data",
        ) from None


def place_result(path: ReferencePath | None, raw_input: Any, result: Any) -> Any:
    """Apply ResultPath: combine a result with the state's raw input.

    `None` keeps the raw input and discards the result; the root path makes
    the result replace the input.
    """
    if path is None:
        return raw_input
    try:
        return path.put(raw_input, result)
    except PathNotFoundError:
        raise StatesError(
            STATES_RESULT_PATH_MATCH_FAILURE,
            f"Unable to apply ResultPath '{path}' to input {raw_input!r}",
        ) from None


def shape(template: PayloadTemplate | None, value: Any, context: Any) -> Any:
    """Render Parameters/ResultSelector when present, otherwise pass through."""
    if template is None:
        return value
    return template.render(value, context)
