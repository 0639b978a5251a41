"""Choice rules: boolean conditions evaluated against a state's effective input.

Rules are compiled from their JSON form once, when the definition is
compiled. A rule that compares against a value of the wrong type evaluates to
false; a rule whose `Variable` is missing from the input fails the state with
`States.Runtime` (except under `IsPresent`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from .errors import STATES_RUNTIME, DefinitionError, PathNotFoundError, StatesError
from .paths import ReferencePath, parse


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def _invalid_path_cause(path: ReferencePath) -> str:
    return f"Invalid path {path}: the choice state's condition path references an invalid value"


def _string_matches(value: str, pattern: str) -> bool:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        parts.append(".*" if ch == "*" else re.escape(ch))
        i += 1
    return re.fullmatch("".join(parts), value, flags=re.DOTALL) is not None


_ORDERINGS: dict[str, Callable[[Any, Any], bool]] = {
    "Equals": lambda a, b: a == b,
    "LessThan": lambda a, b: a < b,
    "GreaterThan": lambda a, b: a > b,
    "LessThanEquals": lambda a, b: a <= b,
    "GreaterThanEquals": lambda a, b: a >= b,
}

# Comparison family -> (accepts value, normalises value)
_FAMILIES: dict[str, tuple[Callable[[Any], bool], Callable[[Any], Any]]] = {
    "String": (lambda v: isinstance(v, str), lambda v: v),
    "Numeric": (_is_number, lambda v: v),
    "Boolean": (lambda v: isinstance(v, bool), lambda v: v),
    "Timestamp": (lambda v: _parse_timestamp(v) is not None, _parse_timestamp),
}

_TYPE_TESTS: dict[str, Callable[[Any], bool]] = {
    "IsNull": lambda v: v is None,
    "IsNumeric": _is_number,
    "IsString": lambda v: isinstance(v, str),
    "IsBoolean": lambda v: isinstance(v, bool),
    "IsTimestamp": lambda v: _parse_timestamp(v) is not None,
}


def _operators() -> set[str]:
    ops = {"StringMatches", "IsPresent", *_TYPE_TESTS}
    for family in _FAMILIES:
        for ordering in _ORDERINGS:
            if family == "Boolean" and ordering != "Equals":
                continue
            ops.add(family + ordering)
            ops.add(family + ordering + "Path")
    return ops


COMPARISON_OPERATORS = frozenset(_operators())


@dataclass(frozen=True, slots=True)
class Comparison:
    """`Variable <operator> operand`, where the operand may itself be a path."""

    variable: ReferencePath
    operator: str
    operand: Any

    def evaluate(self, data: Any, context: Any) -> bool:
        if self.operator == "IsPresent":
            return self.variable.exists(data, context) == bool(self.operand)

        try:
            value = self.variable.get(data, context)
        except PathNotFoundError:
            raise StatesError(STATES_RUNTIME, _invalid_path_cause(self.variable)) from None

        if self.operator in _TYPE_TESTS:
            return _TYPE_TESTS[self.operator](value) == bool(self.operand)

        operand = self.operand
        operator = self.operator
        if operator.endswith("Path"):
            operator = operator[: -len("Path")]
            try:
                operand = operand.get(data, context)
            except PathNotFoundError:
                raise StatesError(STATES_RUNTIME, _invalid_path_cause(operand)) from None

        if operator == "StringMatches":
            return isinstance(value, str) and _string_matches(value, operand)

        for family, (accepts, normalise) in _FAMILIES.items():
            if operator.startswith(family):
                if not (accepts(value) and accepts(operand)):
                    return False
                compare = _ORDERINGS[operator[len(family) :]]
                return compare(normalise(value), normalise(operand))

        raise StatesError(STATES_RUNTIME, f"Unknown comparison operator {self.operator}")


@dataclass(frozen=True, slots=True)
class And:
    conditions: tuple[Condition, ...]

    def evaluate(self, data: Any, context: Any) -> bool:
        return all(c.evaluate(data, context) for c in self.conditions)


@dataclass(frozen=True, slots=True)
class Or:
    conditions: tuple[Condition, ...]

    def evaluate(self, data: Any, context: Any) -> bool:
        return any(c.evaluate(data, context) for c in self.conditions)


@dataclass(frozen=True, slots=True)
class Not:
    condition: Condition

    def evaluate(self, data: Any, context: Any) -> bool:
        return not self.condition.evaluate(data, context)


Condition = Comparison | And | Or | Not


@dataclass(frozen=True, slots=True)
class ChoiceRule:
    """A top-level entry of a Choice state's `Choices` list."""

    condition: Condition
    next: str

    def matches(self, data: Any, context: Any) -> bool:
        return self.condition.evaluate(data, context)

    @staticmethod
    def from_json(obj: object) -> ChoiceRule:
        if isinstance(obj, ChoiceRule):
            return obj
        if not isinstance(obj, dict):
            raise DefinitionError("choice rule must be an object")
        next_state = obj.get("Next")
        if not isinstance(next_state, str) or not next_state:
            raise DefinitionError("top-level choice rule requires a 'Next' state name")
        return ChoiceRule(condition=condition_from_json(obj), next=next_state)


def condition_from_json(obj: object) -> Condition:
    if not isinstance(obj, dict):
        raise DefinitionError("choice condition must be an object")

    if "And" in obj or "Or" in obj:
        key = "And" if "And" in obj else "Or"
        raw = obj[key]
        if not isinstance(raw, list) or not raw:
            raise DefinitionError(f"'{key}' requires a non-empty list of conditions")
        nested = tuple(condition_from_json(item) for item in raw)
        return And(nested) if key == "And" else Or(nested)

    if "Not" in obj:
        return Not(condition_from_json(obj["Not"]))

    variable = obj.get("Variable")
    if not isinstance(variable, str):
        raise DefinitionError("choice condition requires a 'Variable' path")

    operators = [key for key in obj if key in COMPARISON_OPERATORS]
    if len(operators) != 1:
        raise DefinitionError(
            f"choice condition on {variable!r} must declare exactly one comparison operator"
        )
    operator = operators[0]
    operand = obj[operator]

    if operator.endswith("Path"):
        if not isinstance(operand, str):
            raise DefinitionError(f"{operator} requires a path string")
        operand = parse(operand)
    elif operator == "StringMatches" and not isinstance(operand, str):
        raise DefinitionError("StringMatches requires a string pattern")
    elif (operator == "IsPresent" or operator in _TYPE_TESTS) and not isinstance(operand, bool):
        raise DefinitionError(f"{operator} requires a boolean")

    return Comparison(variable=parse(variable), operator=operator, operand=operand)
