from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from pydantic import Field, field_validator

from .dataflow import ROOT, DefinitionModel, ResultPathField
from .errors import (
    STATES_ALL,
    STATES_RUNTIME,
    STATES_TASK_FAILED,
    STATES_TIMEOUT,
    DefinitionError,
    StatesError,
)


def _check_error_equals(value: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        raise ValueError("ErrorEquals must list at least one error name")
    if STATES_ALL in value and len(value) > 1:
        raise ValueError(f"{STATES_ALL} must appear alone in ErrorEquals")
    return value


class Retrier(DefinitionModel):
    """One entry of a state's `Retry` list."""

    error_equals: tuple[str, ...]
    interval_seconds: float = Field(default=1.0, ge=0)
    max_attempts: int = Field(default=3, ge=0)
    backoff_rate: float = Field(default=2.0, ge=0)
    max_delay_seconds: float | None = Field(default=None, gt=0)
    jitter_strategy: Literal["FULL", "NONE"] = "NONE"

    @field_validator("error_equals")
    @classmethod
    def _validate_error_equals(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return _check_error_equals(value)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt + 1`."""
        delay = self.interval_seconds * (self.backoff_rate**attempt)
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        if self.jitter_strategy == "FULL":
            delay = random.uniform(0, delay)
        return delay


class Catcher(DefinitionModel):
    """One entry of a state's `Catch` list."""

    error_equals: tuple[str, ...]
    next: str
    result_path: ResultPathField = ROOT

    @field_validator("error_equals")
    @classmethod
    def _validate_error_equals(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return _check_error_equals(value)


def check_rule_order(rules: Sequence[Retrier] | Sequence[Catcher], field: str) -> None:
    """`States.ALL` may only appear in the last rule of a Retry/Catch list."""
    for rule in rules[:-1]:
        if STATES_ALL in rule.error_equals:
            raise DefinitionError(f"{STATES_ALL} must appear in the last entry of {field}")


def error_matches(pattern: str, error: str) -> bool:
    # States.Runtime is never retried or caught.
    if error == STATES_RUNTIME:
        return False
    if pattern == STATES_ALL:
        return True
    if pattern == STATES_TASK_FAILED:
        return error != STATES_TIMEOUT
    return pattern == error


DecisionKind = Literal["retry", "catch", "fatal"]


@dataclass(frozen=True, slots=True)
class Decision:
    """What to do with a state-level error.

    `retry` sets `retrier_index` and `delay_seconds`; `catch` sets `catcher`.
    """

    kind: DecisionKind
    retrier_index: int | None = None
    delay_seconds: float = 0.0
    catcher: Catcher | None = None


FATAL = Decision(kind="fatal")


def decide(
    *,
    retriers: Sequence[Retrier],
    catchers: Sequence[Catcher],
    error: StatesError,
    attempts: Mapping[int, int],
) -> Decision:
    """Policy: (rules, error, attempts so far) -> retry | catch | fatal.

    The first retrier matching the error decides whether to retry; once it is
    exhausted the catchers are consulted. `attempts` maps a retrier's index to
    the number of retries it has already spent.
    """
    for index, retrier in enumerate(retriers):
        if any(error_matches(pattern, error.error) for pattern in retrier.error_equals):
            spent = attempts.get(index, 0)
            if spent < retrier.max_attempts:
                return Decision(
                    kind="retry", retrier_index=index, delay_seconds=retrier.delay_for(spent)
                )
            break

    for catcher in catchers:
        if any(error_matches(pattern, error.error) for pattern in catcher.error_equals):
            return Decision(kind="catch", catcher=catcher)

    return FATAL
