"""Typed, compiled representation of a state machine definition.

A definition is validated once into frozen pydantic models: a `StateMachine`
with its name-addressed graph of states, each state one variant of the closed
`State` union (discriminated on `Type`). Paths, payload templates, choice
rules and Task resources are all compiled here, so executions never re-parse
them. Compiled machines are immutable and may be shared by concurrent runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import Field, PlainValidator, ValidationError, field_validator, model_validator

from .actions import Resource
from .choice import ChoiceRule
from .dataflow import ROOT, DefinitionModel, PathField, ResultPathField, TemplateField
from .errors import DefinitionError, InvalidBranchError, UnknownStateTypeError
from .policy import Catcher, Retrier, check_rule_order

ResourceField = Annotated[Resource, PlainValidator(Resource.parse)]
ChoiceRuleField = Annotated[ChoiceRule, PlainValidator(ChoiceRule.from_json)]


class _State(DefinitionModel):
    """Fields shared by every state type."""

    name: str = ""
    comment: str | None = None
    next: str | None = None
    end: bool = False
    input_path: PathField = ROOT
    output_path: PathField = ROOT


class _ChainedState(_State):
    """A state that either continues at `Next` or ends its machine."""

    @model_validator(mode="after")
    def _require_next_or_end(self) -> _ChainedState:
        if bool(self.next) == self.end:
            raise ValueError("exactly one of 'Next' or 'End: true' is required")
        return self


class _RecoverableState(_ChainedState):
    """A state with a result and Retry/Catch rules (Task, Parallel, Map)."""

    result_path: ResultPathField = ROOT
    result_selector: TemplateField = None
    retry: tuple[Retrier, ...] = ()
    catch: tuple[Catcher, ...] = ()

    @model_validator(mode="after")
    def _check_rules(self) -> _RecoverableState:
        check_rule_order(self.retry, "Retry")
        check_rule_order(self.catch, "Catch")
        return self


class PassState(_ChainedState):
    type: Literal["Pass"]
    result: Any = None
    result_path: ResultPathField = ROOT
    parameters: TemplateField = None

    @property
    def has_result(self) -> bool:
        return "result" in self.model_fields_set


class TaskState(_RecoverableState):
    type: Literal["Task"]
    resource: ResourceField
    parameters: TemplateField = None
    timeout_seconds: float | None = Field(default=None, gt=0)


class ChoiceState(_State):
    type: Literal["Choice"]
    choices: tuple[ChoiceRuleField, ...]
    default: str | None = None

    @field_validator("choices")
    @classmethod
    def _require_choices(cls, value: tuple[ChoiceRule, ...]) -> tuple[ChoiceRule, ...]:
        if not value:
            raise ValueError("a Choice state needs at least one rule in 'Choices'")
        return value


class WaitState(_ChainedState):
    type: Literal["Wait"]
    seconds: float | None = Field(default=None, ge=0)
    seconds_path: PathField = None
    timestamp: datetime | None = None
    timestamp_path: PathField = None

    @model_validator(mode="after")
    def _require_one_duration(self) -> WaitState:
        given = [
            v
            for v in (self.seconds, self.seconds_path, self.timestamp, self.timestamp_path)
            if v is not None
        ]
        if len(given) != 1:
            raise ValueError(
                "exactly one of 'Seconds', 'SecondsPath', 'Timestamp' or 'TimestampPath' is required"
            )
        if self.timestamp is not None and self.timestamp.tzinfo is None:
            raise ValueError("'Timestamp' must carry a UTC offset")
        return self


class SucceedState(_State):
    type: Literal["Succeed"]


class FailState(_State):
    type: Literal["Fail"]
    error: str | None = None
    cause: str | None = None


class ParallelState(_RecoverableState):
    type: Literal["Parallel"]
    branches: tuple[StateMachine, ...]
    parameters: TemplateField = None

    @field_validator("branches")
    @classmethod
    def _require_branches(cls, value: tuple[StateMachine, ...]) -> tuple[StateMachine, ...]:
        if not value:
            raise ValueError("a Parallel state needs at least one entry in 'Branches'")
        return value


class MapState(_RecoverableState):
    type: Literal["Map"]
    iterator: StateMachine | None = None
    item_processor: StateMachine | None = None
    items_path: PathField = ROOT
    item_selector: TemplateField = None
    parameters: TemplateField = None
    max_concurrency: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _require_processor(self) -> MapState:
        if (self.iterator is None) == (self.item_processor is None):
            raise ValueError("exactly one of 'Iterator' or 'ItemProcessor' is required")
        return self

    @property
    def processor(self) -> StateMachine:
        machine = self.item_processor or self.iterator
        assert machine is not None
        return machine

    @property
    def selector(self) -> Any:
        # `Parameters` is the older spelling of `ItemSelector` on Map states.
        return self.item_selector or self.parameters


AnyState = (
    PassState | TaskState | ChoiceState | WaitState | SucceedState | FailState | ParallelState | MapState
)
State = Annotated[AnyState, Field(discriminator="type")]


class StateMachine(DefinitionModel):
    """A (sub-)machine: the entry point and the name-addressed graph of states."""

    start_at: str
    states: dict[str, State]
    timeout_seconds: int | None = Field(default=None, gt=0)
    comment: str | None = None
    version: str | None = None

    @field_validator("states")
    @classmethod
    def _name_states(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value:
            raise ValueError("'States' must define at least one state")
        return {
            key: state if state.name else state.model_copy(update={"name": key})
            for key, state in value.items()
        }

    def state(self, name: str) -> AnyState:
        """Look up the state a transition points at."""
        try:
            return self.states[name]
        except KeyError:
            raise InvalidBranchError(name) from None


ParallelState.model_rebuild()
MapState.model_rebuild()
StateMachine.model_rebuild()


def compile_state_machine(definition: dict[str, Any]) -> StateMachine:
    """Validate a decoded JSON definition into a `StateMachine`.

    Raises the most specific `DefinitionError` available: the error raised by a
    path, resource or rule parser when there is one, `UnknownStateTypeError`
    for an unrecognised `Type`, and a plain `DefinitionError` otherwise.
    """
    if not isinstance(definition, dict):
        raise DefinitionError("a state machine definition must be a JSON object")
    try:
        return StateMachine.model_validate(definition)
    except ValidationError as e:
        for detail in e.errors():
            cause = (detail.get("ctx") or {}).get("error")
            if isinstance(cause, DefinitionError):
                raise cause from e
        for detail in e.errors():
            if detail["type"] in {"union_tag_invalid", "union_tag_not_found"}:
                location = ".".join(str(part) for part in detail["loc"])
                raise UnknownStateTypeError(f"unknown state type at {location}: {detail['msg']}") from e
        raise DefinitionError(str(e)) from e
