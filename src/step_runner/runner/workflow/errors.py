"""Error taxonomy for compiling and executing state machines.

Errors fall into four families:

- definition errors: authoring defects found while compiling (never retried)
- state-level errors (`StatesError`): runtime failures of one state, routed to
  the state's Retry/Catch rules
- engine errors: broken traversal or top-level I/O, always fatal
- execution outcomes: a run that failed or was cancelled
"""

from __future__ import annotations

# Reserved error names.
STATES_ALL = "States.ALL"
STATES_RUNTIME = "States.Runtime"
STATES_TASK_FAILED = "States.TaskFailed"
STATES_TIMEOUT = "States.Timeout"
STATES_NO_CHOICE_MATCHED = "States.NoChoiceMatched"
STATES_PARAMETER_PATH_FAILURE = "States.ParameterPathFailure"
STATES_RESULT_PATH_MATCH_FAILURE = "States.ResultPathMatchFailure"
STATES_FAIL = "States.Fail"


class WorkflowError(Exception):
    """Base class for every error raised by the runner."""


# ---------------------------------------------------------------------------
# Definition errors
# ---------------------------------------------------------------------------


class DefinitionError(WorkflowError, ValueError):
    """The state machine definition is invalid."""


class PathSyntaxError(DefinitionError):
    """A path expression could not be parsed."""


class NotReferencePathError(DefinitionError):
    """A path parsed, but uses an operator reference paths may not contain."""

    def __init__(self, path: str, operator: str) -> None:
        super().__init__(f"the path is not a reference path: {path!r} uses {operator!r}")
        self.path = path
        self.operator = operator


class InvalidResourceError(DefinitionError):
    """A Task resource is not of the form `scheme:name`."""


class UnsupportedResourceError(DefinitionError):
    """A Task resource uses a scheme the runner does not know."""


class ResourceNotImplementedError(DefinitionError):
    """A Task resource uses a declared scheme that has no implementation yet."""


class DefinitionLoadError(DefinitionError):
    """A definition file could not be read or decoded."""


# ---------------------------------------------------------------------------
# State-level errors
# ---------------------------------------------------------------------------


class StatesError(WorkflowError):
    """A recoverable-by-policy failure of a single state.

    `error` is the error name matched against `ErrorEquals` in Retry/Catch
    rules; `cause` is a human readable explanation.
    """

    def __init__(self, error: str, cause: str = "") -> None:
        super().__init__(f"{error}: {cause}" if cause else error)
        self.error = error
        self.cause = cause

    def to_payload(self) -> dict[str, str]:
        """Error output injected into the data flow by a Catch rule."""
        return {"Error": self.error, "Cause": self.cause}


class PathNotFoundError(WorkflowError, LookupError):
    """A definite path did not resolve against a document."""

    def __init__(self, path: str) -> None:
        super().__init__(f"path {path!r} does not resolve")
        self.path = path


# ---------------------------------------------------------------------------
# Engine errors
# ---------------------------------------------------------------------------


class EngineError(WorkflowError):
    """The traversal itself is broken; always fatal."""


class UnknownStateTypeError(EngineError, DefinitionError):
    """A state declares a `Type` outside the closed set of state kinds."""


class InvalidBranchError(EngineError):
    """A transition names a state that does not exist in its machine."""

    def __init__(self, name: str) -> None:
        super().__init__(f"'next' key is invalid: {name}")
        self.name = name


class InputDecodeError(EngineError):
    pass


class OutputEncodeError(EngineError):
    pass


# ---------------------------------------------------------------------------
# Execution outcomes
# ---------------------------------------------------------------------------


class ExecutionFailedError(WorkflowError):
    """The run ended in failure: a Fail state or an unhandled state error."""

    def __init__(self, error: str, cause: str = "") -> None:
        super().__init__(f"execution failed: {error}" + (f" ({cause})" if cause else ""))
        self.error = error
        self.cause = cause


class ExecutionCancelledError(WorkflowError):
    """The run was cancelled before it could finish."""


class ExecutionTimeoutError(ExecutionCancelledError):
    """The run exceeded the state machine's TimeoutSeconds."""
