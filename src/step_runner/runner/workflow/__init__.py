"""State machine workflow engine.

This package holds the pieces needed to run a JSON state machine definition:
- reference paths for selecting and placing data (`paths`)
- the compiled definition model (`state_machine`, `choice`, `policy`)
- Task resources (`actions`)
- the data-flow pipeline and the execution engine (`dataflow`, `executor`)
"""

from .context import CancellationToken, ExecutionContext
from .executor import execute, execute_async
from .paths import ReferencePath, parse
from .state_machine import StateMachine, compile_state_machine

__all__ = [
    "CancellationToken",
    "ExecutionContext",
    "ReferencePath",
    "StateMachine",
    "compile_state_machine",
    "execute",
    "execute_async",
    "parse",
]
