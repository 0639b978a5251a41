"""Load state machine definitions from disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .workflow.errors import DefinitionLoadError
from .workflow.state_machine import StateMachine, compile_state_machine

logger = logging.getLogger(__name__)


def compile_definition(obj: Any) -> StateMachine:
    """Compile an already decoded JSON definition."""
    return compile_state_machine(obj)


def load_definition(path: Path) -> StateMachine:
    """Read, decode and compile the definition stored at `path`.

    Raises:
        DefinitionLoadError: the file can't be read or isn't valid JSON.
        DefinitionError: the document is not a valid state machine.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DefinitionLoadError(f"unable to read definition {path}: {e}") from e

    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise DefinitionLoadError(f"definition {path} is not valid JSON: {e}") from e

    machine = compile_definition(document)
    logger.debug(
        "Definition compiled",
        extra={"path": str(path), "start_at": machine.start_at, "states": len(machine.states)},
    )
    return machine
