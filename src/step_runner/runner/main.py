"""CLI entrypoint for the local runner.

Exit codes:
- 0: the execution succeeded (output JSON is printed to stdout)
- 1: the execution failed, or the command crashed
- 2: configuration, definition or input error
- 3: the execution was cancelled or timed out
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType

from pydantic import ValidationError

from step_runner import __version__
from step_runner.runner.config import RunnerSettings
from step_runner.runner.loader import load_definition
from step_runner.runner.logging import configure_logging
from step_runner.runner.workflow.context import CancellationToken
from step_runner.runner.workflow.errors import (
    DefinitionError,
    ExecutionCancelledError,
    ExecutionFailedError,
    InputDecodeError,
)
from step_runner.runner.workflow.executor import execute

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="step-runner",
        description="Run JSON state machine definitions locally",
    )
    parser.add_argument("--version", action="version", version=f"step-runner {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser(
        "start-execution",
        help="Execute a state machine definition and print its output",
    )
    start.add_argument(
        "--definition",
        type=Path,
        required=True,
        help="Path to the state machine definition (JSON)",
    )
    start.add_argument(
        "--input",
        type=Path,
        default=None,
        help="Path to the execution input (JSON). Defaults to stdin when piped, else {}",
    )
    start.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Execution timeout in seconds (overrides the definition's TimeoutSeconds)",
    )

    validate = subparsers.add_parser("validate", help="Compile a definition and report errors")
    validate.add_argument(
        "--definition",
        type=Path,
        required=True,
        help="Path to the state machine definition (JSON)",
    )

    return parser


def _interrupt_handler(token: CancellationToken) -> Callable[[int, FrameType | None], None]:
    """Build a SIGINT handler that cancels `token` off the interrupted thread.

    The handler may fire while the main thread holds the token's lock, so the
    cancellation runs in a separate thread.
    """

    def _handle(signum: int, frame: FrameType | None) -> None:
        threading.Thread(target=token.cancel, name="step-runner-cancel", daemon=True).start()

    return _handle


def _read_input(path: Path | None) -> str | None:
    if path is not None:
        return path.read_text(encoding="utf-8")
    if not sys.stdin.isatty():
        return sys.stdin.read()
    return None


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RunnerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    # stdout carries the execution output only.
    configure_logging(settings.log_level, stream=sys.stderr)

    try:
        workflow = load_definition(args.definition)

        if args.command == "validate":
            print(f"Definition is valid: {len(workflow.states)} states, starts at {workflow.start_at}")
            return 0

        if args.command == "start-execution":
            if args.timeout is not None:
                workflow = workflow.model_copy(update={"timeout_seconds": args.timeout})
            raw_input = _read_input(args.input)

            token = CancellationToken()
            previous = signal.signal(signal.SIGINT, _interrupt_handler(token))
            try:
                output = execute(token, workflow, raw_input, logger, settings=settings)
            finally:
                signal.signal(signal.SIGINT, previous)

            print(output.decode("utf-8"))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (DefinitionError, InputDecodeError, OSError) as e:
        logger.error(str(e), extra={"error_type": type(e).__name__})
        print(str(e), file=sys.stderr)
        return 2

    except ExecutionFailedError as e:
        print(f"{e.error}: {e.cause}" if e.cause else e.error, file=sys.stderr)
        return 1

    except ExecutionCancelledError as e:
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
