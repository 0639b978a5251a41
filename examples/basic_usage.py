#!/usr/bin/env python3
"""Programmatic execution example.

This demonstrates using the runner components directly:

* load settings from `.env`
* compile a small state machine from a Python dict
* execute it against an input document and print the output

The input is passed as an argument (JSON text).
"""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from step_runner.runner.config import RunnerSettings
from step_runner.runner.loader import compile_definition
from step_runner.runner.logging import configure_logging
from step_runner.runner.workflow import CancellationToken, execute
from step_runner.runner.workflow.errors import ExecutionFailedError

DEFINITION = {
    "Comment": "Route a number to a greeting",
    "StartAt": "Classify",
    "States": {
        "Classify": {
            "Type": "Choice",
            "Choices": [
                {"Variable": "$.n", "NumericGreaterThan": 3, "Next": "Big"},
            ],
            "Default": "Small",
        },
        "Big": {
            "Type": "Task",
            "Resource": "script:echo",
            "Parameters": {"args": ["big"]},
            "ResultSelector": {"greeting.$": "$.result"},
            "ResultPath": "$.output",
            "End": True,
        },
        "Small": {"Type": "Pass", "Result": "small", "ResultPath": "$.output", "End": True},
    },
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute a state machine (programmatic example).")
    parser.add_argument("--input", default='{"n": 5}', help="Execution input as JSON text")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = RunnerSettings()
    configure_logging(settings.log_level)

    workflow = compile_definition(DEFINITION)

    try:
        output = execute(
            CancellationToken(),
            workflow,
            args.input,
            logging.getLogger("basic_usage"),
            settings=settings,
        )
    except ExecutionFailedError as exc:
        print(f"Execution failed: {exc.error} ({exc.cause})")
        return 1

    print(output.decode("utf-8"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
