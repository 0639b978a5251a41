"""Unit tests for Task resources."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

import pytest

from step_runner.runner.config import RunnerSettings
from step_runner.runner.loader import compile_definition
from step_runner.runner.workflow.actions import Resource, invoke_resource
from step_runner.runner.workflow.context import CancellationToken, ExecutionContext
from step_runner.runner.workflow.errors import (
    STATES_TASK_FAILED,
    InvalidResourceError,
    ResourceNotImplementedError,
    StatesError,
    UnsupportedResourceError,
)

WORKFLOW = compile_definition({"StartAt": "A", "States": {"A": {"Type": "Succeed"}}})


@pytest.fixture
def ctx(settings: RunnerSettings, token: CancellationToken, logger: logging.Logger) -> ExecutionContext:
    return ExecutionContext(workflow=WORKFLOW, token=token, logger=logger, settings=settings)


def test_resource_parse_splits_at_first_colon() -> None:
    resource = Resource.parse("script:tools:build")
    assert resource == Resource(scheme="script", name="tools:build")
    assert str(resource) == "script:tools:build"


@pytest.mark.parametrize("value", ["script", "script:", ":echo", "", 42])
def test_resource_parse_rejects_malformed_values(value: object) -> None:
    with pytest.raises(InvalidResourceError):
        Resource.parse(value)


def test_resource_parse_rejects_unknown_schemes() -> None:
    with pytest.raises(UnsupportedResourceError):
        Resource.parse("lambda:fn")


def test_script_returns_stdout(ctx: ExecutionContext) -> None:
    result = asyncio.run(invoke_resource(Resource.parse("script:echo"), {"args": ["hi"]}, ctx))
    assert result == {"result": "hi\n"}


def test_script_found_on_configured_search_path(
    ctx: ExecutionContext, write_script: Callable[[str, str], Path]
) -> None:
    write_script("greet", 'echo "hello $1"')
    result = asyncio.run(invoke_resource(Resource.parse("script:greet"), {"args": ["bob"]}, ctx))
    assert result == {"result": "hello bob\n"}


def test_script_non_zero_exit_is_task_failure(
    ctx: ExecutionContext, write_script: Callable[[str, str], Path]
) -> None:
    write_script("broken", "echo 'went wrong' >&2\nexit 3")
    with pytest.raises(StatesError) as excinfo:
        asyncio.run(invoke_resource(Resource.parse("script:broken"), {}, ctx))
    assert excinfo.value.error == STATES_TASK_FAILED
    assert "status 3" in excinfo.value.cause
    assert "went wrong" in excinfo.value.cause


def test_script_missing_executable_is_task_failure(ctx: ExecutionContext) -> None:
    with pytest.raises(StatesError) as excinfo:
        asyncio.run(invoke_resource(Resource.parse("script:no-such-tool-xyz"), {}, ctx))
    assert excinfo.value.error == STATES_TASK_FAILED


@pytest.mark.parametrize("payload", ["text", {"args": "oops"}, {"args": [1, 2]}])
def test_script_invalid_input_is_task_failure(ctx: ExecutionContext, payload: object) -> None:
    with pytest.raises(StatesError) as excinfo:
        asyncio.run(invoke_resource(Resource.parse("script:echo"), payload, ctx))
    assert excinfo.value.error == STATES_TASK_FAILED
    assert "invalid task input" in excinfo.value.cause


@pytest.mark.parametrize("scheme", ["command", "curl"])
def test_declared_but_unimplemented_schemes(ctx: ExecutionContext, scheme: str) -> None:
    with pytest.raises(ResourceNotImplementedError) as excinfo:
        asyncio.run(invoke_resource(Resource.parse(f"{scheme}:anything"), {}, ctx))
    assert f"resource type = {scheme}" in str(excinfo.value)


def test_script_logs_through_execution_logger(
    ctx: ExecutionContext, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger=ctx.logger.name)
    asyncio.run(invoke_resource(Resource.parse("script:echo"), {"args": ["hi"]}, ctx))

    started = [r for r in caplog.records if r.getMessage() == "Starting script"]
    assert len(started) == 1
    assert started[0].name == ctx.logger.name
    assert started[0].run_id == ctx.run_id


def test_cancelled_script_is_terminated_and_logged(
    ctx: ExecutionContext, write_script: Callable[[str, str], Path], caplog: pytest.LogCaptureFixture
) -> None:
    write_script("hang", "exec sleep 30")
    caplog.set_level(logging.DEBUG, logger=ctx.logger.name)

    async def run() -> None:
        await asyncio.wait_for(invoke_resource(Resource.parse("script:hang"), {}, ctx), timeout=0.5)

    with pytest.raises(TimeoutError):
        asyncio.run(run())

    terminated = [r for r in caplog.records if r.getMessage() == "Terminated script subprocess"]
    assert len(terminated) == 1
    assert terminated[0].name == ctx.logger.name
    assert terminated[0].run_id == ctx.run_id
