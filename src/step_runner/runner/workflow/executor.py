"""Execution engine: walks a compiled state machine against a JSON input.

`execute()` is the synchronous entry point; it drives `execute_async()` on a
fresh event loop. Each state runs through the shared data-flow pipeline
(`dataflow`), its kind-specific evaluation, and the Retry/Catch policy
(`policy.decide`). Parallel branches and Map iterations run as asyncio tasks
of the same run, so cancelling the run cancels all of them.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any, Never, NoReturn, TypeVar

from ..config import RunnerSettings
from .actions import invoke_resource
from .context import CancellationToken, ExecutionContext
from .dataflow import place_result, select, shape
from .errors import (
    STATES_FAIL,
    STATES_NO_CHOICE_MATCHED,
    STATES_RUNTIME,
    STATES_TIMEOUT,
    ExecutionCancelledError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InputDecodeError,
    OutputEncodeError,
    StatesError,
    UnknownStateTypeError,
)
from .policy import decide
from .state_machine import (
    AnyState,
    ChoiceState,
    FailState,
    MapState,
    ParallelState,
    PassState,
    StateMachine,
    SucceedState,
    TaskState,
    WaitState,
)

T = TypeVar("T")


def execute(
    token: CancellationToken,
    workflow: StateMachine,
    raw_input: bytes | str | None,
    logger: logging.Logger,
    *,
    settings: RunnerSettings | None = None,
) -> bytes:
    """Run `workflow` to completion and return its JSON-encoded output.

    Raises:
        InputDecodeError: `raw_input` is not valid JSON.
        ExecutionFailedError: a Fail state or an unhandled state error ended the run.
        ExecutionCancelledError: `token` was cancelled.
        ExecutionTimeoutError: the machine's TimeoutSeconds elapsed.
        EngineError / DefinitionError: the definition is broken at runtime.
    """
    return asyncio.run(execute_async(token, workflow, raw_input, logger, settings=settings))


async def execute_async(
    token: CancellationToken,
    workflow: StateMachine,
    raw_input: bytes | str | None,
    logger: logging.Logger,
    *,
    settings: RunnerSettings | None = None,
) -> bytes:
    data = _decode_input(raw_input)
    ctx = ExecutionContext(
        workflow=workflow,
        token=token,
        logger=logger,
        settings=settings or RunnerSettings(),
        input=data,
    )
    logger.info("Execution started", extra={**ctx.log_fields(), "start_at": workflow.start_at})

    loop = asyncio.get_running_loop()
    main = asyncio.current_task()
    assert main is not None

    def _cancel_main() -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(main.cancel)

    unregister = token.add_callback(_cancel_main)
    try:
        async with asyncio.timeout(workflow.timeout_seconds):
            output = await run_machine(workflow, data, ctx)
    except asyncio.CancelledError:
        if not token.cancelled:
            raise
        logger.warning("Execution cancelled", extra=ctx.log_fields())
        raise ExecutionCancelledError("execution cancelled") from None
    except TimeoutError:
        logger.warning(
            "Execution timed out",
            extra={**ctx.log_fields(), "timeout_seconds": workflow.timeout_seconds},
        )
        raise ExecutionTimeoutError(
            f"execution timed out after {workflow.timeout_seconds} seconds"
        ) from None
    except StatesError as e:
        logger.error(
            "Execution failed", extra={**ctx.log_fields(), "error": e.error, "cause": e.cause}
        )
        raise ExecutionFailedError(e.error, e.cause) from e
    finally:
        unregister()

    try:
        encoded = json.dumps(output).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise OutputEncodeError(f"unable to encode execution output: {e}") from e

    logger.info("Execution succeeded", extra=ctx.log_fields())
    return encoded


def _decode_input(raw_input: bytes | str | None) -> Any:
    if raw_input is None:
        return {}
    if isinstance(raw_input, bytes):
        try:
            raw_input = raw_input.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputDecodeError(f"input is not valid UTF-8: {e}") from e
    if not raw_input.strip():
        return {}
    try:
        return json.loads(raw_input)
    except json.JSONDecodeError as e:
        raise InputDecodeError(f"input is not valid JSON: {e}") from e


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


async def run_machine(machine: StateMachine, data: Any, ctx: ExecutionContext) -> Any:
    """Traverse `machine` from StartAt until a terminal state; return its output."""
    name = machine.start_at
    while True:
        if ctx.token.cancelled:
            raise ExecutionCancelledError("execution cancelled")

        state = machine.state(name)
        fields = {**ctx.log_fields(), "state": state.name, "type": state.type}
        ctx.logger.info("State entered", extra=fields)
        try:
            output, next_name = await _run_state(state, data, ctx)
        except StatesError as e:
            ctx.logger.warning("State failed", extra={**fields, "error": e.error, "cause": e.cause})
            raise
        ctx.logger.info(
            "State completed",
            extra={**ctx.log_fields(), "state": state.name, "type": state.type, "next": next_name},
        )
        if next_name is None:
            return output
        data = output
        name = next_name


async def _run_state(state: AnyState, raw_input: Any, ctx: ExecutionContext) -> tuple[Any, str | None]:
    """Evaluate one state, applying its Retry/Catch rules to state errors."""
    entered = datetime.now(tz=UTC)
    attempts: dict[int, int] = {}
    retry_count = 0

    while True:
        try:
            return await _evaluate(state, raw_input, ctx, entered, retry_count)
        except StatesError as e:
            if not isinstance(state, (TaskState, ParallelState, MapState)):
                raise

            decision = decide(
                retriers=state.retry, catchers=state.catch, error=e, attempts=attempts
            )
            fields = {**ctx.log_fields(), "state": state.name, "error": e.error, "cause": e.cause}

            if decision.kind == "retry":
                assert decision.retrier_index is not None
                attempts[decision.retrier_index] = attempts.get(decision.retrier_index, 0) + 1
                retry_count += 1
                ctx.logger.warning(
                    "Retrying state",
                    extra={
                        **fields,
                        "attempt": retry_count,
                        "delay_seconds": decision.delay_seconds,
                    },
                )
                await asyncio.sleep(decision.delay_seconds)
                continue

            if decision.kind == "catch":
                assert decision.catcher is not None
                ctx.logger.warning("Caught state error", extra={**fields, "next": decision.catcher.next})
                output = place_result(decision.catcher.result_path, raw_input, e.to_payload())
                return output, decision.catcher.next

            raise


async def _evaluate(
    state: AnyState,
    raw_input: Any,
    ctx: ExecutionContext,
    entered: datetime,
    retry_count: int,
) -> tuple[Any, str | None]:
    context = ctx.context_document(state.name, entered, retry_count)
    effective = select(state.input_path, raw_input, context)

    if isinstance(state, PassState):
        value = shape(state.parameters, effective, context)
        result = copy.deepcopy(state.result) if state.has_result else value
        return _compose(state, raw_input, result, context), _next(state)

    if isinstance(state, TaskState):
        payload = shape(state.parameters, effective, context)
        result = await _invoke_task(state, payload, ctx)
        result = shape(state.result_selector, result, context)
        return _compose(state, raw_input, result, context), _next(state)

    if isinstance(state, ChoiceState):
        target = _choose(state, effective, context)
        return select(state.output_path, effective, context), target

    if isinstance(state, WaitState):
        await asyncio.sleep(_wait_seconds(state, effective, context))
        return select(state.output_path, effective, context), _next(state)

    if isinstance(state, SucceedState):
        return select(state.output_path, effective, context), None

    if isinstance(state, FailState):
        raise StatesError(state.error or STATES_FAIL, state.cause or "")

    if isinstance(state, ParallelState):
        value = shape(state.parameters, effective, context)
        jobs = [
            functools.partial(run_machine, branch, copy.deepcopy(value), ctx)
            for branch in state.branches
        ]
        result = shape(state.result_selector, await run_ordered(jobs), context)
        return _compose(state, raw_input, result, context), _next(state)

    if isinstance(state, MapState):
        result = await _run_map(state, effective, ctx, entered, retry_count)
        result = shape(state.result_selector, result, context)
        return _compose(state, raw_input, result, context), _next(state)

    _unreachable(state)


def _unreachable(state: Never) -> NoReturn:
    raise UnknownStateTypeError(f"unknown state type: {type(state).__name__}")


def _next(state: PassState | TaskState | WaitState | ParallelState | MapState) -> str | None:
    return None if state.end else state.next


def _compose(
    state: PassState | TaskState | ParallelState | MapState,
    raw_input: Any,
    result: Any,
    context: dict[str, Any],
) -> Any:
    combined = place_result(state.result_path, raw_input, result)
    return select(state.output_path, combined, context)


# ---------------------------------------------------------------------------
# Kind-specific evaluation
# ---------------------------------------------------------------------------


async def _invoke_task(state: TaskState, payload: Any, ctx: ExecutionContext) -> Any:
    ctx.logger.debug(
        "Invoking task resource",
        extra={**ctx.log_fields(), "state": state.name, "resource": str(state.resource)},
    )
    if state.timeout_seconds is None:
        return await invoke_resource(state.resource, payload, ctx)
    try:
        async with asyncio.timeout(state.timeout_seconds):
            return await invoke_resource(state.resource, payload, ctx)
    except TimeoutError:
        raise StatesError(
            STATES_TIMEOUT, f"task did not finish within {state.timeout_seconds} seconds"
        ) from None


def _choose(state: ChoiceState, data: Any, context: dict[str, Any]) -> str:
    for rule in state.choices:
        if rule.matches(data, context):
            return rule.next
    if state.default is None:
        raise StatesError(
            STATES_NO_CHOICE_MATCHED,
            f"no choice rule matched and state {state.name!r} has no Default",
        )
    return state.default


def _wait_seconds(state: WaitState, data: Any, context: dict[str, Any]) -> float:
    if state.seconds is not None:
        return state.seconds

    if state.seconds_path is not None:
        seconds = select(state.seconds_path, data, context)
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 0:
            raise StatesError(
                STATES_RUNTIME,
                f"SecondsPath '{state.seconds_path}' must select a non-negative number",
            )
        return float(seconds)

    if state.timestamp is not None:
        until = state.timestamp
    else:
        assert state.timestamp_path is not None
        raw = select(state.timestamp_path, data, context)
        try:
            until = datetime.fromisoformat(raw) if isinstance(raw, str) else None
        except ValueError:
            until = None
        if until is None or until.tzinfo is None:
            raise StatesError(
                STATES_RUNTIME,
                f"TimestampPath '{state.timestamp_path}' must select an ISO-8601 timestamp",
            )
    return max(0.0, (until - datetime.now(tz=UTC)).total_seconds())


async def _run_map(
    state: MapState,
    data: Any,
    ctx: ExecutionContext,
    entered: datetime,
    retry_count: int,
) -> list[Any]:
    items = select(state.items_path, data, ctx.context_document(state.name, entered, retry_count))
    if not isinstance(items, list):
        raise StatesError(
            STATES_RUNTIME, f"ItemsPath '{state.items_path}' must select an array"
        )

    async def run_item(index: int, item: Any) -> Any:
        item_ctx = ctx.for_map_item(index, item)
        context = item_ctx.context_document(state.name, entered, retry_count)
        selector = state.selector
        item_input = item if selector is None else selector.render(data, context)
        return await run_machine(state.processor, copy.deepcopy(item_input), item_ctx)

    limit = state.max_concurrency or ctx.settings.map_max_concurrency or None
    jobs = [functools.partial(run_item, index, item) for index, item in enumerate(items)]
    return await run_ordered(jobs, limit=limit)


async def run_ordered(
    jobs: Sequence[Callable[[], Awaitable[T]]], limit: int | None = None
) -> list[T]:
    """Run `jobs` concurrently and return their results in job order.

    At most `limit` jobs run at once (unbounded when `None`). The first failure
    cancels every job still running; once they have all finished, the failure
    of the lowest-indexed job is raised.
    """
    results: list[Any] = [None] * len(jobs)
    if not jobs:
        return results
    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run(index: int, job: Callable[[], Awaitable[T]]) -> None:
        if semaphore is None:
            results[index] = await job()
            return
        async with semaphore:
            results[index] = await job()

    tasks = [asyncio.create_task(run(index, job)) for index, job in enumerate(jobs)]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
    return results
