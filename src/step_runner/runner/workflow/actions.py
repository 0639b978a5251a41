"""Task resources.

A Task's `Resource` is `<scheme>:<name>`. It is parsed into a `Resource`
record when the definition is compiled, and dispatched to the action
registered for its scheme when the Task runs.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from .errors import (
    STATES_TASK_FAILED,
    InvalidResourceError,
    ResourceNotImplementedError,
    StatesError,
    UnsupportedResourceError,
)

if TYPE_CHECKING:
    from .context import ExecutionContext


SCRIPT = "script"
COMMAND = "command"
CURL = "curl"
SCHEMES = (SCRIPT, COMMAND, CURL)


@dataclass(frozen=True, slots=True)
class Resource:
    scheme: str
    name: str

    def __str__(self) -> str:
        return f"{self.scheme}:{self.name}"

    @staticmethod
    def parse(value: object) -> Resource:
        if isinstance(value, Resource):
            return value
        if not isinstance(value, str):
            raise InvalidResourceError("Resource must be a string")

        scheme, sep, name = value.partition(":")
        if not sep or not scheme.strip() or not name.strip():
            raise InvalidResourceError(f"invalid resource: {value!r} (expected '<scheme>:<name>')")
        if scheme not in SCHEMES:
            raise UnsupportedResourceError(
                f"unsupported resource type {scheme!r} in {value!r}; expected one of {SCHEMES}"
            )
        return Resource(scheme=scheme, name=name)


class Action(Protocol):
    """Runs a Task resource against the Task's input and returns its raw result."""

    async def invoke(self, resource: Resource, payload: Any, ctx: ExecutionContext) -> Any: ...


def _script_args(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        raise StatesError(STATES_TASK_FAILED, "invalid task input: script input must be an object")
    args = payload.get("args", [])
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise StatesError(
            STATES_TASK_FAILED, "invalid task input: 'args' must be an array of strings"
        )
    return list(args)


@dataclass(frozen=True, slots=True)
class RunScript(Action):
    """Run an executable found on the search path; output `{"result": stdout}`.

    The subprocess is terminated (then killed after the grace period) when the
    surrounding task is cancelled, and always reaped before returning.
    """

    def _resolve(self, name: str, ctx: ExecutionContext) -> str:
        search_path = os.environ.get("PATH", os.defpath)
        extra = ctx.settings.script_search_path
        if extra:
            search_path = os.pathsep.join([str(extra), search_path])
        exe = shutil.which(name, path=search_path)
        if exe is None:
            raise StatesError(STATES_TASK_FAILED, f'exec: "{name}": executable file not found')
        return exe

    async def invoke(self, resource: Resource, payload: Any, ctx: ExecutionContext) -> Any:
        args = _script_args(payload)
        exe = self._resolve(resource.name, ctx)

        ctx.logger.debug(
            "Starting script", extra={**ctx.log_fields(), "executable": exe, "script_args": args}
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                exe,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StatesError(STATES_TASK_FAILED, str(e)) from e

        try:
            stdout, stderr = await proc.communicate()
        finally:
            if proc.returncode is None:
                await _terminate(proc, ctx)

        if proc.returncode != 0:
            cause = f"{resource} exited with status {proc.returncode}"
            message = stderr.decode("utf-8", errors="replace").strip()
            if message:
                cause = f"{cause}: {message}"
            raise StatesError(STATES_TASK_FAILED, cause)
        return {"result": stdout.decode("utf-8", errors="replace")}


async def _terminate(proc: asyncio.subprocess.Process, ctx: ExecutionContext) -> None:
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=ctx.settings.kill_grace_seconds)
    except TimeoutError:
        proc.kill()
        await proc.wait()
    ctx.logger.info("Terminated script subprocess", extra={**ctx.log_fields(), "pid": proc.pid})


@dataclass(frozen=True, slots=True)
class NotImplementedAction(Action):
    """Placeholder for declared schemes that have no implementation yet."""

    async def invoke(self, resource: Resource, payload: Any, ctx: ExecutionContext) -> Any:
        raise ResourceNotImplementedError(
            f"not implemented: Task state, resource type = {resource.scheme}"
        )


ACTIONS: dict[str, Action] = {
    SCRIPT: RunScript(),
    COMMAND: NotImplementedAction(),
    CURL: NotImplementedAction(),
}


async def invoke_resource(resource: Resource, payload: Any, ctx: ExecutionContext) -> Any:
    action = ACTIONS.get(resource.scheme)
    if action is None:
        raise UnsupportedResourceError(f"unsupported resource type {resource.scheme!r}")
    return await action.invoke(resource, payload, ctx)
