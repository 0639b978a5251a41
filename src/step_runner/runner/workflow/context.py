"""Per-run execution context and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import RunnerSettings
    from .state_machine import StateMachine


class CancellationToken:
    """A thread-safe cancellation flag.

    `cancel()` may be called from any thread; registered callbacks run once,
    in the cancelling thread. Child tokens are cancelled together with their
    parent.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run `callback` on cancellation (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def child(self) -> CancellationToken:
        token = CancellationToken()
        self.add_callback(token.cancel)
        return token

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True, slots=True)
class MapItem:
    index: int
    value: Any


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Read-only facts about one run, threaded through every evaluation call."""

    workflow: StateMachine
    token: CancellationToken
    logger: logging.Logger
    settings: RunnerSettings
    input: Any = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    map_item: MapItem | None = None

    def log_fields(self) -> dict[str, Any]:
        return {"run_id": self.run_id}

    def for_map_item(self, index: int, value: Any) -> ExecutionContext:
        return replace(self, map_item=MapItem(index=index, value=value))

    def context_document(self, state_name: str, entered: datetime, retry_count: int = 0) -> dict[str, Any]:
        """The document `$$` paths are evaluated against."""
        document: dict[str, Any] = {
            "Execution": {
                "Id": self.run_id,
                "Input": self.input,
                "Name": self.run_id,
                "StartTime": self.start_time.isoformat(),
            },
            "StateMachine": {
                "Id": self.run_id,
                "Name": self.workflow.comment or "",
            },
            "State": {
                "Name": state_name,
                "EnteredTime": entered.isoformat(),
                "RetryCount": retry_count,
            },
        }
        if self.map_item is not None:
            document["Map"] = {"Item": {"Index": self.map_item.index, "Value": self.map_item.value}}
        return document
