"""Test configuration and fixtures."""

import logging
import os
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from step_runner.runner.config import RunnerSettings
from step_runner.runner.workflow.context import CancellationToken


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    """Provide a directory searched for `script:` resources."""
    directory = tmp_path / "scripts"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(scripts_dir: Path) -> RunnerSettings:
    """Provide runner settings that don't depend on the local `.env`."""
    return RunnerSettings(
        _env_file=None,
        LOG_LEVEL="DEBUG",
        STEP_RUNNER_KILL_GRACE_SECONDS=1.0,
        STEP_RUNNER_SCRIPT_PATH=str(scripts_dir),
    )


@pytest.fixture
def token() -> CancellationToken:
    """Provide a fresh cancellation token."""
    return CancellationToken()


@pytest.fixture
def logger() -> logging.Logger:
    """Provide the logger passed to executions."""
    return logging.getLogger("step_runner.tests")


@pytest.fixture
def write_script(scripts_dir: Path) -> Callable[[str, str], Path]:
    """Write an executable shell script into the scripts directory."""

    def _write(name: str, body: str) -> Path:
        path = scripts_dir / name
        path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("STEP_RUNNER_") or key == "LOG_LEVEL":
            monkeypatch.delenv(key, raising=False)
