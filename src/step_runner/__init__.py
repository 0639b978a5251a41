"""Step Runner.

A local interpreter for JSON state machine definitions:
- configuration loaded from `.env`
- structured logging
- an execution engine for Pass, Task, Choice, Wait, Succeed, Fail, Parallel
  and Map states
"""

__version__ = "0.1.0"

from step_runner.runner.config import RunnerSettings

__all__ = ["__version__", "RunnerSettings"]
