"""Module entrypoint shim.

The CLI is implemented in `step_runner.runner.main`.
"""

from __future__ import annotations

from step_runner.runner.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
