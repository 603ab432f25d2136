from __future__ import annotations

import json
import logging
import subprocess
import sys
from pathlib import Path

from ..errors import timeout_message
from .types import ExecutionOutcome, WorkerRequest

logger = logging.getLogger(__name__)

# Time granted on top of the evaluation budget for interpreter start-up,
# engine import and context creation. The worker stops evaluation itself at
# the budget; this deadline only catches a worker that fails to.
STARTUP_ALLOWANCE_MS = 2000


def _worker_path() -> Path:
    """Return the absolute path to the worker module file.

    Example:
        ```python
        path = _worker_path()
        ```
    """
    return Path(__file__).resolve().parents[1] / "worker.py"


class LocalEngine:
    """Execute code in a short-lived local worker process.

    Each request gets its own interpreter process. The worker stops its own
    evaluation at the time budget; the process is killed if it is still
    running once the budget plus the start-up allowance has passed.

    Example:
        ```python
        engine = LocalEngine()
        ```
    """

    def __init__(
        self,
        *,
        python_executable: str | None = None,
        startup_allowance_ms: int = STARTUP_ALLOWANCE_MS,
    ) -> None:
        """Initialize a local engine bound to a Python interpreter.

        Example:
            ```python
            engine = LocalEngine(python_executable="/usr/bin/python3")
            ```
        """
        if python_executable is not None and not python_executable.strip():
            raise ValueError("LocalEngine requires a non-empty 'python_executable'")
        if startup_allowance_ms < 0:
            raise ValueError("LocalEngine requires a non-negative integer 'startup_allowance_ms'")
        self._python = python_executable or sys.executable
        self._startup_allowance_ms = startup_allowance_ms

    def execute(self, request: WorkerRequest) -> ExecutionOutcome:
        """Execute one request in a worker process, killing it at the deadline.

        Example:
            ```python
            outcome = engine.execute(WorkerRequest(payload={"code": "1"}, timeout_ms=5000))
            ```
        """
        cmd = [self._python, str(_worker_path())]
        deadline_ms = request.timeout_ms + self._startup_allowance_ms
        try:
            completed = subprocess.run(
                cmd,
                input=json.dumps(request.payload),
                capture_output=True,
                text=True,
                timeout=deadline_ms / 1000,
                check=False,
            )
        except subprocess.TimeoutExpired:
            # subprocess.run has already killed and reaped the worker here.
            logger.warning("Worker still running after %sms and was killed", deadline_ms)
            return ExecutionOutcome(
                stdout="",
                stderr="",
                returncode=124,
                timed_out=True,
                error=timeout_message(request.timeout_ms),
            )
        except OSError as exc:
            logger.error("Could not start worker %s: %s", cmd, exc)
            return ExecutionOutcome(
                stdout="",
                stderr="",
                returncode=127,
                timed_out=False,
                error=f"Could not start worker process: {exc}",
            )
        logger.debug("Worker exited with code %s", completed.returncode)
        return ExecutionOutcome(
            stdout=completed.stdout,
            stderr=completed.stderr,
            returncode=completed.returncode,
            timed_out=False,
        )
