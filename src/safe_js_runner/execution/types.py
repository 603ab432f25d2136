from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class WorkerRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = WorkerRequest(payload={"code": "1 + 1", "policy": {}}, timeout_ms=5000)
        ```
    """

    payload: dict[str, Any]
    timeout_ms: int


@dataclass(slots=True)
class ExecutionOutcome:
    """Normalized response returned by an execution engine.

    Example:
        ```python
        out = ExecutionOutcome(stdout="{}", stderr="", returncode=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool
    error: str | None = None
