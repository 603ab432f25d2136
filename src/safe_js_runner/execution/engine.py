from __future__ import annotations

from typing import Protocol

from .types import ExecutionOutcome, WorkerRequest


class ExecutionEngine(Protocol):
    def execute(self, request: WorkerRequest) -> ExecutionOutcome:
        """Run one request under its time budget and return the raw outcome.

        Implementations must forcibly stop the evaluation when the budget is
        exhausted and report `timed_out=True` instead of raising.

        Example:
            ```python
            outcome = engine.execute(WorkerRequest(payload={"code": "1"}, timeout_ms=5000))
            ```
        """
        ...
