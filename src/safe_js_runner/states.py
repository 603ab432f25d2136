from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from .request import Language


@dataclass(frozen=True, slots=True)
class RunningState:
    """Acknowledgment emitted before any execution starts.

    Example:
        ```python
        state = RunningState(code="1 + 1", language=Language.JAVASCRIPT)
        ```
    """

    state: ClassVar[Literal["running"]] = "running"

    code: str
    language: Language

    def to_dict(self) -> dict[str, Any]:
        """Render the wire record for this state.

        Example:
            ```python
            RunningState("1", Language.JAVASCRIPT).to_dict()["state"]  # "running"
            ```
        """
        return {"state": self.state, "code": self.code, "language": self.language.value}


@dataclass(frozen=True, slots=True)
class CompleteState:
    """Terminal record carrying output, logs, error and elapsed milliseconds.

    `output` and `error` are never both set; `logs` is always a string.
    `timed_out` is set by the supervisor when the time budget ran out, never
    inferred from the error text.

    Example:
        ```python
        state = CompleteState("2 + 2", Language.JAVASCRIPT, output="4", execution_time=3)
        ```
    """

    state: ClassVar[Literal["complete"]] = "complete"

    code: str
    language: Language
    output: str | None = None
    logs: str = ""
    error: str | None = None
    execution_time: int = 0
    timed_out: bool = False

    def __post_init__(self) -> None:
        """Reject records that carry both an output and an error.

        Example:
            ```python
            CompleteState("x", Language.JAVASCRIPT, error="x is not defined")
            ```
        """
        if self.output is not None and self.error is not None:
            raise ValueError("CompleteState cannot carry both 'output' and 'error'")
        if self.timed_out and self.error is None:
            raise ValueError("A timed-out CompleteState must carry an 'error'")

    @property
    def ok(self) -> bool:
        """True when the execution finished without an error.

        Example:
            ```python
            CompleteState("1", Language.JAVASCRIPT, output="1").ok  # True
            ```
        """
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Render the wire record, omitting `output` and `error` when absent.

        Example:
            ```python
            record = CompleteState("1", Language.JAVASCRIPT, output="1").to_dict()
            assert "error" not in record
            ```
        """
        record: dict[str, Any] = {
            "state": self.state,
            "code": self.code,
            "language": self.language.value,
            "logs": self.logs,
            "executionTime": self.execution_time,
        }
        if self.output is not None:
            record["output"] = self.output
        if self.error is not None:
            record["error"] = self.error
        return record


ExecutionState = RunningState | CompleteState
