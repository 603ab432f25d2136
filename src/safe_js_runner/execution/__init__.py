from .engine import ExecutionEngine
from .local_engine import LocalEngine
from .types import ExecutionOutcome, WorkerRequest

__all__ = [
    "ExecutionEngine",
    "ExecutionOutcome",
    "LocalEngine",
    "WorkerRequest",
]
