import logging

from .capabilities import CAPABILITY_SET
from .errors import ValidationError, is_timeout_error
from .execution.local_engine import LocalEngine
from .policy import RunnerPolicy
from .request import ExecutionRequest, Language, validate_request
from .runner import astream_execution, execute, stream_execution
from .states import CompleteState, ExecutionState, RunningState
from .tool import CODE_EXECUTION_TOOL, CodeExecutionTool

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "CAPABILITY_SET",
    "CODE_EXECUTION_TOOL",
    "CodeExecutionTool",
    "CompleteState",
    "ExecutionRequest",
    "ExecutionState",
    "Language",
    "LocalEngine",
    "RunnerPolicy",
    "RunningState",
    "ValidationError",
    "astream_execution",
    "execute",
    "is_timeout_error",
    "stream_execution",
    "validate_request",
]
