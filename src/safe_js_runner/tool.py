from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .execution.engine import ExecutionEngine
from .policy import RunnerPolicy
from .request import Language
from .runner import stream_execution

TOOL_DESCRIPTION = (
    "Execute JavaScript code or render HTML visualizations. Use JavaScript for "
    "calculations, data transformations, and algorithms. Use HTML for interactive "
    "visualizations, charts (with CDN libraries like Chart.js, D3, Plotly), "
    "calculators, and mini-apps that benefit from visual rendering."
)


def _input_schema() -> dict[str, Any]:
    """Return the JSON Schema describing the tool input.

    Example:
        ```python
        schema = _input_schema()
        assert schema["required"] == ["code"]
        ```
    """
    return {
        "type": "object",
        "properties": {
            "code": {
                "type": "string",
                "description": "The code to execute or render",
            },
            "language": {
                "type": "string",
                "enum": [member.value for member in Language],
                "default": Language.JAVASCRIPT.value,
                "description": (
                    "Programming language: javascript for computation, "
                    "html for visual output"
                ),
            },
        },
        "required": ["code"],
    }


@dataclass(slots=True)
class CodeExecutionTool:
    """Descriptor that publishes the engine to an orchestrator as a callable tool.

    Example:
        ```python
        tool = CodeExecutionTool(policy=RunnerPolicy(timeout_ms=2000))
        records = list(tool.execute({"code": "1 + 1"}))
        ```
    """

    name: str = "execute_code"
    description: str = TOOL_DESCRIPTION
    input_schema: dict[str, Any] = field(default_factory=_input_schema)
    engine: ExecutionEngine | None = None
    policy: RunnerPolicy | None = None

    def execute(self, arguments: Mapping[str, Any]) -> Iterator[dict[str, Any]]:
        """Validate tool arguments and stream the two wire records.

        Example:
            ```python
            running, complete = CODE_EXECUTION_TOOL.execute({"code": "<b>x</b>", "language": "html"})
            ```
        """
        states = stream_execution(arguments, engine=self.engine, policy=self.policy)
        return (state.to_dict() for state in states)


CODE_EXECUTION_TOOL = CodeExecutionTool()
