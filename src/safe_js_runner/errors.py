from __future__ import annotations

import re

TIMEOUT_PATTERN = re.compile(r"timed?\s*out|execution time", re.IGNORECASE)


class ValidationError(ValueError):
    """Raised when an execution request does not match the accepted shape.

    Example:
        ```python
        raise ValidationError("language", "must be 'javascript' or 'html'")
        ```
    """

    def __init__(self, field: str, reason: str) -> None:
        """Store the offending field name alongside the message.

        Example:
            ```python
            err = ValidationError("code", "must be a string")
            assert err.field == "code"
            ```
        """
        super().__init__(f"Invalid '{field}': {reason}")
        self.field = field
        self.reason = reason


def timeout_message(timeout_ms: int) -> str:
    """Return the error text reported when the time budget is exhausted.

    Example:
        ```python
        timeout_message(5000)  # "Execution timed out after 5000ms"
        ```
    """
    return f"Execution timed out after {timeout_ms}ms"


def is_timeout_error(error: str | None) -> bool:
    """Tell whether an error string reports a timeout rather than a logic error.

    Example:
        ```python
        is_timeout_error("Execution timed out after 5000ms")  # True
        ```
    """
    if not error:
        return False
    return TIMEOUT_PATTERN.search(error) is not None
