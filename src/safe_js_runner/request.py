from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ValidationError


class Language(str, Enum):
    """Languages accepted by the engine.

    Example:
        ```python
        Language("html") is Language.HTML
        ```
    """

    JAVASCRIPT = "javascript"
    HTML = "html"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One validated `(code, language)` pair.

    Example:
        ```python
        req = ExecutionRequest(code="1 + 1")
        ```
    """

    code: str
    language: Language = Language.JAVASCRIPT


def _parse_language(value: Any) -> Language:
    """Map a raw language tag onto `Language`, rejecting anything unknown.

    Example:
        ```python
        _parse_language("javascript")  # Language.JAVASCRIPT
        ```
    """
    if isinstance(value, Language):
        return value
    if isinstance(value, str):
        for member in Language:
            if member.value == value:
                return member
    accepted = ", ".join(f"'{member.value}'" for member in Language)
    raise ValidationError("language", f"must be one of {accepted}, got {value!r}")


def validate_request(raw: Mapping[str, Any] | ExecutionRequest) -> ExecutionRequest:
    """Check raw input against the request contract and build an `ExecutionRequest`.

    A missing `language` defaults to javascript; any other unknown value is
    rejected. The code itself is never inspected.

    Example:
        ```python
        req = validate_request({"code": "console.log(1)"})
        assert req.language is Language.JAVASCRIPT
        ```
    """
    if isinstance(raw, ExecutionRequest):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("request", f"must be a mapping, got {type(raw).__name__}")
    if "code" not in raw:
        raise ValidationError("code", "is required")
    code = raw["code"]
    if not isinstance(code, str):
        raise ValidationError("code", f"must be a string, got {type(code).__name__}")
    if "language" not in raw:
        return ExecutionRequest(code=code)
    return ExecutionRequest(code=code, language=_parse_language(raw["language"]))
