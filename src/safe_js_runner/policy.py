from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .capabilities import CAPABILITY_SET, validate_capabilities

TIMEOUT_ENV_VAR = "SAFE_JS_RUNNER_TIMEOUT_MS"


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return normalized policy dictionary.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_ms": 5000,
            "memory_limit_mb": 128,
            "max_output_kb": 128,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _positive_int(value: Any, field_name: str) -> int:
    """Validate a strictly positive integer policy field.

    Example:
        ```python
        timeout = _positive_int("5000", "timeout_ms")
        ```
    """
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{field_name}' must be an integer, got {value!r}") from None
    if number <= 0:
        raise ValueError(f"'{field_name}' must be positive, got {number}")
    return number


def _timeout_from_env(default: int) -> int:
    """Return the timeout budget, honouring the environment override.

    Example:
        ```python
        os.environ["SAFE_JS_RUNNER_TIMEOUT_MS"] = "2000"
        _timeout_from_env(5000)  # 2000
        ```
    """
    raw = os.environ.get(TIMEOUT_ENV_VAR)
    if raw is None or not raw.strip():
        return default
    return _positive_int(raw.strip(), TIMEOUT_ENV_VAR)


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_TIMEOUT_MS = _positive_int(_DEFAULT_POLICY_RAW.get("timeout_ms", 5000), "timeout_ms")
DEFAULT_MEMORY_LIMIT_MB = _positive_int(
    _DEFAULT_POLICY_RAW.get("memory_limit_mb", 128), "memory_limit_mb"
)
DEFAULT_MAX_OUTPUT_KB = _positive_int(
    _DEFAULT_POLICY_RAW.get("max_output_kb", 128), "max_output_kb"
)


@dataclass(slots=True)
class RunnerPolicy:
    """Resource limits and capability allowlist for sandboxed JavaScript.

    Example:
        ```python
        policy = RunnerPolicy(timeout_ms=2000, memory_limit_mb=64)
        ```
    """

    timeout_ms: int = field(default_factory=lambda: _timeout_from_env(DEFAULT_TIMEOUT_MS))
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    capabilities: tuple[str, ...] = CAPABILITY_SET
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits and capabilities after dataclass initialization.

        Example:
            ```python
            RunnerPolicy(capabilities=("Math", "JSON"))
            ```
        """
        self.timeout_ms = _positive_int(self.timeout_ms, "timeout_ms")
        self.memory_limit_mb = _positive_int(self.memory_limit_mb, "memory_limit_mb")
        self.max_output_kb = _positive_int(self.max_output_kb, "max_output_kb")
        self.capabilities = validate_capabilities(self.capabilities)

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        capabilities = raw.get("capabilities")
        if capabilities is not None and not isinstance(capabilities, list):
            raise ValueError("'capabilities' must be a list of strings")
        return cls(
            timeout_ms=raw.get("timeout_ms", _timeout_from_env(DEFAULT_TIMEOUT_MS)),
            memory_limit_mb=raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB),
            max_output_kb=raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB),
            capabilities=validate_capabilities(capabilities),
            config_path=config_path,
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize the limits the worker process needs.

        Example:
            ```python
            payload = RunnerPolicy().to_payload()
            ```
        """
        return {
            "timeout_ms": self.timeout_ms,
            "memory_limit_mb": self.memory_limit_mb,
            "max_output_kb": self.max_output_kb,
            "capabilities": list(self.capabilities),
        }
