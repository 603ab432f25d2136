from __future__ import annotations

import asyncio
import json
import logging
import signal
import time
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any

from .errors import timeout_message
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.types import ExecutionOutcome, WorkerRequest
from .policy import RunnerPolicy
from .request import ExecutionRequest, Language, validate_request
from .states import CompleteState, ExecutionState, RunningState

logger = logging.getLogger(__name__)

# Exit code of a worker stopped by its CPU rlimit.
_CPU_LIMIT_RETURNCODE = -signal.SIGXCPU if hasattr(signal, "SIGXCPU") else None


def _resolve_policy(policy: RunnerPolicy | None, policy_file: str | None) -> RunnerPolicy:
    """Resolve the effective policy object for a run.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return RunnerPolicy.from_file(policy_file)
    if policy is None:
        return RunnerPolicy()
    if policy.config_path is not None:
        return RunnerPolicy.from_file(policy.config_path)
    return policy


def _build_payload(code: str, policy: RunnerPolicy) -> dict[str, Any]:
    """Build the worker payload from code and policy.

    Example:
        ```python
        payload = _build_payload("1 + 1", RunnerPolicy())
        ```
    """
    return {"code": code, "policy": policy.to_payload()}


def _reported_elapsed(parsed: Mapping[str, Any], fallback_ms: int) -> int:
    """Prefer the evaluation time the worker measured over the wall time.

    Example:
        ```python
        _reported_elapsed({"elapsed_ms": 3}, fallback_ms=180)  # 3
        ```
    """
    value = parsed.get("elapsed_ms")
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return fallback_ms


def _complete_from_outcome(
    request: ExecutionRequest,
    outcome: ExecutionOutcome,
    policy: RunnerPolicy,
    elapsed_ms: int,
) -> CompleteState:
    """Translate a raw engine outcome into the terminal state.

    `elapsed_ms` is the wall time of the engine call. It is used only when the
    worker did not report how long evaluation took.

    Example:
        ```python
        state = _complete_from_outcome(req, outcome, RunnerPolicy(), elapsed_ms=12)
        ```
    """
    if outcome.timed_out:
        return CompleteState(
            code=request.code,
            language=request.language,
            error=outcome.error or timeout_message(policy.timeout_ms),
            execution_time=elapsed_ms,
            timed_out=True,
        )

    raw = outcome.stdout.strip()
    if not raw:
        if _CPU_LIMIT_RETURNCODE is not None and outcome.returncode == _CPU_LIMIT_RETURNCODE:
            logger.warning("Worker stopped by its CPU limit")
            return CompleteState(
                code=request.code,
                language=request.language,
                error=timeout_message(policy.timeout_ms),
                execution_time=elapsed_ms,
                timed_out=True,
            )
        logger.warning(
            "Worker produced no result (exit code %s): %s",
            outcome.returncode,
            outcome.stderr.strip(),
        )
        return CompleteState(
            code=request.code,
            language=request.language,
            error=outcome.error or f"Worker process exited with code {outcome.returncode}",
            execution_time=elapsed_ms,
        )

    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("worker result is not an object")
    except ValueError:
        logger.warning("Worker returned invalid JSON: %.200s", raw)
        return CompleteState(
            code=request.code,
            language=request.language,
            error="Runner returned invalid JSON",
            execution_time=elapsed_ms,
        )

    execution_time = _reported_elapsed(parsed, elapsed_ms)
    if parsed.get("timed_out"):
        logger.warning("Worker stopped evaluation at the %sms budget", policy.timeout_ms)
        return CompleteState(
            code=request.code,
            language=request.language,
            error=timeout_message(policy.timeout_ms),
            execution_time=execution_time,
            timed_out=True,
        )

    logs = str(parsed.get("logs") or "")
    if not parsed.get("ok"):
        logger.debug("Execution failed with %s", parsed.get("error_type"))
        return CompleteState(
            code=request.code,
            language=request.language,
            logs=logs,
            error=str(parsed.get("error") or "Unknown error"),
            execution_time=execution_time,
        )
    output = parsed.get("output")
    return CompleteState(
        code=request.code,
        language=request.language,
        output=None if output is None else str(output),
        logs=logs,
        execution_time=execution_time,
    )


def run_javascript(
    request: ExecutionRequest,
    engine: ExecutionEngine,
    policy: RunnerPolicy,
) -> CompleteState:
    """Run JavaScript through the engine under the policy's time budget.

    Never raises for failures of the executed code; they land in `error`.

    Example:
        ```python
        state = run_javascript(ExecutionRequest("2 + 2"), LocalEngine(), RunnerPolicy())
        ```
    """
    payload = _build_payload(request.code, policy)
    start = time.perf_counter()
    try:
        outcome = engine.execute(WorkerRequest(payload=payload, timeout_ms=policy.timeout_ms))
    except Exception as exc:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("Execution engine failed")
        return CompleteState(
            code=request.code,
            language=request.language,
            error=f"Execution engine failure: {exc}",
            execution_time=elapsed_ms,
        )
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    return _complete_from_outcome(request, outcome, policy, elapsed_ms)


def _passthrough(request: ExecutionRequest) -> CompleteState:
    """Return the zero-cost terminal state for content that is rendered, not run.

    Example:
        ```python
        state = _passthrough(ExecutionRequest("<p>hi</p>", Language.HTML))
        ```
    """
    return CompleteState(
        code=request.code,
        language=request.language,
        output=request.code,
        logs="",
        error=None,
        execution_time=0,
    )


def _run(request: ExecutionRequest, engine: ExecutionEngine | None, policy: RunnerPolicy) -> CompleteState:
    """Dispatch on language and produce the terminal state.

    Example:
        ```python
        state = _run(ExecutionRequest("1"), None, RunnerPolicy())
        ```
    """
    if request.language is Language.HTML:
        logger.debug("Passing through %d characters of html", len(request.code))
        return _passthrough(request)
    logger.debug("Dispatching %d characters of javascript", len(request.code))
    return run_javascript(request, engine or LocalEngine(), policy)


def _stream(
    request: ExecutionRequest,
    engine: ExecutionEngine | None,
    policy: RunnerPolicy,
) -> Iterator[ExecutionState]:
    """Yield the running acknowledgment, then the terminal state.

    Example:
        ```python
        states = list(_stream(ExecutionRequest("1"), None, RunnerPolicy()))
        ```
    """
    yield RunningState(code=request.code, language=request.language)
    yield _run(request, engine, policy)


def stream_execution(
    request: Mapping[str, Any] | ExecutionRequest,
    *,
    engine: ExecutionEngine | None = None,
    policy: RunnerPolicy | None = None,
    policy_file: str | None = None,
) -> Iterator[ExecutionState]:
    """Validate a request and return its two-state result stream.

    Validation happens immediately and raises `ValidationError`; once the
    stream is returned it always yields `RunningState` then `CompleteState`.

    Example:
        ```python
        for state in stream_execution({"code": "console.log('hi')"}):
            print(state.to_dict())
        ```
    """
    validated = validate_request(request)
    resolved_policy = _resolve_policy(policy, policy_file)
    return _stream(validated, engine, resolved_policy)


def execute(
    request: Mapping[str, Any] | ExecutionRequest,
    *,
    engine: ExecutionEngine | None = None,
    policy: RunnerPolicy | None = None,
    policy_file: str | None = None,
) -> CompleteState:
    """Run a request to completion and return only the terminal state.

    Example:
        ```python
        final = execute({"code": "const x = 2 + 2; x"})
        assert final.output == "4"
        ```
    """
    final: ExecutionState | None = None
    for final in stream_execution(request, engine=engine, policy=policy, policy_file=policy_file):
        pass
    if not isinstance(final, CompleteState):
        raise RuntimeError("Result stream ended without a terminal state")
    return final


async def _astream(
    request: ExecutionRequest,
    engine: ExecutionEngine | None,
    policy: RunnerPolicy,
) -> AsyncIterator[ExecutionState]:
    """Yield the two states, running the blocking part in a worker thread.

    Example:
        ```python
        states = [s async for s in _astream(ExecutionRequest("1"), None, RunnerPolicy())]
        ```
    """
    yield RunningState(code=request.code, language=request.language)
    yield await asyncio.to_thread(_run, request, engine, policy)


def astream_execution(
    request: Mapping[str, Any] | ExecutionRequest,
    *,
    engine: ExecutionEngine | None = None,
    policy: RunnerPolicy | None = None,
    policy_file: str | None = None,
) -> AsyncIterator[ExecutionState]:
    """Async variant of `stream_execution` for event-loop callers.

    The blocking run happens in a thread, so a consumer that stops iterating
    leaves the worker to be stopped by its own deadline.

    Example:
        ```python
        async for state in astream_execution({"code": "1 + 1"}):
            print(state.state)
        ```
    """
    validated = validate_request(request)
    resolved_policy = _resolve_policy(policy, policy_file)
    return _astream(validated, engine, resolved_policy)
