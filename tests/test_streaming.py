import asyncio
import json
import signal
import threading
import time

import pytest

from safe_js_runner import CompleteState, RunnerPolicy, ValidationError, astream_execution, execute, stream_execution
from safe_js_runner.execution import ExecutionOutcome, WorkerRequest


def _worker_json(**fields) -> str:
    doc = {"ok": True, "output": None, "logs": "", "error": None, "error_type": None, "resource_exceeded": False}
    doc.update(fields)
    return json.dumps(doc)


class _FakeEngine:
    def __init__(self, outcome: ExecutionOutcome | None = None) -> None:
        self.outcome = outcome or ExecutionOutcome(stdout=_worker_json(output="4"), stderr="", returncode=0, timed_out=False)
        self.requests: list[WorkerRequest] = []

    def execute(self, request: WorkerRequest) -> ExecutionOutcome:
        self.requests.append(request)
        return self.outcome


class _ExplodingEngine:
    def execute(self, request: WorkerRequest) -> ExecutionOutcome:
        raise RuntimeError("engine offline")


def test_running_is_yielded_before_engine_runs() -> None:
    engine = _FakeEngine()
    stream = stream_execution({"code": "2 + 2"}, engine=engine)

    first = next(stream)
    assert first.state == "running"
    assert engine.requests == []

    second = next(stream)
    assert second.state == "complete"
    assert second.output == "4"
    assert len(engine.requests) == 1
    with pytest.raises(StopIteration):
        next(stream)


def test_validation_fails_before_any_state_or_engine_call() -> None:
    engine = _FakeEngine()
    with pytest.raises(ValidationError):
        stream_execution({"code": "1", "language": "ruby"}, engine=engine)
    assert engine.requests == []


def test_payload_carries_code_and_policy() -> None:
    engine = _FakeEngine()
    execute({"code": "1"}, engine=engine, policy=RunnerPolicy(timeout_ms=1234, capabilities=("JSON",)))
    request = engine.requests[0]
    assert request.timeout_ms == 1234
    assert request.payload["code"] == "1"
    assert request.payload["policy"]["capabilities"] == ["JSON"]


def test_html_never_touches_the_engine() -> None:
    engine = _FakeEngine()
    final = execute({"code": "<script>x()</script>", "language": "html"}, engine=engine)
    assert engine.requests == []
    assert final.output == "<script>x()</script>"
    assert final.execution_time == 0


def test_worker_error_keeps_logs() -> None:
    outcome = ExecutionOutcome(
        stdout=_worker_json(ok=False, logs="before", error="boom", error_type="Error"),
        stderr="",
        returncode=1,
        timed_out=False,
    )
    final = execute({"code": "x"}, engine=_FakeEngine(outcome))
    assert final.error == "boom"
    assert final.logs == "before"
    assert final.output is None


def test_timeout_outcome_becomes_timeout_error() -> None:
    outcome = ExecutionOutcome(stdout="", stderr="", returncode=124, timed_out=True)
    final = execute({"code": "x"}, engine=_FakeEngine(outcome), policy=RunnerPolicy(timeout_ms=250))
    assert final.error == "Execution timed out after 250ms"
    assert final.timed_out


def test_worker_reported_timeout_discards_logs() -> None:
    outcome = ExecutionOutcome(
        stdout=_worker_json(ok=False, logs="partial", error="Execution timed out after 250ms", timed_out=True, elapsed_ms=251),
        stderr="",
        returncode=1,
        timed_out=False,
    )
    final = execute({"code": "x"}, engine=_FakeEngine(outcome), policy=RunnerPolicy(timeout_ms=250))
    assert final.timed_out
    assert final.error == "Execution timed out after 250ms"
    assert final.logs == ""
    assert final.execution_time == 251


def test_error_mentioning_timeout_is_not_a_timeout() -> None:
    outcome = ExecutionOutcome(
        stdout=_worker_json(ok=False, error="the fetch timed out", error_type="Error"),
        stderr="",
        returncode=1,
        timed_out=False,
    )
    final = execute({"code": "x"}, engine=_FakeEngine(outcome))
    assert final.error == "the fetch timed out"
    assert final.timed_out is False


def test_execution_time_comes_from_worker_measurement() -> None:
    outcome = ExecutionOutcome(stdout=_worker_json(output="1", elapsed_ms=2), stderr="", returncode=0, timed_out=False)
    assert execute({"code": "1"}, engine=_FakeEngine(outcome)).execution_time == 2


def test_non_object_worker_json_is_reported_as_error() -> None:
    outcome = ExecutionOutcome(stdout="[1, 2]", stderr="", returncode=0, timed_out=False)
    final = execute({"code": "x"}, engine=_FakeEngine(outcome))
    assert final.error == "Runner returned invalid JSON"


@pytest.mark.skipif(not hasattr(signal, "SIGXCPU"), reason="POSIX only")
def test_cpu_limit_kill_is_reported_as_timeout() -> None:
    outcome = ExecutionOutcome(stdout="", stderr="", returncode=-signal.SIGXCPU, timed_out=False)
    final = execute({"code": "x"}, engine=_FakeEngine(outcome), policy=RunnerPolicy(timeout_ms=250))
    assert final.timed_out


def test_crashed_worker_is_reported_as_error() -> None:
    outcome = ExecutionOutcome(stdout="", stderr="Segmentation fault", returncode=-11, timed_out=False)
    final = execute({"code": "x"}, engine=_FakeEngine(outcome))
    assert final.error == "Worker process exited with code -11"
    assert not final.timed_out


def test_invalid_worker_json_is_reported_as_error() -> None:
    outcome = ExecutionOutcome(stdout="not json", stderr="", returncode=0, timed_out=False)
    final = execute({"code": "x"}, engine=_FakeEngine(outcome))
    assert final.error == "Runner returned invalid JSON"


def test_engine_exception_still_completes() -> None:
    states = list(stream_execution({"code": "1"}, engine=_ExplodingEngine()))
    assert [s.state for s in states] == ["running", "complete"]
    assert "engine offline" in (states[-1].error or "")


def test_policy_and_policy_file_are_exclusive(tmp_path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("timeout_ms = 1000\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Provide either 'policy' or 'policy_file'"):
        stream_execution({"code": "1"}, policy=RunnerPolicy(), policy_file=str(policy_file))


def test_policy_file_drives_timeout(tmp_path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("[policy]\ntimeout_ms = 321\n", encoding="utf-8")
    engine = _FakeEngine()
    execute({"code": "1"}, engine=engine, policy_file=str(policy_file))
    assert engine.requests[0].timeout_ms == 321


def test_async_stream_yields_two_states() -> None:
    async def collect() -> list:
        return [state async for state in astream_execution({"code": "1"}, engine=_FakeEngine())]

    states = asyncio.run(collect())
    assert [s.state for s in states] == ["running", "complete"]
    assert isinstance(states[-1], CompleteState)


def test_async_validation_is_eager() -> None:
    with pytest.raises(ValidationError):
        astream_execution({"code": None})


def test_abandoned_async_stream_does_not_cancel_execution() -> None:
    finished = threading.Event()

    class _SlowEngine:
        def execute(self, request: WorkerRequest) -> ExecutionOutcome:
            time.sleep(0.3)
            finished.set()
            return ExecutionOutcome(stdout=_worker_json(output="done"), stderr="", returncode=0, timed_out=False)

    async def abandon() -> str:
        stream = astream_execution({"code": "1"}, engine=_SlowEngine())
        first = await stream.__anext__()
        task = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return first.state

    assert asyncio.run(abandon()) == "running"
    assert finished.wait(timeout=2)
