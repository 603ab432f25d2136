import json
import sys
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from safe_js_runner import LocalEngine, RunnerPolicy
from safe_js_runner.execution import WorkerRequest


def _request(code: str, timeout_ms: int = 5000) -> WorkerRequest:
    policy = RunnerPolicy(timeout_ms=timeout_ms)
    return WorkerRequest(payload={"code": code, "policy": policy.to_payload()}, timeout_ms=timeout_ms)


def test_local_engine_rejects_blank_interpreter() -> None:
    with pytest.raises(ValueError, match="python_executable"):
        LocalEngine(python_executable="  ")


def test_local_engine_returns_worker_json() -> None:
    outcome = LocalEngine().execute(_request("6 * 7"))
    assert outcome.timed_out is False
    assert outcome.returncode == 0
    parsed = json.loads(outcome.stdout)
    assert parsed["ok"] is True
    assert parsed["output"] == "42"


def test_local_engine_failure_exit_code() -> None:
    outcome = LocalEngine().execute(_request("undefinedThing"))
    parsed = json.loads(outcome.stdout)
    assert outcome.returncode == 1
    assert parsed["error"] == "undefinedThing is not defined"


def test_worker_stops_evaluation_at_budget() -> None:
    started = time.monotonic()
    outcome = LocalEngine().execute(_request("while(true) {}", timeout_ms=1000))
    assert time.monotonic() - started < 4
    parsed = json.loads(outcome.stdout)
    assert parsed["timed_out"] is True
    assert parsed["elapsed_ms"] >= 900


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_local_engine_kills_stalled_worker(tmp_path) -> None:
    stalled = tmp_path / "stalled-python"
    stalled.write_text("#!/bin/sh\nexec sleep 30\n", encoding="utf-8")
    stalled.chmod(0o755)
    engine = LocalEngine(python_executable=str(stalled), startup_allowance_ms=200)

    started = time.monotonic()
    outcome = engine.execute(_request("1", timeout_ms=300))
    assert time.monotonic() - started < 3
    assert outcome.timed_out is True
    assert outcome.returncode == 124
    assert outcome.error == "Execution timed out after 300ms"


def test_local_engine_rejects_negative_allowance() -> None:
    with pytest.raises(ValueError, match="startup_allowance_ms"):
        LocalEngine(startup_allowance_ms=-1)


def _timed_out(outcome) -> bool:
    return outcome.timed_out or bool(json.loads(outcome.stdout).get("timed_out"))


def test_concurrent_invocations_time_out_independently() -> None:
    engine = LocalEngine()
    started = time.monotonic()
    with ThreadPoolExecutor(max_workers=3) as pool:
        looping = [pool.submit(engine.execute, _request("for(;;){}", timeout_ms=1500)) for _ in range(2)]
        quick = pool.submit(engine.execute, _request("'fast'"))
        assert json.loads(quick.result().stdout)["output"] == "fast"
        assert all(_timed_out(future.result()) for future in looping)
    assert time.monotonic() - started < 6


def test_missing_interpreter_is_reported_not_raised(tmp_path) -> None:
    engine = LocalEngine(python_executable=str(tmp_path / "no-such-python"))
    outcome = engine.execute(_request("1"))
    assert outcome.timed_out is False
    assert outcome.returncode == 127
    assert "Could not start worker process" in (outcome.error or "")
