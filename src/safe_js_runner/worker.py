from __future__ import annotations

import json
import math
import os
import secrets
import sys
import threading
import time
from typing import Any, Callable, Iterable

from py_mini_racer import JSEvalException, JSOOMException, JSTimeoutException, MiniRacer

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except Exception:  # pragma: no cover - platform specific
    _resource = None

# Value intrinsics that the engine makes non-configurable. They carry no
# capability and stay on the global object whatever the allowlist says.
IMMUTABLE_GLOBALS = ("undefined", "NaN", "Infinity")

TRUNCATION_MARKER = "\n[output truncated]"

MEMORY_POLL_SECONDS = 0.02

# Runs inside a fresh V8 context. Intrinsics are captured before the global
# object is pruned down to the allowlist, so user code cannot reach them
# through globalThis afterwards.
#
# Globals the embedder installs as non-configurable cannot be deleted. They
# are overwritten with undefined and shadowed by a `with` scope whose lookups
# throw ReferenceError, so they fail at lookup time like deleted ones. The
# user code runs as a direct eval inside that scope; the scope hands out
# `eval` exactly once, for that call.
_HARNESS = r"""
(function (source, allowed, immutable, scopeName, sourceName) {
  var root = globalThis;
  var indirectEval = root.eval;
  var stringify = JSON.stringify;
  var toText = String;
  var objectTag = Object.prototype.toString;
  var getNames = Object.getOwnPropertyNames;
  var hasOwn = Object.prototype.hasOwnProperty;
  var createBare = Object.create;
  var ProxyType = Proxy;
  var MissingBinding = ReferenceError;
  var lines = [];

  function contains(list, name) {
    for (var i = 0; i < list.length; i++) {
      if (list[i] === name) return true;
    }
    return false;
  }

  function isAllowed(name) {
    return contains(allowed, name) || contains(immutable, name);
  }

  function render(value) {
    if (value === undefined) return "undefined";
    if (value === null) return "null";
    if (typeof value === "string") return value;
    try {
      var text = stringify(value, null, 2);
      if (text !== undefined) return text;
    } catch (err) {}
    try {
      return toText(value);
    } catch (err) {
      return objectTag.call(value);
    }
  }

  function record(prefix, args) {
    var line = prefix;
    for (var i = 0; i < args.length; i++) {
      line += (i === 0 ? "" : " ") + render(args[i]);
    }
    lines[lines.length] = line;
  }

  function describe(err) {
    try {
      if (err !== null && err !== undefined && err.message) return toText(err.message);
    } catch (e) {}
    try {
      return toText(err);
    } catch (e) {
      return "Uncaught exception";
    }
  }

  function errorName(err) {
    try {
      if (err !== null && typeof err === "object" && err.name) return toText(err.name);
    } catch (e) {}
    return typeof err;
  }

  var sandboxConsole = {
    log: function () { record("", arguments); },
    warn: function () { record("[warn] ", arguments); },
    error: function () { record("[error] ", arguments); }
  };

  var runInScope = indirectEval(
    "(function (" + scopeName + ", " + sourceName + ") { with (" + scopeName +
    ") { return eval(" + sourceName + "); } })"
  );

  var shadowed = ["arguments"];
  var names = getNames(root);
  for (var i = 0; i < names.length; i++) {
    var name = names[i];
    if (isAllowed(name)) continue;
    try { delete root[name]; } catch (e) {}
    if (hasOwn.call(root, name)) {
      try { root[name] = undefined; } catch (e) {}
      shadowed[shadowed.length] = name;
    }
  }

  var remaining = getNames(root);
  for (var k = 0; k < remaining.length; k++) {
    var left = remaining[k];
    if (isAllowed(left)) continue;
    if (!contains(shadowed, left) || root[left] !== undefined) {
      return stringify({ setupError: "global '" + left + "' could not be removed" });
    }
  }
  if (contains(allowed, "console")) root.console = sandboxConsole;

  var evalPending = true;
  var scope = new ProxyType(createBare(null), {
    has: function (target, key) {
      if (key === "eval") return evalPending;
      return typeof key === "string" && contains(shadowed, key);
    },
    get: function (target, key) {
      if (key === "eval" && evalPending) {
        evalPending = false;
        return indirectEval;
      }
      if (typeof key === "string" && contains(shadowed, key)) {
        throw new MissingBinding(key + " is not defined");
      }
      return undefined;
    },
    set: function (target, key) {
      throw new MissingBinding(toText(key) + " is not defined");
    }
  });

  var result = createBare(null);
  result.ok = true;
  result.output = null;
  result.error = null;
  result.errorType = null;
  try {
    var value = runInScope(scope, source);
    if (value !== undefined) result.output = render(value);
  } catch (err) {
    result.ok = false;
    result.error = describe(err);
    result.errorType = errorName(err);
  }
  var logs = "";
  for (var j = 0; j < lines.length; j++) {
    logs += (j === 0 ? "" : "\n") + lines[j];
  }
  result.logs = logs;
  return stringify(result);
})
"""


def build_script(code: str, capabilities: Iterable[str]) -> str:
    """Wrap user code in the sandbox harness as a single evaluable script.

    The code travels as a JSON string literal, so it is never spliced into
    the harness source. The scope parameter names are random per script so
    the code cannot name them.

    Example:
        ```python
        script = build_script("1 + 1", ["Math", "console"])
        ```
    """
    token = secrets.token_hex(8)
    args = [
        json.dumps(code),
        json.dumps(list(capabilities)),
        json.dumps(list(IMMUTABLE_GLOBALS)),
        json.dumps(f"__scope_{token}"),
        json.dumps(f"__source_{token}"),
    ]
    return f"{_HARNESS}({', '.join(args)})"


def _response(
    *,
    ok: bool,
    output: str | None = None,
    logs: str = "",
    error: str | None = None,
    error_type: str | None = None,
    resource_exceeded: bool = False,
    timed_out: bool = False,
    elapsed_ms: int = 0,
) -> dict[str, Any]:
    """Build the JSON document the worker writes to stdout.

    Example:
        ```python
        resp = _response(ok=False, error="boom", error_type="Error")
        ```
    """
    return {
        "ok": ok,
        "output": output,
        "logs": logs,
        "error": error,
        "error_type": error_type,
        "resource_exceeded": resource_exceeded,
        "timed_out": timed_out,
        "elapsed_ms": elapsed_ms,
    }


def _truncate(text: str, max_chars: int) -> str:
    """Cut `text` to `max_chars` characters, marking the cut.

    Example:
        ```python
        _truncate("abcdef", 3)  # "abc\\n[output truncated]"
        ```
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def _set_limits(timeout_ms: int) -> list[str]:
    """Cap the worker's CPU time so it dies even if its supervisor is gone.

    Example:
        ```python
        problems = _set_limits(timeout_ms=5000)
        ```
    """
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    # One extra second covers interpreter and engine start-up.
    cpu_seconds = math.ceil(timeout_ms / 1000) + 2
    try:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_CPU)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = cpu_seconds + 1
        else:
            target_hard = min(cpu_seconds + 1, current_hard)
        target_soft = min(cpu_seconds, target_hard)
        _resource.setrlimit(_resource.RLIMIT_CPU, (target_soft, target_hard))
    except (ValueError, OSError) as exc:
        errors.append(f"RLIMIT_CPU not applied: {exc}")

    return errors


def _peak_rss_bytes() -> int:
    """Return the peak resident set size of this process in bytes.

    Example:
        ```python
        baseline = _peak_rss_bytes()
        ```
    """
    peak = _resource.getrusage(_resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux and bytes on macOS.
    return int(peak) if sys.platform == "darwin" else int(peak) * 1024


class MemoryWatchdog:
    """Background thread that fires once resident memory grows past a limit.

    Growth is measured against the peak RSS when the watchdog starts, so the
    interpreter and the engine's own footprint are not charged to the code.

    Example:
        ```python
        watchdog = MemoryWatchdog(64, on_exceeded=lambda: None)
        watchdog.start()
        ```
    """

    def __init__(self, limit_mb: int, on_exceeded: Callable[[], None]) -> None:
        """Prepare a watchdog for `limit_mb` megabytes of growth.

        Example:
            ```python
            watchdog = MemoryWatchdog(128, on_exceeded=report)
            ```
        """
        self._limit = limit_mb * 1024 * 1024
        self._on_exceeded = on_exceeded
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._watch, name="memory-watchdog", daemon=True)
        self._baseline = 0

    def start(self) -> None:
        """Record the baseline and begin polling.

        Example:
            ```python
            watchdog.start()
            ```
        """
        self._baseline = _peak_rss_bytes()
        self._thread.start()

    def stop(self) -> None:
        """Stop polling; the callback will not fire afterwards.

        Example:
            ```python
            watchdog.stop()
            ```
        """
        self._stop.set()

    def _watch(self) -> None:
        """Poll peak RSS until stopped or the limit is crossed.

        Example:
            ```python
            watchdog._watch()  # runs on the watchdog thread
            ```
        """
        while not self._stop.wait(MEMORY_POLL_SECONDS):
            if _peak_rss_bytes() - self._baseline > self._limit:
                self._on_exceeded()
                return


def evaluate(
    code: str,
    capabilities: Iterable[str],
    *,
    memory_limit_mb: int = 128,
    max_output_kb: int = 128,
    timeout_ms: int | None = None,
    watchdog: MemoryWatchdog | None = None,
) -> dict[str, Any]:
    """Evaluate JavaScript in a fresh V8 context restricted to `capabilities`.

    Returns the worker response document: the rendered completion value,
    the captured console lines, any error message and the milliseconds spent
    evaluating. `timeout_ms` stops the evaluation from inside the engine; the
    parent process still kills the worker if that does not happen. A
    `watchdog` is started once the context exists.

    Example:
        ```python
        resp = evaluate("const x = 2 + 2; x", ["console"])
        assert resp["output"] == "4"
        ```
    """
    ctx = MiniRacer()
    script = build_script(code, capabilities)
    timeout_sec = None if timeout_ms is None else timeout_ms / 1000
    if watchdog is not None:
        watchdog.start()
    start = time.perf_counter()
    try:
        raw = ctx.eval(script, timeout_sec=timeout_sec, max_memory=memory_limit_mb * 1024 * 1024)
    except JSOOMException:
        return _response(
            ok=False,
            error="Memory limit exceeded",
            resource_exceeded=True,
            elapsed_ms=_elapsed_ms(start),
        )
    except JSTimeoutException:
        return _response(
            ok=False,
            error=f"Execution timed out after {timeout_ms}ms",
            timed_out=True,
            elapsed_ms=_elapsed_ms(start),
        )
    except JSEvalException as exc:
        # The message embeds harness source; keep it out of the result.
        sys.stderr.write(f"Sandbox setup failed: {exc}\n")
        return _response(ok=False, error="Sandbox setup failed", elapsed_ms=_elapsed_ms(start))
    elapsed_ms = _elapsed_ms(start)

    parsed = json.loads(raw)
    if parsed.get("setupError"):
        return _response(
            ok=False,
            error=f"Sandbox setup failed: {parsed['setupError']}",
            elapsed_ms=elapsed_ms,
        )
    max_output_chars = max_output_kb * 1024
    output = parsed.get("output")
    if isinstance(output, str):
        output = _truncate(output, max_output_chars)
    return _response(
        ok=bool(parsed.get("ok")),
        output=output,
        logs=_truncate(str(parsed.get("logs") or ""), max_output_chars),
        error=parsed.get("error"),
        error_type=parsed.get("errorType"),
        elapsed_ms=elapsed_ms,
    )


def _elapsed_ms(start: float) -> int:
    """Milliseconds since the `perf_counter` reading `start`.

    Example:
        ```python
        _elapsed_ms(time.perf_counter())  # 0
        ```
    """
    return int((time.perf_counter() - start) * 1000)


_EMIT_LOCK = threading.Lock()
_EMITTED = threading.Event()


def _emit(resp: dict[str, Any]) -> bool:
    """Write the response document once; later calls are ignored.

    Example:
        ```python
        _emit(_response(ok=True, output="2"))
        ```
    """
    with _EMIT_LOCK:
        if _EMITTED.is_set():
            return False
        sys.stdout.write(json.dumps(resp))
        sys.stdout.flush()
        _EMITTED.set()
        return True


def main() -> int:
    """Read one request from stdin, evaluate it and write the response to stdout.

    Example:
        ```python
        # echo '{"code": "1 + 1", "policy": {}}' | python worker.py
        ```
    """
    req = json.loads(sys.stdin.read() or "{}")
    code: str = req.get("code", "")
    policy = req.get("policy", {})

    timeout_ms = int(policy.get("timeout_ms", 5000))
    memory_limit_mb = int(policy.get("memory_limit_mb", 128))
    max_output_kb = int(policy.get("max_output_kb", 128))
    capabilities = [str(name) for name in policy.get("capabilities", [])]

    start = time.perf_counter()

    def memory_exceeded() -> None:
        """Report the memory failure and end the process mid-evaluation.

        Example:
            ```python
            MemoryWatchdog(128, on_exceeded=memory_exceeded)
            ```
        """
        _emit(
            _response(
                ok=False,
                error="Memory limit exceeded",
                resource_exceeded=True,
                elapsed_ms=_elapsed_ms(start),
            )
        )
        os._exit(2)

    watchdog = MemoryWatchdog(memory_limit_mb, memory_exceeded) if _resource is not None else None
    try:
        _set_limits(timeout_ms=timeout_ms)
        resp = evaluate(
            code,
            capabilities,
            memory_limit_mb=memory_limit_mb,
            max_output_kb=max_output_kb,
            timeout_ms=timeout_ms,
            watchdog=watchdog,
        )
    except MemoryError:
        resp = _response(ok=False, error="Memory limit exceeded", resource_exceeded=True)
    except Exception as exc:
        # Harness or engine failures, reported as data rather than a crash.
        resp = _response(ok=False, error=f"Sandbox failure: {exc}", error_type=type(exc).__name__)
    finally:
        if watchdog is not None:
            watchdog.stop()

    _emit(resp)
    if resp["resource_exceeded"]:
        return 2
    return 0 if resp["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
