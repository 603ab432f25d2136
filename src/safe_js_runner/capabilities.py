from __future__ import annotations

from collections.abc import Iterable

# Global bindings visible to sandboxed code. Everything else on globalThis is
# deleted before the code runs.
CAPABILITY_SET: tuple[str, ...] = (
    "globalThis",
    "undefined",
    "NaN",
    "Infinity",
    "console",
    "JSON",
    "Math",
    "Date",
    "Array",
    "Object",
    "String",
    "Number",
    "Boolean",
    "RegExp",
    "Map",
    "Set",
    "WeakMap",
    "WeakSet",
    "Promise",
    "Symbol",
    "BigInt",
    "Error",
    "TypeError",
    "RangeError",
    "SyntaxError",
    "ReferenceError",
    "EvalError",
    "URIError",
    "AggregateError",
    "parseInt",
    "parseFloat",
    "isNaN",
    "isFinite",
    "encodeURI",
    "decodeURI",
    "encodeURIComponent",
    "decodeURIComponent",
)

FORBIDDEN_BINDINGS: frozenset[str] = frozenset(
    {
        "eval",
        "Function",
        "setTimeout",
        "setInterval",
        "setImmediate",
        "clearTimeout",
        "clearInterval",
        "queueMicrotask",
        "fetch",
        "XMLHttpRequest",
        "WebSocket",
        "require",
        "module",
        "exports",
        "process",
        "Deno",
        "Bun",
        "import",
        "WebAssembly",
        "Atomics",
        "SharedArrayBuffer",
    }
)


def validate_capabilities(names: Iterable[str] | None) -> tuple[str, ...]:
    """Normalize a capability list, allowing it to narrow but never widen `CAPABILITY_SET`.

    Example:
        ```python
        caps = validate_capabilities(["Math", "JSON", "Math"])
        assert caps == ("JSON", "Math")
        ```
    """
    if names is None:
        return CAPABILITY_SET
    if isinstance(names, str):
        raise ValueError("'capabilities' must be a list of strings")
    requested: set[str] = set()
    for name in names:
        if not isinstance(name, str):
            raise ValueError("'capabilities' must contain only strings")
        if name in FORBIDDEN_BINDINGS:
            raise ValueError(f"Capability '{name}' is forbidden in the sandbox")
        if name not in CAPABILITY_SET:
            raise ValueError(f"Unknown capability '{name}'")
        requested.add(name)
    return tuple(name for name in CAPABILITY_SET if name in requested)
