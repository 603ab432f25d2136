from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console, Group
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_js_runner import (
    CompleteState,
    LocalEngine,
    RunnerPolicy,
    stream_execution,
)

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m sjr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_usage()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running code through the sandbox.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m sjr",
        description=(
            "safe-js-runner CLI\n"
            "Run untrusted JavaScript in a restricted sandbox with a hard time budget,\n"
            "or pass HTML through untouched."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m sjr run -c 'const x = 2 + 2; x'\n"
            "  python -m sjr run script.js --timeout-ms 2000\n"
            "  echo 'console.log(1)' | python -m sjr run -\n"
            "  python -m sjr run page.html --language html --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity for engine diagnostics (default: WARNING).",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute JavaScript or pass HTML through.",
        description=(
            "Execute one program and print its terminal result.\n"
            "Code comes from -c, a file path, or stdin when the path is '-'."
        ),
        epilog=(
            "Examples:\n"
            "  python -m sjr run -c 'Math.max(1, 2)'\n"
            "  python -m sjr run loop.js --timeout-ms 500"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    source = run_cmd.add_mutually_exclusive_group(required=True)
    source.add_argument("path", nargs="?", help="File to run, or '-' for stdin.")
    source.add_argument("-c", "--code", help="Program text passed inline.")
    run_cmd.add_argument(
        "--language",
        default="javascript",
        help="Either 'javascript' (default) or 'html'.",
    )
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Time budget in milliseconds (default: policy value, 5000).",
    )
    run_cmd.add_argument(
        "--policy-file",
        help="TOML policy file with timeout_ms, memory_limit_mb, max_output_kb, capabilities.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print both state records as JSON lines instead of a panel.",
    )

    return parser


def build_engine(args: argparse.Namespace) -> LocalEngine:
    """Create the execution engine used by the `run` command.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    return LocalEngine()


def configure_logging(level: str) -> None:
    """Route engine log records through Rich on stderr.

    Example:
        ```python
        configure_logging("DEBUG")
        ```
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _read_code(args: argparse.Namespace) -> str:
    """Return program text from -c, a file, or stdin.

    Example:
        ```python
        code = _read_code(argparse.Namespace(code="1 + 1", path=None))
        ```
    """
    if args.code is not None:
        return args.code
    if args.path == "-":
        return sys.stdin.read()
    return Path(args.path).read_text(encoding="utf-8")


def _resolve_policy(args: argparse.Namespace) -> RunnerPolicy:
    """Combine the optional policy file with the --timeout-ms override.

    Example:
        ```python
        policy = _resolve_policy(argparse.Namespace(policy_file=None, timeout_ms=1000))
        ```
    """
    policy = RunnerPolicy.from_file(args.policy_file) if args.policy_file else RunnerPolicy()
    if args.timeout_ms is not None:
        return replace(policy, timeout_ms=args.timeout_ms, config_path=None)
    return policy


def _print_complete(state: CompleteState) -> None:
    """Render the terminal state as a Rich panel.

    Example:
        ```python
        _print_complete(CompleteState("1", Language.JAVASCRIPT, output="1"))
        ```
    """
    subtitle = f"{state.execution_time}ms" if state.execution_time else "Done"
    if state.error is not None:
        body: list[Any] = []
        if state.logs:
            body.append(Text(state.logs, style="dim"))
        body.append(Text(state.error, style="bold red"))
        title = "Timed out" if state.timed_out else "Error"
        _CONSOLE.print(Panel(Group(*body), title=title, subtitle=subtitle, border_style="red"))
        return
    parts: list[Any] = []
    if state.logs:
        parts.append(Text(state.logs, style="dim"))
    if state.output is not None:
        parts.append(Text(state.output))
    if not parts:
        parts.append(Text("(no output)", style="italic"))
    _CONSOLE.print(Panel(Group(*parts), title="Output", subtitle=subtitle, border_style="green"))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sjr` CLI command handler.

    Example:
        ```python
        code = main(["run", "-c", "1 + 1"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level)

    if args.command != "run":
        parser.error("Unhandled command")

    try:
        policy = _resolve_policy(args)
        states = stream_execution(
            {"code": _read_code(args), "language": args.language},
            engine=build_engine(args),
            policy=policy,
        )
    except (ValueError, OSError) as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
        return 2

    final: CompleteState | None = None
    for state in states:
        if args.json:
            print(json.dumps(state.to_dict()))
        if isinstance(state, CompleteState):
            final = state
    if final is None:
        return 1
    if not args.json:
        _print_complete(final)
    return 0 if final.ok else 1
