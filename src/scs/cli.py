from __future__ import annotations

import argparse
import json
import logging
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_code_sandbox import (
    ExecutionOptions,
    ExecutionResult,
    ExecutorRegistry,
    Sandbox,
    SandboxError,
    SandboxSettings,
)
from safe_code_sandbox.registry import is_valid_extension

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_TIMEOUT = 124


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
        parser = _RichArgumentParser(prog="python -m scs")
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
        self.print_help()
        raise SystemExit(EXIT_USAGE)


def _positive_int(raw: str) -> int:
    """Parse a strictly positive integer CLI value.

    Example:
        ```python
        value = _positive_int("200")
        ```
    """
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    return value


def _add_file_command(sub: Any, name: str, language: str, extensions: str, examples: str) -> None:
    """Register a terminal-style command that runs one file in a fixed language.

    Example:
        ```python
        _add_file_command(sub, "python", "python", ".py", "  scs python hello.py")
        ```
    """
    cmd = sub.add_parser(
        name,
        help=f"Execute a {language} file in the sandbox.",
        description=(
            f"Execute a {language} file in an isolated runtime.\n"
            "Code has no network, storage or host access and is stopped at the timeout.\n"
            f"Supported extensions: {extensions}"
        ),
        epilog=f"Examples:\n{examples}",
        formatter_class=_HELP_FORMATTER,
    )
    cmd.add_argument("path", help="Source file to execute.")
    cmd.set_defaults(language=language)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for sandboxed code execution.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scs",
        description=(
            "safe-code-sandbox CLI\n"
            "Run Python and JavaScript in isolated runtimes with a wall-clock timeout.\n"
            "Output is captured and line-limited; errors are reported with line numbers."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scs python hello.py\n"
            "  python -m scs --timeout-ms 200 node app.js\n"
            "  python -m scs run scripts/test.mjs\n"
            "  python -m scs eval python \"print('Hello')\"\n"
            "  python -m scs languages"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a sandbox settings TOML file.\n"
            "Example: --config ./sandbox.toml"
        ),
    )
    parser.add_argument(
        "--timeout-ms",
        type=_positive_int,
        help="Wall-clock limit per execution in milliseconds (default: from settings, 5000).",
    )
    parser.add_argument(
        "--max-output-lines",
        type=_positive_int,
        help="Lines kept per output stream before truncating (default: from settings, 1000).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the execution result as JSON instead of panels.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log runtime lifecycle events to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    _add_file_command(
        sub,
        "python",
        "python",
        ".py",
        "  python -m scs python script.py\n  python -m scs python scripts/hello.py",
    )
    _add_file_command(
        sub,
        "node",
        "javascript",
        ".js, .mjs, .cjs",
        "  python -m scs node app.js\n  python -m scs node scripts/test.mjs",
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute a file, choosing the language by extension.",
        description=(
            "Execute a source file in the runtime registered for its extension.\n"
            "Use --language to override extension-based selection."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scs run hello.py\n"
            "  python -m scs run app.mjs --language javascript"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("path", help="Source file to execute.")
    run_cmd.add_argument("--language", help="Language name or alias (e.g. python, js).")

    eval_cmd = sub.add_parser(
        "eval",
        help="Execute inline code.",
        description="Execute a code string in the given language.",
        epilog=(
            "Examples:\n"
            "  python -m scs eval python \"print('Hello')\"\n"
            "  python -m scs eval js \"console.log(6 * 7)\""
        ),
        formatter_class=_HELP_FORMATTER,
    )
    eval_cmd.add_argument("language", help="Language name, alias or extension.")
    eval_cmd.add_argument("code", help="Source code to execute.")

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="Show registered languages, file extensions and capabilities.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_sandbox(args: argparse.Namespace) -> Sandbox:
    """Create a Sandbox from the global CLI settings flags.

    Example:
        ```python
        sandbox = build_sandbox(args)
        ```
    """
    settings = SandboxSettings.from_file(args.config) if args.config else SandboxSettings()
    return Sandbox(ExecutorRegistry.with_builtin_executors(settings))


def _configure_logging(verbose: bool) -> None:
    """Route library logs to stderr through Rich when verbose.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
        force=verbose,
    )


def _format_duration(execution_time: int) -> str:
    """Render milliseconds the way the result header shows them.

    Example:
        ```python
        assert _format_duration(1500) == "1.5s"
        ```
    """
    if execution_time < 1000:
        return f"{execution_time}ms"
    return f"{execution_time / 1000:.1f}s"


def _print_result(result: ExecutionResult, label: str) -> None:
    """Render an execution result as a Rich panel.

    Example:
        ```python
        _print_result(ExecutionResult(success=True, stdout="hi\\n"), "hello.py")
        ```
    """
    body = Text()
    if result.stdout:
        body.append(result.stdout.rstrip("\n") + "\n")
    if result.stderr and result.error is None:
        body.append(result.stderr.rstrip("\n") + "\n", style="yellow")
    if result.error is not None and not result.timed_out:
        body.append(result.error.type or "Error", style="bold red")
        if result.error.line is not None:
            position = f" at line {result.error.line}"
            if result.error.column is not None:
                position += f":{result.error.column}"
            body.append(position, style="dim")
        body.append(f"\n{result.error.message}\n", style="red")
    if result.timed_out:
        body.append(
            f"Execution timed out after {result.execution_time / 1000} seconds\n",
            style="bold yellow",
        )
        body.append(
            "Your code may contain an infinite loop or long-running operation.\n",
            style="dim",
        )
    if result.truncated:
        body.append("Output truncated at the configured line limit.\n", style="dim")
    if not (result.stdout or result.stderr or result.error or result.timed_out):
        body.append("No output", style="italic dim")

    if result.timed_out:
        border = "yellow"
    elif result.success:
        border = "green"
    else:
        border = "red"
    _CONSOLE.print(
        Panel(
            body,
            title=Text(label),
            subtitle=_format_duration(result.execution_time),
            border_style=border,
        )
    )


def _print_languages(sandbox: Sandbox) -> None:
    """Render registered languages in a rich table.

    Example:
        ```python
        _print_languages(Sandbox())
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("Extensions", style="magenta")
    table.add_column("Import Blocking")
    table.add_column("Memory Limit")
    table.add_column("Timeout")
    for language in sandbox.registry.languages():
        caps = sandbox.executor(language).capabilities
        table.add_row(
            language,
            ", ".join(sorted(sandbox.registry.extensions(language))),
            "yes" if caps.supports_import_blocking else "no",
            "yes" if caps.supports_memory_limit else "no",
            "yes" if caps.supports_timeout else "no",
        )
    _CONSOLE.print(table)


def _exit_code(result: ExecutionResult) -> int:
    """Map a result to the process exit code.

    Example:
        ```python
        code = _exit_code(ExecutionResult(success=True))
        ```
    """
    if result.timed_out:
        return EXIT_TIMEOUT
    return EXIT_OK if result.success else EXIT_FAILED


def _fail(message: str) -> int:
    """Print an error panel and return the usage exit code.

    Example:
        ```python
        return _fail("No such file: hello.py")
        ```
    """
    _CONSOLE.print(Panel.fit(message, style="bold red"))
    return EXIT_USAGE


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scs` CLI command handler.

    Example:
        ```python
        code = main(["eval", "python", "print('Hello')"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)
    try:
        sandbox = build_sandbox(args)
    except (OSError, ValueError) as exc:
        return _fail(f"Invalid settings: {exc}")

    if args.command == "languages":
        _print_languages(sandbox)
        return EXIT_OK

    options = ExecutionOptions(timeout=args.timeout_ms, max_output_lines=args.max_output_lines)
    try:
        if args.command == "eval":
            label = f"{sandbox.executor(args.language).language} <inline>"
            result = sandbox.execute(args.language, args.code, options)
        elif args.command in {"python", "node", "run"}:
            language = getattr(args, "language", None)
            path = Path(args.path)
            if language is not None and args.command != "run":
                executor = sandbox.executor(language)
                if not is_valid_extension(args.path, executor.file_extensions):
                    expected = ", ".join(sorted(executor.file_extensions))
                    return _fail(f"Unsupported file type. Expected: {expected}")
            if not path.is_file():
                return _fail(f"No such file: {args.path}")
            label = str(path)
            result = sandbox.run_file(args.path, language, options)
        else:
            parser.error("Unhandled command")
    except SandboxError as exc:
        return _fail(f"Execution failed: {exc}")

    if args.json:
        _CONSOLE.print_json(json.dumps(result.to_dict()))
    else:
        _print_result(result, label)
    return _exit_code(result)
