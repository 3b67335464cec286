from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Any

from ..errors import InitializationError
from ..types import ErrorInfo
from .base import ProcessExecutor
from .capabilities import JAVASCRIPT_CAPABILITIES

# First sandbox frame in a V8 stack: "<sandbox>:3:7", or "<sandbox>:3" for syntax errors.
_STACK_POSITION = re.compile(r"<sandbox>:(\d+)(?::(\d+))?")


def _worker_path() -> Path:
    """Return the absolute path to the JavaScript worker script.

    Example:
        ```python
        path = _worker_path()
        ```
    """
    return Path(__file__).resolve().parents[1] / "workers" / "js_worker.js"


def parse_stack_position(stack: str | None) -> tuple[int | None, int | None]:
    """Extract the 1-indexed line and column of the first sandbox frame.

    Example:
        ```python
        line, column = parse_stack_position("ReferenceError: x\\n    at <sandbox>:2:5")
        assert (line, column) == (2, 5)
        ```
    """
    if not stack:
        return None, None
    match = _STACK_POSITION.search(stack)
    if match is None:
        return None, None
    line = int(match.group(1))
    column = int(match.group(2)) if match.group(2) else None
    return (line or None), (column or None)


class JavaScriptExecutor(ProcessExecutor):
    """Execute JavaScript in a Node.js worker, one fresh `vm` context per run.

    The context has only ECMAScript builtins plus a console shim; browser
    and Node globals are shadowed as `undefined`. A run ends once its
    microtasks have drained, and an unhandled promise rejection fails it.
    Requires a `node` binary.

    Example:
        ```python
        executor = JavaScriptExecutor()
        executor.initialize()
        result = executor.execute("console.log(1 + 1)")
        assert result.stdout == "2\\n"
        ```
    """

    language = "javascript"
    file_extensions = frozenset({".js", ".mjs", ".cjs"})
    aliases = frozenset({"js", "node", "nodejs"})
    capabilities = JAVASCRIPT_CAPABILITIES

    def _command(self) -> list[str]:
        """Return the Node.js command line for the worker.

        Example:
            ```python
            argv = executor._command()
            ```
        """
        node = shutil.which(self.settings.node_executable)
        if node is None:
            raise InitializationError(
                f"Node.js executable '{self.settings.node_executable}' was not found on PATH"
            )
        return [
            node,
            f"--max-old-space-size={self.settings.memory_limit_mb}",
            str(_worker_path()),
        ]

    def _map_error(self, payload: dict[str, Any]) -> ErrorInfo:
        """Convert a thrown JavaScript value into `ErrorInfo`.

        The error's `name` is kept verbatim as `type`; values thrown without
        a name (for example `throw "x"`) carry no type.

        Example:
            ```python
            err = executor._map_error({"type": "TypeError", "message": "x is not a function", "stack": "at <sandbox>:1:1"})
            ```
        """
        error_type = payload.get("type") or None
        line, column = parse_stack_position(payload.get("stack"))
        message = str(payload.get("message") or error_type or "Uncaught exception")
        return ErrorInfo(message=message, type=error_type, line=line, column=column)
