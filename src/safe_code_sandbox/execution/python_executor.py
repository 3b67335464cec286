from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

from ..types import ErrorInfo
from .base import ProcessExecutor
from .capabilities import PYTHON_CAPABILITIES


def _worker_path() -> Path:
    """Return the absolute path to the Python worker script.

    Example:
        ```python
        path = _worker_path()
        ```
    """
    return Path(__file__).resolve().parents[1] / "workers" / "python_worker.py"


def _optional_position(value: Any) -> int | None:
    """Return a 1-indexed position, or None when missing or invalid.

    Example:
        ```python
        line = _optional_position(3)
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


class PythonExecutor(ProcessExecutor):
    """Execute Python code in an isolated CPython worker process.

    The worker runs in isolated mode (`-I`), compiles every request with
    RestrictedPython into a fresh namespace, and filters imports and
    builtins with the configured allow and block lists.

    Example:
        ```python
        executor = PythonExecutor()
        executor.initialize()
        result = executor.execute("1/0")
        assert result.error.type == "ZeroDivisionError"
        ```
    """

    language = "python"
    file_extensions = frozenset({".py"})
    aliases = frozenset({"py", "python3"})
    capabilities = PYTHON_CAPABILITIES

    def _command(self) -> list[str]:
        """Return the interpreter command line for the worker.

        Example:
            ```python
            argv = executor._command()
            ```
        """
        interpreter = self.settings.python_executable or sys.executable
        config = {"memory_limit_mb": self.settings.memory_limit_mb}
        return [interpreter, "-I", "-B", str(_worker_path()), json.dumps(config)]

    def _request(self, request_id: int, code: str) -> dict[str, Any]:
        """Attach the import/builtin policy to each execute message.

        Example:
            ```python
            message = executor._request(1, "import os")
            ```
        """
        message = super()._request(request_id, code)
        message["policy"] = {
            "allowed_imports": list(self.settings.allowed_imports),
            "blocked_imports": list(self.settings.blocked_imports),
            "blocked_builtins": list(self.settings.blocked_builtins),
        }
        return message

    def _map_error(self, payload: dict[str, Any]) -> ErrorInfo:
        """Convert a Python exception description into `ErrorInfo`.

        The exception class name is kept verbatim as `type`.

        Example:
            ```python
            err = executor._map_error({"type": "NameError", "message": "name 'x' is not defined", "line": 2})
            ```
        """
        error_type = payload.get("type") or None
        message = str(payload.get("message") or error_type or "Python error")
        return ErrorInfo(
            message=message,
            type=error_type,
            line=_optional_position(payload.get("line")),
            column=_optional_position(payload.get("column")),
        )
