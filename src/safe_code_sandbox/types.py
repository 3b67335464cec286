from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class ExecutorState(enum.Enum):
    """Lifecycle state of a language runtime executor.

    Example:
        ```python
        state = ExecutorState.READY
        ```
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    EXECUTING = "executing"
    TERMINATED = "terminated"


def _positive_int(value: Any, field_name: str) -> int:
    """Validate a positive integer option value.

    Example:
        ```python
        timeout = _positive_int(200, "timeout")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{field_name}' must be a positive integer")
    if value <= 0:
        raise ValueError(f"'{field_name}' must be a positive integer")
    return value


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-call execution options; unset fields fall back to defaults.

    Example:
        ```python
        opts = ExecutionOptions(timeout=200, max_output_lines=50)
        ```
    """

    timeout: int | None = None
    max_output_lines: int | None = None

    def __post_init__(self) -> None:
        """Validate explicitly provided option values.

        Example:
            ```python
            ExecutionOptions(timeout=1000)
            ```
        """
        if self.timeout is not None:
            _positive_int(self.timeout, "timeout")
        if self.max_output_lines is not None:
            _positive_int(self.max_output_lines, "max_output_lines")

    def resolve(self, defaults: ExecutionOptions | None = None) -> ExecutionOptions:
        """Return a fully populated copy using `defaults` for unset fields.

        Example:
            ```python
            opts = ExecutionOptions(timeout=200).resolve()
            assert opts.max_output_lines == 1000
            ```
        """
        base = defaults or DEFAULT_EXECUTION_OPTIONS
        return ExecutionOptions(
            timeout=self.timeout if self.timeout is not None else base.timeout,
            max_output_lines=(
                self.max_output_lines
                if self.max_output_lines is not None
                else base.max_output_lines
            ),
        )


DEFAULT_EXECUTION_OPTIONS = ExecutionOptions(timeout=5000, max_output_lines=1000)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Code plus resolved options for one execution call.

    Example:
        ```python
        req = ExecutionRequest(code="print(1)", options=DEFAULT_EXECUTION_OPTIONS)
        ```
    """

    code: str
    options: ExecutionOptions = DEFAULT_EXECUTION_OPTIONS


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Error details reported by a runtime, or synthesized by the sandbox.

    `line` and `column` are 1-indexed and only present when the runtime
    exposes them.

    Example:
        ```python
        err = ErrorInfo(message="division by zero", type="ZeroDivisionError", line=1)
        ```
    """

    message: str
    type: str | None = None
    line: int | None = None
    column: int | None = None

    def __post_init__(self) -> None:
        """Reject empty messages and non-positive positions.

        Example:
            ```python
            ErrorInfo(message="boom")
            ```
        """
        if not self.message:
            raise ValueError("ErrorInfo requires a non-empty 'message'")
        for name in ("line", "column"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"ErrorInfo '{name}' must be 1-indexed")

    def to_dict(self) -> dict[str, Any]:
        """Return the error as a JSON-ready mapping without empty fields.

        Example:
            ```python
            payload = ErrorInfo(message="boom", type="Error").to_dict()
            ```
        """
        payload: dict[str, Any] = {"message": self.message}
        if self.type is not None:
            payload["type"] = self.type
        if self.line is not None:
            payload["line"] = self.line
        if self.column is not None:
            payload["column"] = self.column
        return payload


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Normalized, immutable result of one execution.

    Example:
        ```python
        result = ExecutionResult(success=True, stdout="Hello\\n")
        ```
    """

    success: bool
    stdout: str = ""
    stderr: str = ""
    error: ErrorInfo | None = None
    execution_time: int = 0
    timed_out: bool = False
    truncated: bool = False

    def __post_init__(self) -> None:
        """Enforce the success/error/timeout invariants.

        Example:
            ```python
            ExecutionResult(success=False, error=ErrorInfo(message="boom"))
            ```
        """
        if self.timed_out and self.success:
            raise ValueError("A timed out result cannot be successful")
        if (self.error is None) != self.success:
            raise ValueError("'error' must be present exactly when 'success' is False")
        if self.execution_time < 0:
            raise ValueError("'execution_time' must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        """Return the caller-facing camelCase representation.

        Example:
            ```python
            payload = ExecutionResult(success=True).to_dict()
            assert payload["timedOut"] is False
            ```
        """
        payload: dict[str, Any] = {
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "executionTime": self.execution_time,
            "timedOut": self.timed_out,
            "truncated": self.truncated,
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload
