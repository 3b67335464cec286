from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    """Failure categories reported by the sandbox.

    The first four surface as exceptions; `RUNTIME_ERROR` and `TIMEOUT` are
    only ever reported inside `ExecutionResult.error`.

    Example:
        ```python
        kind = ErrorKind.TIMEOUT
        ```
    """

    UNSUPPORTED_LANGUAGE = "UnsupportedLanguage"
    INITIALIZATION_ERROR = "InitializationError"
    NOT_INITIALIZED = "NotInitialized"
    BUSY = "Busy"
    RUNTIME_ERROR = "RuntimeError"
    TIMEOUT = "Timeout"


class SandboxError(Exception):
    """Base class for typed sandbox failures."""

    kind: ErrorKind


class UnsupportedLanguageError(SandboxError):
    """No executor is registered for the requested language or extension."""

    kind = ErrorKind.UNSUPPORTED_LANGUAGE

    def __init__(self, identifier: str, supported: list[str] | None = None) -> None:
        """Build the error for an unknown identifier.

        Example:
            ```python
            raise UnsupportedLanguageError("ruby", ["javascript", "python"])
            ```
        """
        self.identifier = identifier
        self.supported = sorted(supported or [])
        message = f"Unsupported language: '{identifier}'"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class InitializationError(SandboxError):
    """The runtime failed to start; calling `initialize()` again may succeed."""

    kind = ErrorKind.INITIALIZATION_ERROR


class NotInitializedError(SandboxError):
    """`execute()` was called before the executor reached the ready state."""

    kind = ErrorKind.NOT_INITIALIZED


class BusyError(SandboxError):
    """`execute()` was called while another execution is in flight."""

    kind = ErrorKind.BUSY
