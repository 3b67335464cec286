from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..types import ExecutionOptions, ExecutionResult, ExecutorState
from .capabilities import ExecutorCapabilities


@runtime_checkable
class CodeExecutor(Protocol):
    """Uniform contract implemented once per supported language."""

    language: str
    file_extensions: frozenset[str]
    capabilities: ExecutorCapabilities

    @property
    def state(self) -> ExecutorState:
        """Return the current lifecycle state.

        Example:
            ```python
            state = executor.state
            ```
        """
        ...

    @property
    def is_ready(self) -> bool:
        """Return whether the runtime is loaded and idle.

        Example:
            ```python
            ready = executor.is_ready
            ```
        """
        ...

    @property
    def is_loading(self) -> bool:
        """Return whether the runtime is being started.

        Example:
            ```python
            loading = executor.is_loading
            ```
        """
        ...

    def initialize(self) -> None:
        """Start the runtime; raises `InitializationError` on failure.

        Example:
            ```python
            executor.initialize()
            ```
        """
        ...

    def execute(self, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Execute code and return a normalized result.

        Example:
            ```python
            result = executor.execute("print(1)")
            ```
        """
        ...

    def terminate(self) -> None:
        """Forcibly stop any running execution.

        Example:
            ```python
            executor.terminate()
            ```
        """
        ...
