from __future__ import annotations

import logging
import time
from pathlib import Path

from .errors import UnsupportedLanguageError
from .execution.executor import CodeExecutor
from .registry import GLOBAL_EXECUTOR_REGISTRY, ExecutorRegistry, is_valid_extension
from .types import ExecutionOptions, ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    """Return whole milliseconds elapsed since a `perf_counter` reading.

    Example:
        ```python
        ms = _elapsed_ms(time.perf_counter())
        ```
    """
    return max(0, int(round((time.perf_counter() - started) * 1000)))


class Sandbox:
    """Single entry point for running untrusted code in any registered language.

    Example:
        ```python
        sandbox = Sandbox()
        result = sandbox.execute("python", "print('Hello')")
        assert result.stdout == "Hello\\n"
        ```
    """

    def __init__(self, registry: ExecutorRegistry | None = None) -> None:
        """Bind the facade to a registry (the process-wide one by default).

        Example:
            ```python
            sandbox = Sandbox(ExecutorRegistry.with_builtin_executors())
            ```
        """
        self._registry = registry or GLOBAL_EXECUTOR_REGISTRY

    @property
    def registry(self) -> ExecutorRegistry:
        """Return the registry used to resolve executors.

        Example:
            ```python
            langs = sandbox.registry.languages()
            ```
        """
        return self._registry

    def executor(self, language: str) -> CodeExecutor:
        """Return the executor for a language without starting it.

        Example:
            ```python
            executor = sandbox.executor("javascript")
            ```
        """
        return self._registry.resolve(language)

    def execute(
        self,
        language: str,
        code: str,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Execute code in the named language and return a normalized result.

        Blank code succeeds immediately with empty output. The runtime is
        initialized on first use and a lost context is recreated before the
        clock starts; `InitializationError` propagates unchanged.

        Example:
            ```python
            result = Sandbox().execute("python", "1/0")
            assert result.error.type == "ZeroDivisionError"
            ```
        """
        started = time.perf_counter()
        executor = self._registry.resolve(language)
        request = ExecutionRequest(
            code=code,
            options=(options or ExecutionOptions()).resolve(self._registry.settings.default_options()),
        )
        if not request.code.strip():
            return ExecutionResult(success=True, execution_time=_elapsed_ms(started))

        # Starts the runtime, or replaces one lost to a timeout or crash, before timing.
        executor.initialize()

        started = time.perf_counter()
        result = executor.execute(request.code, request.options)
        return ExecutionResult(
            success=result.success,
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.error,
            execution_time=_elapsed_ms(started),
            timed_out=result.timed_out,
            truncated=result.truncated,
        )

    def run_file(
        self,
        path: str,
        language: str | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Execute a source file, choosing the language by extension if not given.

        Example:
            ```python
            result = Sandbox().run_file("scripts/hello.py")
            ```
        """
        if language is None:
            executor = self._registry.resolve_path(path)
        else:
            executor = self._registry.resolve(language)
            if not is_valid_extension(path, executor.file_extensions):
                raise UnsupportedLanguageError(path, sorted(executor.file_extensions))
        code = Path(path).read_text(encoding="utf-8")
        return self.execute(executor.language, code, options)

    def terminate(self, language: str) -> None:
        """Stop whatever the language's executor is running.

        Example:
            ```python
            sandbox.terminate("python")
            ```
        """
        executor = self._registry.resolve(language)
        logger.debug("Terminate requested for %s executor", executor.language)
        executor.terminate()


_DEFAULT_SANDBOX = Sandbox()


def execute(
    language: str,
    code: str,
    options: ExecutionOptions | None = None,
) -> ExecutionResult:
    """Execute code with the process-wide sandbox.

    Example:
        ```python
        from safe_code_sandbox import execute
        result = execute("python", "print('Hello')")
        ```
    """
    return _DEFAULT_SANDBOX.execute(language, code, options)
