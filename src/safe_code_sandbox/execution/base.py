from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, ClassVar

from ..capture import STREAMS, OutputCaptureBuffer
from ..deadline import race_against_deadline, TimedOut
from ..errors import BusyError, InitializationError, NotInitializedError
from ..settings import SandboxSettings
from ..types import ErrorInfo, ExecutionOptions, ExecutionResult, ExecutorState
from .capabilities import ExecutorCapabilities
from .process import WorkerExitedError, WorkerProcess

logger = logging.getLogger(__name__)


class _ContextLost:
    """Marker for a run whose worker process ended without a result."""

    __slots__ = ("returncode", "stderr_tail")

    def __init__(self, returncode: int | None, stderr_tail: str) -> None:
        """Record how the worker process ended.

        Example:
            ```python
            lost = _ContextLost(returncode=-9, stderr_tail="")
            ```
        """
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class ProcessExecutor:
    """Base class for executors whose isolated context is a worker process.

    Subclasses name the language, build the worker command line and map the
    worker's native error payloads to `ErrorInfo`. This class owns the
    lifecycle state machine, the deadline race and output capture.

    Example:
        ```python
        executor = PythonExecutor(SandboxSettings())
        executor.initialize()
        result = executor.execute("print('Hello')")
        ```
    """

    language: ClassVar[str]
    file_extensions: ClassVar[frozenset[str]]
    aliases: ClassVar[frozenset[str]] = frozenset()
    capabilities: ClassVar[ExecutorCapabilities]

    def __init__(self, settings: SandboxSettings | None = None) -> None:
        """Create an uninitialized executor.

        Example:
            ```python
            executor = PythonExecutor()
            ```
        """
        self._settings = settings or SandboxSettings()
        self._lock = threading.Lock()
        self._state = ExecutorState.UNINITIALIZED
        self._context: WorkerProcess | None = None
        self._starting: WorkerProcess | None = None
        self._pending_init: Future[None] | None = None
        self._generation = 0
        self._request_ids = itertools.count(1)

    @property
    def settings(self) -> SandboxSettings:
        """Return the settings this executor was built with.

        Example:
            ```python
            timeout = executor.settings.timeout_ms
            ```
        """
        return self._settings

    @property
    def state(self) -> ExecutorState:
        """Return the current lifecycle state.

        Example:
            ```python
            assert executor.state is ExecutorState.READY
            ```
        """
        return self._state

    @property
    def is_ready(self) -> bool:
        """Return whether the executor can accept an execution right now.

        Example:
            ```python
            if not executor.is_ready:
                executor.initialize()
            ```
        """
        return self._state is ExecutorState.READY

    @property
    def is_loading(self) -> bool:
        """Return whether the runtime is currently being started.

        Example:
            ```python
            busy_loading = executor.is_loading
            ```
        """
        return self._state is ExecutorState.INITIALIZING

    def initialize(self) -> None:
        """Start the runtime: `UNINITIALIZED -> INITIALIZING -> READY`.

        Returns immediately when already initialized with a live context.
        When the context was lost to a timeout or crash, a fresh one is
        started here through the same `INITIALIZING` step. Concurrent callers
        during startup wait for the same attempt and share its outcome. On
        failure the executor returns to `UNINITIALIZED` and
        `InitializationError` is raised.

        Example:
            ```python
            executor.initialize()
            assert executor.is_ready
            ```
        """
        with self._lock:
            if self._state is ExecutorState.EXECUTING:
                return
            if self._state is ExecutorState.READY and self._context is not None:
                if self._context.alive:
                    return
            stale = self._context if self._pending_init is None else None
            generation = self._generation
            pending = self._pending_init
            owner = pending is None
            if pending is None:
                pending = self._pending_init = Future()
                self._state = ExecutorState.INITIALIZING
                self._context = None
        if not owner:
            pending.result()
            return

        if stale is not None:
            stale.kill()
        logger.debug("Initializing %s executor", self.language)
        try:
            context = self._start_context(generation)
            with self._lock:
                if self._generation != generation:
                    context.kill()
                    raise InitializationError(
                        f"{self.language} runtime was terminated during startup"
                    )
                self._context = context
                self._state = ExecutorState.READY
                self._pending_init = None
        except BaseException as exc:
            with self._lock:
                if self._generation == generation:
                    self._state = ExecutorState.UNINITIALIZED
                if self._pending_init is pending:
                    self._pending_init = None
            pending.set_exception(exc)
            raise
        pending.set_result(None)
        logger.debug("%s executor ready", self.language)

    def execute(self, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Run `code` in the isolated context and return its result.

        Raises `NotInitializedError` unless the executor is ready and
        `BusyError` while another execution is in flight. Runtime errors,
        timeouts and crashes of the context are reported in the result.

        Example:
            ```python
            result = executor.execute("print('Hello')", ExecutionOptions(timeout=1000))
            assert result.stdout == "Hello\\n"
            ```
        """
        opts = (options or ExecutionOptions()).resolve(self._settings.default_options())
        with self._lock:
            if self._state is ExecutorState.EXECUTING:
                raise BusyError(f"{self.language} executor is already running code")
            if self._state is not ExecutorState.READY:
                raise NotInitializedError(
                    f"{self.language} executor is not initialized (state: {self._state.value})"
                )
            self._state = ExecutorState.EXECUTING
            generation = self._generation
            context = self._context

        if context is None or not context.alive:
            # The previous context was destroyed by a deadline or crashed.
            context = self._restart_context(generation)

        buffer = OutputCaptureBuffer(
            opts.max_output_lines,  # type: ignore[arg-type]
            max_chars=self._settings.max_output_chars,
        )
        request_id = next(self._request_ids)
        started = time.perf_counter()
        outcome: dict[str, Any] | _ContextLost | TimedOut | None = None
        host_error: Exception | None = None
        try:
            outcome = race_against_deadline(
                lambda: self._run(context, request_id, code, buffer),
                opts.timeout,  # type: ignore[arg-type]
                on_expire=context.kill,
            )
        except Exception as exc:
            logger.exception("%s execution failed in the host", self.language)
            host_error = exc
        finally:
            lost = not isinstance(outcome, dict)
            if lost:
                context.kill()
            with self._lock:
                terminated = self._generation != generation
                if not terminated:
                    if lost:
                        self._context = None
                    self._state = ExecutorState.READY
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        snapshot = buffer.snapshot()

        if host_error is not None:
            return ExecutionResult(
                success=False,
                stdout=snapshot.stdout,
                stderr=snapshot.stderr,
                error=ErrorInfo(
                    message=f"Execution failed in the host: {host_error}",
                    type="WorkerError",
                ),
                execution_time=elapsed_ms,
                timed_out=False,
                truncated=snapshot.truncated,
            )
        if isinstance(outcome, TimedOut):
            logger.warning("%s execution timed out after %sms", self.language, opts.timeout)
            return ExecutionResult(
                success=False,
                stdout=snapshot.stdout,
                stderr=snapshot.stderr,
                error=ErrorInfo(
                    message=f"Execution timeout: exceeded {opts.timeout}ms",
                    type="TimeoutError",
                ),
                execution_time=elapsed_ms,
                timed_out=True,
                truncated=snapshot.truncated,
            )
        if isinstance(outcome, _ContextLost) and terminated:
            logger.warning("%s execution was terminated", self.language)
            error: ErrorInfo | None = ErrorInfo(message="Execution was terminated", type="Terminated")
        elif isinstance(outcome, _ContextLost):
            logger.warning(
                "%s runtime exited during execution (exit code %s)",
                self.language,
                outcome.returncode,
            )
            detail = f"exit code {outcome.returncode}"
            if outcome.stderr_tail:
                detail += f": {outcome.stderr_tail.splitlines()[-1]}"
            error = ErrorInfo(
                message=f"Execution context exited unexpectedly ({detail})",
                type="WorkerError",
            )
        elif outcome.get("ok"):
            error = None
        else:
            payload = outcome.get("error")
            error = self._map_error(payload if isinstance(payload, dict) else {})

        return ExecutionResult(
            success=error is None,
            stdout=snapshot.stdout,
            stderr=snapshot.stderr,
            error=error,
            execution_time=elapsed_ms,
            timed_out=False,
            truncated=snapshot.truncated,
        )

    def terminate(self) -> None:
        """Stop any in-flight work and discard the isolated context.

        Never raises and may be called repeatedly. The executor passes
        through `TERMINATED` and ends `UNINITIALIZED`, so `initialize()` is
        required before it can run code again.

        Example:
            ```python
            executor.terminate()
            assert executor.state is ExecutorState.UNINITIALIZED
            ```
        """
        try:
            with self._lock:
                self._generation += 1
                self._state = ExecutorState.TERMINATED
                contexts = [ctx for ctx in (self._context, self._starting) if ctx is not None]
                self._context = None
                self._starting = None
                self._pending_init = None
            for context in contexts:
                context.kill()
            if contexts:
                logger.debug("Terminated %s executor", self.language)
        except Exception:
            logger.exception("Failed to terminate %s executor cleanly", self.language)
        finally:
            with self._lock:
                if self._state is ExecutorState.TERMINATED:
                    self._state = ExecutorState.UNINITIALIZED

    def _start_context(self, generation: int) -> WorkerProcess:
        """Spawn a fresh worker process and wait until it is ready.

        Example:
            ```python
            context = executor._start_context(generation=0)
            ```
        """
        context = WorkerProcess(self._command(), name=self.language)
        with self._lock:
            self._starting = context
        try:
            context.start(startup_timeout=self._settings.startup_timeout_seconds)
        except (OSError, TimeoutError, WorkerExitedError) as exc:
            context.kill()
            raise InitializationError(
                f"Failed to start {self.language} runtime: {exc}"
            ) from exc
        finally:
            with self._lock:
                if self._starting is context:
                    self._starting = None
        with self._lock:
            stale = self._generation != generation
        if stale:
            context.kill()
            raise InitializationError(f"{self.language} runtime was terminated during startup")
        return context

    def _restart_context(self, generation: int) -> WorkerProcess:
        """Replace a destroyed context while an execution holds the executor.

        On failure the executor falls back to `UNINITIALIZED` and
        `InitializationError` propagates to the caller.

        Example:
            ```python
            context = executor._restart_context(generation=3)
            ```
        """
        logger.debug("Recreating %s execution context", self.language)
        try:
            context = self._start_context(generation)
            with self._lock:
                if self._generation != generation:
                    context.kill()
                    raise InitializationError(
                        f"{self.language} runtime was terminated during startup"
                    )
                self._context = context
            return context
        except InitializationError:
            with self._lock:
                if self._generation == generation:
                    self._state = ExecutorState.UNINITIALIZED
                    self._context = None
            raise

    def _run(
        self,
        context: WorkerProcess,
        request_id: int,
        code: str,
        buffer: OutputCaptureBuffer,
    ) -> dict[str, Any] | _ContextLost:
        """Send one request and consume messages until its result arrives.

        Output and clear messages tagged with another request id, or naming
        an unknown stream, are dropped.

        Example:
            ```python
            outcome = executor._run(context, 1, "print(1)", buffer)
            ```
        """
        try:
            context.send(self._request(request_id, code))
        except WorkerExitedError:
            return _ContextLost(context.returncode, context.stderr_tail())
        while True:
            message = context.receive()
            if message is None:
                return _ContextLost(context.returncode, context.stderr_tail())
            kind = message.get("type")
            if kind in ("output", "clear"):
                stream = message.get("stream", "stdout")
                if message.get("id") != request_id:
                    logger.debug(
                        "Dropping %s %s message from request %r",
                        self.language,
                        kind,
                        message.get("id"),
                    )
                elif stream not in STREAMS:
                    logger.warning("Dropping %s output for unknown stream %r", self.language, stream)
                elif kind == "output":
                    buffer.write(stream, str(message.get("text", "")))
                else:
                    buffer.clear(stream)
            elif kind == "result" and message.get("id") == request_id:
                return message
            else:
                logger.debug("Ignoring unexpected %s runtime message: %r", self.language, kind)

    def _request(self, request_id: int, code: str) -> dict[str, Any]:
        """Build the execute message sent to the worker.

        Example:
            ```python
            message = executor._request(1, "print(1)")
            ```
        """
        return {"type": "execute", "id": request_id, "code": code}

    def _command(self) -> list[str]:
        """Return the command line that starts this language's worker.

        Example:
            ```python
            argv = executor._command()
            ```
        """
        raise NotImplementedError

    def _map_error(self, payload: dict[str, Any]) -> ErrorInfo:
        """Translate a worker error payload into `ErrorInfo`.

        Example:
            ```python
            err = executor._map_error({"type": "ValueError", "message": "bad"})
            ```
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        """Return a debug representation with language and state.

        Example:
            ```python
            repr(executor)
            ```
        """
        return f"{type(self).__name__}(language={self.language!r}, state={self._state.value!r})"
