from __future__ import annotations

import collections
import json
import logging
import os
import queue
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any, Sequence

logger = logging.getLogger(__name__)

_EOF = object()
_SAFE_ENV_KEYS = ("PATH", "LANG", "LC_ALL", "SYSTEMROOT")


def _sandbox_env() -> dict[str, str]:
    """Return a minimal environment for worker processes.

    Proxy settings, credentials and tool configuration of the host are not
    passed through.

    Example:
        ```python
        env = _sandbox_env()
        ```
    """
    env = {key: os.environ[key] for key in _SAFE_ENV_KEYS if key in os.environ}
    env["PYTHONIOENCODING"] = "utf-8"
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    return env


class WorkerExitedError(RuntimeError):
    """Raised when the worker process exits before sending an expected message."""


class WorkerProcess:
    """One isolated runtime process speaking line-delimited JSON.

    A reader thread turns each stdout line into a message on an internal
    queue, preserving arrival order. A second thread drains stderr into a
    short tail kept for diagnostics. The process runs in a private scratch
    directory that is removed when the process is killed.

    Example:
        ```python
        proc = WorkerProcess(["node", "js_worker.js"], name="javascript")
        ready = proc.start(startup_timeout=10)
        ```
    """

    def __init__(self, command: Sequence[str], *, name: str) -> None:
        """Describe a worker process without starting it.

        Example:
            ```python
            proc = WorkerProcess(["python3", "-I", "worker.py"], name="python")
            ```
        """
        self._command = list(command)
        self._name = name
        self._messages: queue.Queue[Any] = queue.Queue()
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=20)
        self._popen: subprocess.Popen[str] | None = None
        self._workdir: Path | None = None
        self._kill_lock = threading.Lock()

    @property
    def name(self) -> str:
        """Return the runtime name used in logs and errors.

        Example:
            ```python
            label = proc.name
            ```
        """
        return self._name

    @property
    def alive(self) -> bool:
        """Return whether the process is running.

        Example:
            ```python
            if not proc.alive: ...
            ```
        """
        return self._popen is not None and self._popen.poll() is None

    @property
    def returncode(self) -> int | None:
        """Return the exit code once the process has exited.

        Example:
            ```python
            code = proc.returncode
            ```
        """
        return None if self._popen is None else self._popen.poll()

    def stderr_tail(self) -> str:
        """Return the last lines the runtime wrote to its own stderr.

        Example:
            ```python
            print(proc.stderr_tail())
            ```
        """
        return "".join(self._stderr_tail).strip()

    def start(self, startup_timeout: float) -> dict[str, Any]:
        """Spawn the process and wait for its `ready` handshake.

        Example:
            ```python
            ready = proc.start(startup_timeout=30)
            ```
        """
        self._workdir = Path(tempfile.mkdtemp(prefix=f"safe-code-sandbox-{self._name}-"))
        self._popen = subprocess.Popen(
            self._command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            cwd=self._workdir,
            env=_sandbox_env(),
            start_new_session=True,
        )
        threading.Thread(
            target=self._read_stdout, name=f"{self._name}-stdout", daemon=True
        ).start()
        threading.Thread(
            target=self._read_stderr, name=f"{self._name}-stderr", daemon=True
        ).start()

        try:
            message = self.receive(timeout=startup_timeout)
        except queue.Empty:
            raise TimeoutError(
                f"{self._name} runtime did not become ready within {startup_timeout}s"
            ) from None
        if message is None:
            raise WorkerExitedError(
                f"{self._name} runtime exited during startup "
                f"(exit code {self.returncode}): {self.stderr_tail() or 'no output'}"
            )
        if message.get("type") != "ready":
            raise WorkerExitedError(f"{self._name} runtime sent {message.get('type')!r} before ready")
        for warning in message.get("warnings") or []:
            logger.warning("%s runtime: %s", self._name, warning)
        return message

    def send(self, message: dict[str, Any]) -> None:
        """Write one JSON message to the process.

        Example:
            ```python
            proc.send({"type": "execute", "id": 1, "code": "print(1)"})
            ```
        """
        if self._popen is None or self._popen.stdin is None:
            raise WorkerExitedError(f"{self._name} runtime is not running")
        try:
            self._popen.stdin.write(json.dumps(message) + "\n")
            self._popen.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise WorkerExitedError(f"{self._name} runtime is not accepting input: {exc}") from exc

    def receive(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Return the next message, or `None` once the process output has ended.

        Raises `queue.Empty` when `timeout` elapses first.

        Example:
            ```python
            message = proc.receive(timeout=1.0)
            ```
        """
        item = self._messages.get(timeout=timeout)
        if item is _EOF:
            # Keep reporting EOF to later callers.
            self._messages.put(_EOF)
            return None
        return item

    def kill(self) -> None:
        """Forcibly stop the process and remove its scratch directory.

        Safe to call repeatedly and from any thread.

        Example:
            ```python
            proc.kill()
            ```
        """
        with self._kill_lock:
            popen = self._popen
            if popen is not None and popen.poll() is None:
                try:
                    popen.kill()
                except ProcessLookupError:
                    pass
                try:
                    popen.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    logger.warning("%s runtime (pid %s) did not exit after kill", self._name, popen.pid)
            if popen is not None and popen.stdin is not None:
                try:
                    popen.stdin.close()
                except OSError:
                    pass
            if self._workdir is not None:
                shutil.rmtree(self._workdir, ignore_errors=True)
                self._workdir = None

    def _read_stdout(self) -> None:
        """Forward decoded stdout lines to the message queue until EOF.

        Example:
            ```python
            proc._read_stdout()
            ```
        """
        popen = self._popen
        assert popen is not None and popen.stdout is not None
        try:
            for line in popen.stdout:
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("%s runtime wrote a non-protocol line: %r", self._name, line[:200])
                    continue
                if isinstance(message, dict):
                    self._messages.put(message)
        except (OSError, ValueError):
            logger.debug("%s runtime stdout closed", self._name)
        finally:
            self._messages.put(_EOF)

    def _read_stderr(self) -> None:
        """Keep the tail of the runtime's own stderr for diagnostics.

        Example:
            ```python
            proc._read_stderr()
            ```
        """
        popen = self._popen
        assert popen is not None and popen.stderr is not None
        try:
            for line in popen.stderr:
                self._stderr_tail.append(line)
        except (OSError, ValueError):
            pass
