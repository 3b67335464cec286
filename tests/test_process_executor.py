from typing import Any

import pytest

from safe_code_sandbox import PythonExecutor
from safe_code_sandbox.capture import OutputCaptureBuffer


class _ScriptedContext:
    """Stands in for a worker process that replays a fixed message list."""

    def __init__(self, messages: list[dict[str, Any]]) -> None:
        self.alive = True
        self.returncode: int | None = None
        self.sent: list[dict[str, Any]] = []
        self._messages = list(messages)

    def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)

    def receive(self) -> dict[str, Any] | None:
        return self._messages.pop(0) if self._messages else None

    def stderr_tail(self) -> str:
        return ""

    def kill(self) -> None:
        self.alive = False


def test_run_keeps_only_messages_for_its_request() -> None:
    context = _ScriptedContext(
        [
            {"type": "output", "id": 6, "stream": "stdout", "text": "previous run\n"},
            {"type": "clear", "id": 6, "stream": "stdout"},
            {"type": "output", "id": 7, "stream": "stdout", "text": "kept\n"},
            {"type": "output", "id": 7, "stream": "stderr", "text": "warned\n"},
            {"type": "result", "id": 6, "ok": False, "error": None},
            {"type": "result", "id": 7, "ok": True, "error": None},
        ]
    )
    buffer = OutputCaptureBuffer(max_lines=10)

    outcome = PythonExecutor()._run(context, 7, "print('kept')", buffer)  # type: ignore[arg-type]

    assert outcome == {"type": "result", "id": 7, "ok": True, "error": None}
    assert context.sent[0]["id"] == 7
    snap = buffer.snapshot()
    assert snap.stdout == "kept\n"
    assert snap.stderr == "warned\n"


def test_run_drops_unknown_streams(caplog: pytest.LogCaptureFixture) -> None:
    context = _ScriptedContext(
        [
            {"type": "output", "id": 1, "stream": "stdlog", "text": "odd\n"},
            {"type": "clear", "id": 1, "stream": 42},
            {"type": "output", "id": 1, "stream": "stdout", "text": "fine\n"},
            {"type": "result", "id": 1, "ok": True, "error": None},
        ]
    )
    buffer = OutputCaptureBuffer(max_lines=10)

    with caplog.at_level("WARNING", logger="safe_code_sandbox.execution.base"):
        outcome = PythonExecutor()._run(context, 1, "print('fine')", buffer)  # type: ignore[arg-type]

    assert isinstance(outcome, dict)
    assert buffer.snapshot().stdout == "fine\n"
    assert "unknown stream" in caplog.text


def test_run_reports_lost_context_when_messages_stop() -> None:
    context = _ScriptedContext([{"type": "output", "id": 3, "stream": "stdout", "text": "half"}])
    context.returncode = -9
    buffer = OutputCaptureBuffer(max_lines=10)

    outcome = PythonExecutor()._run(context, 3, "print('half')", buffer)  # type: ignore[arg-type]

    assert not isinstance(outcome, dict)
    assert outcome.returncode == -9
    assert buffer.snapshot().stdout == "half"
