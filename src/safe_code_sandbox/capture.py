from __future__ import annotations

import threading
from dataclasses import dataclass, field

STREAMS = ("stdout", "stderr")


@dataclass(frozen=True, slots=True)
class OutputSnapshot:
    """Captured text for both streams at one point in time.

    Example:
        ```python
        snap = OutputSnapshot(stdout="a\\n", stderr="", truncated=False)
        ```
    """

    stdout: str
    stderr: str
    truncated: bool


@dataclass(slots=True)
class _StreamState:
    """Accumulated chunks and completed-line count for one stream.

    Example:
        ```python
        state = _StreamState()
        ```
    """

    chunks: list[str] = field(default_factory=list)
    lines: int = 0
    chars: int = 0
    truncated: bool = False


class OutputCaptureBuffer:
    """Line- and size-limited accumulator for stdout/stderr of a single execution.

    Once a stream holds `max_lines` complete lines or `max_chars`
    characters, later text for that stream is dropped and the truncation
    flag is raised. Writes never block
    or fail because of the limit.

    Example:
        ```python
        buf = OutputCaptureBuffer(max_lines=2)
        buf.write("stdout", "a\\nb\\nc\\n")
        assert buf.snapshot().stdout == "a\\nb\\n"
        ```
    """

    def __init__(self, max_lines: int, max_chars: int | None = None) -> None:
        """Create an empty buffer with per-stream line and character limits.

        `max_chars=None` leaves the size of a stream unbounded.

        Example:
            ```python
            buf = OutputCaptureBuffer(max_lines=1000, max_chars=1_000_000)
            ```
        """
        if max_lines <= 0:
            raise ValueError("'max_lines' must be a positive integer")
        if max_chars is not None and max_chars <= 0:
            raise ValueError("'max_chars' must be a positive integer")
        self._max_lines = max_lines
        self._max_chars = max_chars
        self._lock = threading.Lock()
        self._streams = {name: _StreamState() for name in STREAMS}

    def write(self, stream: str, text: str) -> None:
        """Append text to a stream, dropping whatever exceeds the limits.

        Example:
            ```python
            buf.write("stderr", "warning\\n")
            ```
        """
        state = self._state(stream)
        if not text:
            return
        with self._lock:
            for piece in text.splitlines(keepends=True):
                if state.lines >= self._max_lines:
                    state.truncated = True
                    break
                if self._max_chars is not None:
                    room = self._max_chars - state.chars
                    if len(piece) > room:
                        if room > 0:
                            state.chunks.append(piece[:room])
                            state.chars += room
                        state.truncated = True
                        break
                state.chunks.append(piece)
                state.chars += len(piece)
                if piece.endswith(("\n", "\r")):
                    state.lines += 1

    def clear(self, stream: str) -> None:
        """Discard everything captured so far on a stream.

        Example:
            ```python
            buf.clear("stdout")
            ```
        """
        state = self._state(stream)
        with self._lock:
            state.chunks.clear()
            state.lines = 0
            state.chars = 0

    def snapshot(self) -> OutputSnapshot:
        """Return the captured text and whether any stream was truncated.

        Example:
            ```python
            snap = buf.snapshot()
            ```
        """
        with self._lock:
            return OutputSnapshot(
                stdout="".join(self._streams["stdout"].chunks),
                stderr="".join(self._streams["stderr"].chunks),
                truncated=any(state.truncated for state in self._streams.values()),
            )

    def _state(self, stream: str) -> _StreamState:
        """Look up a stream by name.

        Example:
            ```python
            state = buf._state("stdout")
            ```
        """
        try:
            return self._streams[stream]
        except KeyError:
            raise ValueError(f"Unknown output stream: '{stream}'") from None
