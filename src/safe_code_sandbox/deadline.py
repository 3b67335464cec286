from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimedOut:
    """Marker returned when the deadline wins a race."""

    __slots__ = ()

    def __repr__(self) -> str:
        """Return a stable representation.

        Example:
            ```python
            repr(TIMED_OUT)
            ```
        """
        return "TIMED_OUT"


TIMED_OUT = TimedOut()


class _Race(Generic[T]):
    """Settlement state shared by one operation and its deadline timer.

    Exactly one side settles the race; later attempts are ignored.

    Example:
        ```python
        race = _Race()
        race.settle_completed(42)
        ```
    """

    def __init__(self) -> None:
        """Create an unsettled race.

        Example:
            ```python
            race = _Race()
            ```
        """
        self._cond = threading.Condition()
        self._settled = False
        self._timed_out = False
        self._value: T | None = None
        self._error: BaseException | None = None

    def settle_completed(self, value: T | None = None, error: BaseException | None = None) -> bool:
        """Record the operation's outcome unless the deadline already won.

        Example:
            ```python
            won = race.settle_completed(value=1)
            ```
        """
        with self._cond:
            if self._settled:
                return False
            self._settled = True
            self._value = value
            self._error = error
            self._cond.notify_all()
            return True

    def settle_timed_out(self) -> bool:
        """Record expiry unless the operation already completed.

        Example:
            ```python
            won = race.settle_timed_out()
            ```
        """
        with self._cond:
            if self._settled:
                return False
            self._settled = True
            self._timed_out = True
            self._cond.notify_all()
            return True

    def wait(self) -> T | TimedOut:
        """Block until settled, then return the winner's outcome.

        Example:
            ```python
            outcome = race.wait()
            ```
        """
        with self._cond:
            while not self._settled:
                self._cond.wait()
        if self._timed_out:
            return TIMED_OUT
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


def race_against_deadline(
    operation: Callable[[], T],
    timeout_ms: int,
    on_expire: Callable[[], None] | None = None,
) -> T | TimedOut:
    """Run `operation` against a wall-clock deadline.

    The operation runs on a helper thread while a timer arms the deadline.
    Whichever finishes first settles the race. If the deadline wins,
    `on_expire` is called from the timer thread to force the operation to
    stop, and `TIMED_OUT` is returned. The timer is cancelled on every exit
    path, and since each call owns its own race a late timer cannot touch a
    later call.

    Example:
        ```python
        outcome = race_against_deadline(lambda: 2 + 2, timeout_ms=100)
        assert outcome == 4
        ```
    """
    if timeout_ms <= 0:
        raise ValueError("'timeout_ms' must be a positive integer")
    race: _Race[T] = _Race()

    def _run_operation() -> None:
        """Execute the operation and report its outcome to the race.

        Example:
            ```python
            _run_operation()
            ```
        """
        try:
            value = operation()
        except BaseException as exc:
            race.settle_completed(error=exc)
        else:
            race.settle_completed(value=value)

    def _expire() -> None:
        """Settle the race as timed out and trigger forced termination.

        Example:
            ```python
            _expire()
            ```
        """
        if not race.settle_timed_out():
            return
        logger.debug("Deadline of %sms expired", timeout_ms)
        if on_expire is None:
            return
        try:
            on_expire()
        except Exception:
            logger.exception("Forced termination after deadline failed")

    timer = threading.Timer(timeout_ms / 1000, _expire)
    timer.daemon = True
    runner = threading.Thread(target=_run_operation, name="sandbox-execution", daemon=True)
    timer.start()
    try:
        runner.start()
        return race.wait()
    finally:
        timer.cancel()
