# delayedjobs/server/pulse.py
import threading
import time
from typing import Optional


class PulseSignal:
    """
    Wake-up signal shared by every processor in the process.

    `pulse()` is raised when new work is stored; it wakes all processors that
    are suspended between cycles. Each pulse bumps a generation counter, so a
    processor that takes a `mark()` before looking for work does not miss a
    pulse raised while it was busy. Safe to use from any thread.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._generation = 0

    def mark(self) -> int:
        with self._condition:
            return self._generation

    def pulse(self) -> None:
        with self._condition:
            self._generation += 1
            self._condition.notify_all()

    def interrupt(self) -> None:
        """Wakes waiters so they re-check their stopping event."""
        with self._condition:
            self._condition.notify_all()

    def wait(
        self,
        timeout: float,
        since: Optional[int] = None,
        stopping: Optional[threading.Event] = None,
    ) -> bool:
        """
        Blocks until a pulse newer than `since`, `stopping` is set or
        `timeout` seconds pass. Returns True only when woken by a pulse.
        """
        deadline = time.monotonic() + timeout
        with self._condition:
            if since is None:
                since = self._generation
            while self._generation == since:
                if stopping is not None and stopping.is_set():
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(remaining)
            return True
