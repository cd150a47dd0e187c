"""Bounded admission gate for concurrently running job drivers."""

import threading
from collections import deque
from typing import Optional


class Slot:
    """Release capability handed out by ``ConcurrencyLimiter.acquire``.

    Releasing a slot twice is a no-op, so ``with limiter.acquire() as slot``
    and an explicit ``slot.release()`` can be mixed freely.
    """

    def __init__(self, limiter: "ConcurrencyLimiter"):
        self._limiter = limiter
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._limiter.release()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.release()


class ConcurrencyLimiter:
    """FIFO counting semaphore with cancellable waits.

    At most ``capacity`` slots are held at any time. Waiters are admitted in
    arrival order, so no waiter starves while others keep cycling through.
    One instance is shared by every job of a batch run.
    """

    def __init__(self, capacity: int, check_interval_s: float = 0.1):
        """Initialize limiter.

        Args:
            capacity: Maximum number of simultaneously held slots (>= 1)
            check_interval_s: How often a blocked waiter re-checks its
                              cancellation event
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.check_interval_s = check_interval_s
        self._cond = threading.Condition()
        self._waiters: deque = deque()
        self._active = 0
        self._peak = 0

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def peak(self) -> int:
        """Highest number of slots ever held at once."""
        with self._cond:
            return self._peak

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> Optional[Slot]:
        """Block until a slot is free and return it.

        Returns:
            A Slot, or None if ``cancel_event`` was set while waiting
        """
        ticket = object()
        with self._cond:
            self._waiters.append(ticket)
            try:
                while self._active >= self.capacity or self._waiters[0] is not ticket:
                    if cancel_event is not None and cancel_event.is_set():
                        return None
                    self._cond.wait(timeout=self.check_interval_s)
                if cancel_event is not None and cancel_event.is_set():
                    return None
                self._active += 1
                self._peak = max(self._peak, self._active)
            finally:
                self._waiters.remove(ticket)
                # Head of the line may have changed
                self._cond.notify_all()
        return Slot(self)

    def release(self) -> None:
        """Free one slot and wake the waiters."""
        with self._cond:
            if self._active <= 0:
                raise RuntimeError("release() called more times than acquire()")
            self._active -= 1
            self._cond.notify_all()
