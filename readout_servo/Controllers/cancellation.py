"""
Cooperative cancellation for tuner and controller delays.

Every suspension point (hold durations, lead/tail waits, settle delays)
waits on a shared CancellationToken instead of time.sleep(), so a single
cancel() unblocks all of them at once.
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class CancellationError(Exception):
    """Raised when a wait observes that cancellation was requested."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """
    Thread-safe cancellation signal backed by threading.Event.

    One token is normally shared by the whole process; signal handlers and
    keyboard listeners call cancel() from other threads.
    """

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})"

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Only the first reason is kept."""
        if not self._event.is_set():
            self._reason = reason
            logger.info(f"Cancellation requested: {reason}")
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            CancellationError: If cancellation was requested
        """
        if self._event.is_set():
            raise CancellationError(self._reason or "cancelled")

    def sleep(self, seconds: float) -> None:
        """
        Wait up to `seconds`, returning early if cancelled.

        Raises:
            CancellationError: If cancelled before or during the wait
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        if self._event.wait(seconds):
            raise CancellationError(self._reason or "cancelled")

    def sleep_ms(self, ms: float) -> None:
        """Millisecond variant of sleep()."""
        self.sleep(ms / 1000.0)
