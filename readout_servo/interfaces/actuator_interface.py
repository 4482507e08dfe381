"""
Actuator Interface - Abstract Base Class for Button Actuation

This interface defines the standard contract for actuators in the HAL.
All actuator implementations (e.g., keyboard injection) must conform to it.

Context:
    - The only primitive is "hold a logical button for N milliseconds"
    - A modifier button may be held around a press to change its rate
    - Every pressed button must be released on every exit path,
      including cancellation, so nothing is left stuck down
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import List, Optional, TYPE_CHECKING
import logging
import threading

if TYPE_CHECKING:
    from ..Controllers.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class ActuatorInterface(ABC):
    """
    Abstract base class defining the interface for button actuation.

    Tracks which buttons are currently down so release_all() can unwind
    them in reverse order. Subclasses only implement the raw _press/_release
    primitives and press_direction().

    The held list is guarded by a lock, so stop() on another thread can
    call release_all() while the control thread is releasing keys.
    """

    def __init__(self):
        """Initialize the actuator interface."""
        self._held: List[str] = []
        self._lock = threading.Lock()

    @abstractmethod
    def _press(self, button: str) -> None:
        """Send a raw button-down for a logical button."""
        pass

    @abstractmethod
    def _release(self, button: str) -> None:
        """Send a raw button-up for a logical button."""
        pass

    @abstractmethod
    def press_direction(
        self,
        button: str,
        duration_ms: float,
        cancel: Optional['CancellationToken'] = None,
    ) -> None:
        """
        Hold a direction button for duration_ms, then release it.

        The release must happen even if the wait is cancelled.

        Args:
            button: Logical button name (e.g. "DPAD_RIGHT")
            duration_ms: Hold duration in milliseconds
            cancel: Token whose cancellation aborts the hold early

        Raises:
            CancellationError: If cancelled during the hold
        """
        pass

    def key_down(self, button: str) -> None:
        """Press a button and remember it as held."""
        with self._lock:
            self._press(button)
            self._held.append(button)

    def key_up(self, button: str) -> None:
        """Release a button if it is currently held."""
        with self._lock:
            if button not in self._held:
                logger.debug(f"Release of {button} ignored (not held)")
                return
            self._held.remove(button)
            self._release(button)

    def hold_modifier(self, name: str) -> None:
        """Press and keep holding a modifier button."""
        self.key_down(name)

    def release_modifier(self, name: str) -> None:
        """Release a previously held modifier button."""
        self.key_up(name)

    @contextmanager
    def holding(self, name: Optional[str]):
        """
        Hold a modifier for the duration of a with-block.

        A None modifier is a no-op. The modifier is released exactly once,
        whatever way the block exits.
        """
        if name is None:
            yield
            return
        self.hold_modifier(name)
        try:
            yield
        finally:
            self.release_modifier(name)

    @property
    def held(self) -> List[str]:
        """Buttons currently held down (oldest first)."""
        with self._lock:
            return list(self._held)

    def release_all(self) -> None:
        """
        Release every held button, newest first.

        Errors from individual releases are logged and the remaining
        buttons are still released.
        """
        with self._lock:
            while self._held:
                button = self._held.pop()
                try:
                    self._release(button)
                except Exception as e:
                    logger.error(f"Failed to release {button}: {e}", exc_info=True)
        logger.debug("All held buttons released")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures nothing stays pressed."""
        try:
            self.release_all()
        except Exception as e:
            logger.error(f"Error during actuator cleanup: {e}", exc_info=True)
