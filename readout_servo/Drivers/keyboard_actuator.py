"""
Keyboard Actuator - Button Presses via Synthetic Key Events

This driver implements the ActuatorInterface by injecting keyboard events
with pynput. Logical controller buttons (CROSS, DPAD_RIGHT, TRIANGLE, ...)
are mapped to keys through config.BUTTON_KEYS, matching the key bindings
of the target application.

Context:
    - A press is key-down, a timed (cancellable) wait, key-up
    - The key-up always happens, even when the wait is cancelled
    - Events go to whichever window has focus
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

try:
    from pynput.keyboard import Controller, Key
    PYNPUT_AVAILABLE = True
except ImportError:
    Controller = None
    Key = None
    PYNPUT_AVAILABLE = False

try:
    from ..interfaces.actuator_interface import ActuatorInterface
    from ..config import BUTTON_KEYS, DirectionKeys, check_button_keys
    from ..Controllers.cancellation import CancellationToken
except ImportError:
    from readout_servo.interfaces.actuator_interface import ActuatorInterface
    from readout_servo.config import BUTTON_KEYS, DirectionKeys, check_button_keys
    from readout_servo.Controllers.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class KeyboardActuator(ActuatorInterface):
    """
    pynput-backed actuator.

    Button names are case-insensitive; unknown buttons raise ValueError
    before any key is touched. A mapping that binds the abort key is
    rejected up front.
    """

    def __init__(self, button_keys: Optional[Dict[str, str]] = None):
        """
        Initialize the keyboard actuator.

        Args:
            button_keys: Logical button -> key name (single character or a
                         pynput Key attribute such as "enter" or "left")
        """
        super().__init__()
        self.button_keys = dict(button_keys or BUTTON_KEYS)
        check_button_keys(self.button_keys)
        self._idle = CancellationToken()

        if not PYNPUT_AVAILABLE:
            raise ImportError("pynput library not available. Install with: pip install pynput")

        self._keyboard = Controller()

    def __repr__(self):
        return f"KeyboardActuator(buttons={len(self.button_keys)}, held={self._held})"

    def key_name(self, button: str) -> str:
        """
        Resolve a logical button to its key name.

        Raises:
            ValueError: If the button has no key mapping
        """
        name = self.button_keys.get(button.upper())
        if name is None:
            raise ValueError(f"Unknown button: {button}")
        return name

    def _resolve(self, button: str):
        name = self.key_name(button)
        if len(name) == 1:
            return name
        key = getattr(Key, name, None)
        if key is None:
            raise ValueError(f"Button {button} maps to unknown key {name!r}")
        return key

    def _press(self, button: str) -> None:
        self._keyboard.press(self._resolve(button))
        logger.debug(f"down {button}")

    def _release(self, button: str) -> None:
        self._keyboard.release(self._resolve(button))
        logger.debug(f"up {button}")

    def press_direction(
        self,
        button: str,
        duration_ms: float,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Hold `button` for duration_ms, releasing it on every exit path."""
        cancel = cancel or self._idle
        self.key_down(button)
        try:
            cancel.sleep_ms(duration_ms)
        finally:
            self.key_up(button)


class MockKeyboardActuator(KeyboardActuator):
    """
    Mock keyboard actuator for testing without injecting real key events.

    Records every key event and, when bound to a SimulatedAxis, moves it
    for each completed direction press. Holds are not actually waited out
    unless time_scale > 0.
    """

    def __init__(
        self,
        axis=None,
        dir_keys: Optional[DirectionKeys] = None,
        button_keys: Optional[Dict[str, str]] = None,
        time_scale: float = 0.0,
        on_press: Optional[Callable[[str, float], None]] = None,
    ):
        """
        Initialize mock keyboard actuator.

        Args:
            axis: SimulatedAxis moved by direction presses (optional)
            dir_keys: Which buttons move the axis up and down
            button_keys: Button mapping (validated like the real driver)
            time_scale: Fraction of each hold to actually wait (0 = instant)
            on_press: Hook called with (button, duration_ms) while the
                      direction key is down
        """
        # Don't call super().__init__() - no keyboard controller needed
        ActuatorInterface.__init__(self)
        self.button_keys = dict(button_keys or BUTTON_KEYS)
        check_button_keys(self.button_keys)
        self._idle = CancellationToken()
        self.axis = axis
        self.dir_keys = dir_keys or DirectionKeys()
        self.time_scale = time_scale
        self.on_press = on_press
        self.events: List[Tuple[str, str]] = []
        self.presses: List[Tuple[str, float, Tuple[str, ...]]] = []

    def __repr__(self):
        return f"MockKeyboardActuator(events={len(self.events)}, held={self._held})"

    def _press(self, button: str) -> None:
        self.key_name(button)
        self.events.append(("down", button))
        logger.debug(f"[MOCK] down {button}")

    def _release(self, button: str) -> None:
        self.events.append(("up", button))
        logger.debug(f"[MOCK] up {button}")

    def count(self, action: str, button: str) -> int:
        """How many times `button` saw `action` ("down" or "up")."""
        return sum(1 for event in self.events if event == (action, button))

    def press_direction(
        self,
        button: str,
        duration_ms: float,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        cancel = cancel or self._idle
        modifiers = tuple(self._held)
        self.key_down(button)
        try:
            if self.on_press is not None:
                self.on_press(button, duration_ms)
            cancel.sleep_ms(duration_ms * self.time_scale)
        finally:
            self.key_up(button)

        self.presses.append((button, duration_ms, modifiers))
        if self.axis is not None:
            if button == self.dir_keys.positive:
                self.axis.apply(1, duration_ms, modifiers)
            elif button == self.dir_keys.negative:
                self.axis.apply(-1, duration_ms, modifiers)
