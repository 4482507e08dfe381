"""
Actuator tests: modifier hold scoping, release_all and the mock keyboard.

Usage:
    python -m pytest tests/test_actuator.py
"""

import sys
import threading
import unittest
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from readout_servo.Controllers.cancellation import CancellationError, CancellationToken
from readout_servo.Drivers.keyboard_actuator import MockKeyboardActuator
from readout_servo.Drivers.simulated_axis import SimulatedAxis


class TestHolding(unittest.TestCase):
    def test_holding_releases_on_error(self):
        actuator = MockKeyboardActuator()
        with self.assertRaises(RuntimeError):
            with actuator.holding("TRIANGLE"):
                self.assertEqual(actuator.held, ["TRIANGLE"])
                raise RuntimeError("boom")
        self.assertEqual(actuator.held, [])
        self.assertEqual(actuator.events, [("down", "TRIANGLE"), ("up", "TRIANGLE")])

    def test_holding_none_is_noop(self):
        actuator = MockKeyboardActuator()
        with actuator.holding(None):
            pass
        self.assertEqual(actuator.events, [])

    def test_release_all_newest_first(self):
        actuator = MockKeyboardActuator()
        actuator.key_down("SQUARE")
        actuator.key_down("DPAD_UP")
        actuator.release_all()
        self.assertEqual(actuator.events[-2:], [("up", "DPAD_UP"), ("up", "SQUARE")])
        self.assertEqual(actuator.held, [])

    def test_release_of_unheld_key_ignored(self):
        actuator = MockKeyboardActuator()
        actuator.key_up("CROSS")
        self.assertEqual(actuator.events, [])

    def test_holding_then_release_all_releases_once(self):
        actuator = MockKeyboardActuator()
        token = CancellationToken()
        token.cancel("abort")
        with self.assertRaises(CancellationError):
            with actuator.holding("SQUARE"):
                token.sleep_ms(10)
        actuator.release_all()
        self.assertEqual(actuator.count("up", "SQUARE"), 1)

    def test_release_all_from_other_thread_releases_once(self):
        actuator = MockKeyboardActuator()
        rounds = 200
        for _ in range(rounds):
            actuator.key_down("DPAD_RIGHT")
            stopper = threading.Thread(target=actuator.release_all)
            stopper.start()
            actuator.key_up("DPAD_RIGHT")
            stopper.join()

        self.assertEqual(actuator.count("down", "DPAD_RIGHT"), rounds)
        self.assertEqual(actuator.count("up", "DPAD_RIGHT"), rounds)
        self.assertEqual(actuator.held, [])


class TestMockKeyboardActuator(unittest.TestCase):
    def test_unknown_button_rejected(self):
        actuator = MockKeyboardActuator()
        with self.assertRaises(ValueError):
            actuator.key_down("START")
        self.assertEqual(actuator.held, [])

    def test_button_names_case_insensitive(self):
        actuator = MockKeyboardActuator()
        self.assertEqual(actuator.key_name("dpad_left"), "left")
        self.assertEqual(actuator.key_name("Triangle"), "c")

    def test_direction_press_moves_axis_with_modifier_rate(self):
        axis = SimulatedAxis(rates={None: 0.01, "TRIANGLE": 0.1})
        actuator = MockKeyboardActuator(axis)

        actuator.press_direction("DPAD_RIGHT", 100)
        with actuator.holding("TRIANGLE"):
            actuator.press_direction("DPAD_RIGHT", 100)
        actuator.press_direction("DPAD_LEFT", 50)

        self.assertAlmostEqual(axis.value, 1.0 + 10.0 - 0.5)
        self.assertEqual(actuator.presses[1], ("DPAD_RIGHT", 100, ("TRIANGLE",)))

    def test_non_direction_buttons_do_not_move_axis(self):
        axis = SimulatedAxis()
        actuator = MockKeyboardActuator(axis)
        actuator.press_direction("CROSS", 100)
        self.assertEqual(axis.value, 0.0)
        self.assertEqual(actuator.events, [("down", "CROSS"), ("up", "CROSS")])


class TestSimulatedAxis(unittest.TestCase):
    def test_signed_display_wraps(self):
        axis = SimulatedAxis(value=179.0, default_rate=1.0, wrap=True)
        axis.apply(1, 2)
        self.assertAlmostEqual(axis.value, 181.0)
        self.assertAlmostEqual(axis.reading(), -179.0)

    def test_unsigned_display(self):
        axis = SimulatedAxis(value=-10, wrap=True, signed_display=False)
        self.assertAlmostEqual(axis.reading(), 350.0)

    def test_custom_response(self):
        axis = SimulatedAxis(response=lambda ms, modifier: (ms / 100.0) ** 2)
        axis.apply(1, 200)
        self.assertAlmostEqual(axis.value, 4.0)


if __name__ == "__main__":
    unittest.main()
