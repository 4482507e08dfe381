"""
CLI tests: argument parsing and command wiring with mock drivers.

Usage:
    python -m pytest tests/test_cli.py
"""

import io
import json
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from readout_servo import main as cli
from readout_servo.config import ABORT_KEY, BUTTON_KEYS
from readout_servo.Controllers.calibration_profile import CalibrationEntry, CalibrationProfile, save_profile
from readout_servo.Controllers.cancellation import CancellationError, CancellationToken
from readout_servo.Drivers.keyboard_actuator import MockKeyboardActuator
from readout_servo.Drivers.ocr_reader import MockOCRReader
from readout_servo.Drivers.simulated_axis import SimulatedAxis


class TestParser(unittest.TestCase):
    def setUp(self):
        self.parser = cli.build_parser()

    def test_move(self):
        args = self.parser.parse_args(["move", "--target", "23.4", "--two-phase", "--field", "y"])
        self.assertEqual(args.command, "move")
        self.assertEqual(args.target, 23.4)
        self.assertTrue(args.two_phase)
        self.assertEqual(args.field, "y")
        self.assertIsNone(args.start_delay)

    def test_rotate_accepts_negative_target(self):
        args = self.parser.parse_args(["-v", "--start-delay", "0", "rotate", "--target", "-90"])
        self.assertEqual(args.target, -90.0)
        self.assertEqual(args.field, "xrot")
        self.assertTrue(args.verbose)
        self.assertEqual(args.start_delay, 0.0)

    def test_calibrate_requires_axis(self):
        with redirect_stdout(io.StringIO()), self.assertRaises(SystemExit):
            self.parser.parse_args(["calibrate"])
        args = self.parser.parse_args(["calibrate", "--axis", "rotation", "--steps", "1", "0.1", "--timestamp"])
        self.assertEqual(args.steps, [1.0, 0.1])
        self.assertTrue(args.timestamp)

    def test_command_required(self):
        with self.assertRaises(SystemExit):
            self.parser.parse_args([])


class TestCommands(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.parser = cli.build_parser()

    def tearDown(self):
        self._tmp.cleanup()

    def _rig(self, value=0.0, rate=0.001):
        axis = SimulatedAxis(value=value, default_rate=rate)
        return MockOCRReader(axis), MockKeyboardActuator(axis)

    def test_move_command(self):
        profile = CalibrationProfile(
            CalibrationEntry(step, step * 1000) for step in (10, 1, 0.1, 0.01, 0.001)
        )
        path = save_profile(profile, self.dir / "positionCal.json")
        args = self.parser.parse_args([
            "--start-delay", "0", "move", "--target", "3.3", "--profile", str(path),
        ])
        sensor, actuator = self._rig()

        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.run_move(args, CancellationToken(), sensor, actuator)

        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("within_tolerance", out.getvalue())
        self.assertEqual(actuator.held, [])

    def test_cancelled_during_start_delay(self):
        profile = CalibrationProfile([CalibrationEntry(1, 1000)])
        path = save_profile(profile, self.dir / "rotationCal.json")
        args = self.parser.parse_args([
            "--start-delay", "5", "rotate", "--target", "-90", "--profile", str(path),
        ])
        token = CancellationToken()
        token.cancel("test")
        sensor, actuator = self._rig()

        with redirect_stdout(io.StringIO()), self.assertRaises(CancellationError):
            cli.run_move(args, token, sensor, actuator)
        self.assertEqual(actuator.events, [])

    def test_calibrate_command_writes_profile(self):
        output = self.dir / "out" / "positionCal.json"
        args = self.parser.parse_args([
            "--start-delay", "0", "calibrate", "--axis", "position",
            "--steps", "2", "0.5", "--output", str(output),
        ])
        sensor, actuator = self._rig(rate=0.01)

        with redirect_stdout(io.StringIO()):
            code = cli.run_calibrate(args, CancellationToken(), sensor, actuator)

        self.assertEqual(code, cli.EXIT_OK)
        records = json.loads(output.read_text(encoding="utf-8"))
        self.assertEqual([r["target"] for r in records], [2.0, 0.5])
        self.assertEqual([r["ms"] for r in records], [200, 50])
        self.assertEqual([r["heldKey"] for r in records], ["TRIANGLE", "-"])

    def test_non_finite_target_exits_failed(self):
        profile = CalibrationProfile([CalibrationEntry(1, 1000)])
        path = save_profile(profile, self.dir / "positionCal.json")
        sensor, actuator = self._rig()

        with mock.patch.object(cli, "install_abort_handlers", return_value=None), \
                mock.patch.object(cli, "_create_drivers", return_value=(sensor, actuator)), \
                redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
            code = cli.main(["--start-delay", "0", "move", "--target", "nan", "--profile", str(path)])

        self.assertEqual(code, cli.EXIT_FAILED)
        self.assertEqual(actuator.events, [])


class TestAbortKey(unittest.TestCase):
    def test_abort_key_not_bound_to_a_button(self):
        self.assertNotIn(ABORT_KEY, BUTTON_KEYS.values())

    def test_button_mapping_to_abort_key_rejected(self):
        keys = dict(BUTTON_KEYS, L1=ABORT_KEY)
        with self.assertRaises(ValueError):
            MockKeyboardActuator(button_keys=keys)

    def test_abort_key_cancels(self):
        token = CancellationToken()
        on_press = cli.make_abort_handler(token)

        self.assertIs(on_press(SimpleNamespace(name=ABORT_KEY)), False)
        self.assertTrue(token.cancelled)

    def test_injected_abort_key_ignored(self):
        token = CancellationToken()
        on_press = cli.make_abort_handler(token)

        self.assertIsNone(on_press(SimpleNamespace(name=ABORT_KEY), True))
        self.assertFalse(token.cancelled)

    def test_button_keys_do_not_abort(self):
        token = CancellationToken()
        on_press = cli.make_abort_handler(token)

        for key in BUTTON_KEYS.values():
            event = SimpleNamespace(char=key) if len(key) == 1 else SimpleNamespace(name=key)
            self.assertIsNone(on_press(event))
        self.assertFalse(token.cancelled)


if __name__ == "__main__":
    unittest.main()
