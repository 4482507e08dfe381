"""
CalibrationTuner tests against a simulated axis.

Usage:
    python -m pytest tests/test_calibration_tuner.py
"""

import sys
import unittest
from dataclasses import replace
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from readout_servo.config import AXIS_REGIONS, DEFAULT_CALIBRATION_CONFIG
from readout_servo.Controllers.calibration_profile import Modifier
from readout_servo.Controllers.calibration_tuner import (
    CalibrationTuner,
    ThresholdModifierPolicy,
    TuneStopReason,
    no_modifier_policy,
)
from readout_servo.Controllers.cancellation import CancellationError, CancellationToken
from readout_servo.Drivers.keyboard_actuator import MockKeyboardActuator
from readout_servo.Drivers.ocr_reader import MockOCRReader
from readout_servo.Drivers.simulated_axis import SimulatedAxis

# No real waiting around modifier presses in tests
FAST_CONFIG = replace(DEFAULT_CALIBRATION_CONFIG, lead_ms=0, tail_ms=0)
REGION = AXIS_REGIONS["x"]


def _rig(rate, value=0.0, wrap=False):
    axis = SimulatedAxis(value=value, default_rate=rate, wrap=wrap)
    return axis, MockOCRReader(axis), MockKeyboardActuator(axis)


class TestModifierPolicy(unittest.TestCase):
    def test_thresholds(self):
        policy = ThresholdModifierPolicy()
        self.assertEqual(policy(10), Modifier("TRIANGLE"))
        self.assertEqual(policy(1), Modifier("TRIANGLE"))
        self.assertIsNone(policy(0.5))
        self.assertIsNone(policy(0.1))
        self.assertEqual(policy(0.01), Modifier("SQUARE"))

    def test_from_config(self):
        config = replace(FAST_CONFIG, fast_modifier="R1", fast_above=5)
        policy = ThresholdModifierPolicy.from_config(config)
        self.assertEqual(policy(10), Modifier("R1"))
        self.assertIsNone(policy(3))


class TestCalibrationTuner(unittest.TestCase):
    def test_converges_within_tolerance(self):
        axis, sensor, actuator = _rig(rate=0.01)
        tuner = CalibrationTuner(sensor, actuator, REGION, config=FAST_CONFIG)
        result = tuner.tune(1)

        self.assertEqual(result.reason, TuneStopReason.WITHIN_TOLERANCE)
        self.assertEqual(result.entry.duration_ms, 100)
        self.assertEqual(result.entry.modifier, Modifier("TRIANGLE"))
        self.assertEqual([p.duration_ms for p in result.probes], [2501, 1251, 626, 314, 158, 80, 119, 100])
        self.assertEqual(sensor.read_count, 2 * len(result.probes))
        self.assertEqual(actuator.held, [])

    def test_bracket_collapse_keeps_best_probe(self):
        axis, sensor, actuator = _rig(rate=1.0)
        config = replace(FAST_CONFIG, max_probe_iterations=20)
        tuner = CalibrationTuner(sensor, actuator, REGION, config=config)
        result = tuner.tune(0.5)

        self.assertEqual(result.reason, TuneStopReason.BRACKET_COLLAPSED)
        self.assertEqual(len(result.probes), 13)
        self.assertEqual(result.entry.duration_ms, 2)
        self.assertIsNone(result.entry.modifier)
        self.assertEqual(result.best_probe.duration_ms, 2)

    def test_budget_exhausted(self):
        axis, sensor, actuator = _rig(rate=0.01)
        config = replace(FAST_CONFIG, max_probe_iterations=5)
        result = CalibrationTuner(sensor, actuator, REGION, config=config).tune(1)

        self.assertEqual(result.reason, TuneStopReason.BUDGET_EXHAUSTED)
        self.assertEqual(len(result.probes), 5)
        self.assertEqual(result.entry.duration_ms, 158)

    def test_rotational_forward_delta(self):
        axis, sensor, actuator = _rig(rate=0.1, value=350, wrap=True)
        tuner = CalibrationTuner(sensor, actuator, AXIS_REGIONS["xrot"], config=FAST_CONFIG, rotational=True)
        result = tuner.tune(20)

        self.assertEqual(result.reason, TuneStopReason.WITHIN_TOLERANCE)
        self.assertEqual(result.entry.duration_ms, 200)
        self.assertEqual(len(result.probes), 11)
        self.assertTrue(all(p.measured >= 0 for p in result.probes))

    def test_rejects_non_positive_step(self):
        axis, sensor, actuator = _rig(rate=0.01)
        tuner = CalibrationTuner(sensor, actuator, REGION, config=FAST_CONFIG)
        with self.assertRaises(ValueError):
            tuner.tune(0)

    def test_calibrate_builds_sorted_profile(self):
        axis, sensor, actuator = _rig(rate=0.01)
        seen = []
        tuner = CalibrationTuner(
            sensor, actuator, REGION, config=FAST_CONFIG,
            modifier_policy=no_modifier_policy,
            on_probe=lambda step, probe: seen.append(step),
        )
        profile = tuner.calibrate([0.5, 2])

        self.assertEqual([e.step for e in profile], [2, 0.5])
        self.assertEqual(profile.entries[0].duration_ms, 200)
        self.assertEqual(profile.entries[1].duration_ms, 50)
        self.assertEqual(len(tuner.last_results), 2)
        self.assertEqual(set(seen), {0.5, 2})
        self.assertEqual(actuator.count("down", "TRIANGLE"), 0)

    def test_cancel_releases_modifier_once(self):
        axis, sensor, actuator = _rig(rate=0.01)
        token = CancellationToken()
        tuner = CalibrationTuner(
            sensor, actuator, REGION, config=FAST_CONFIG, cancel_token=token,
            on_probe=lambda step, probe: token.cancel("test abort"),
        )
        with self.assertRaises(CancellationError):
            tuner.tune(1)

        self.assertEqual(actuator.held, [])
        self.assertEqual(actuator.count("down", "TRIANGLE"), actuator.count("up", "TRIANGLE"))
        self.assertEqual(actuator.count("down", "TRIANGLE"), 1)


if __name__ == "__main__":
    unittest.main()
