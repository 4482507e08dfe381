"""
StepPlanner tests: greedy decomposition, margins, grouping and exact top-off.

Usage:
    python -m pytest tests/test_step_planner.py
"""

import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from readout_servo.Controllers.calibration_profile import CalibrationEntry, CalibrationProfile, Modifier
from readout_servo.Controllers.step_planner import StepPick, plan_steps, round_half_up

TRIANGLE = Modifier("TRIANGLE")
SQUARE = Modifier("SQUARE")


def _profile(*rows):
    return CalibrationProfile(CalibrationEntry(step, ms, mod) for step, ms, mod in rows)


class TestRoundHalfUp(unittest.TestCase):
    def test_halves_round_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(3.5), 4)
        self.assertEqual(round_half_up(2.4999), 2)

    def test_hold_ms_is_at_least_one(self):
        self.assertEqual(StepPick(step=0.001, repeats=1, ms_each=0.2).hold_ms, 1)
        self.assertEqual(StepPick(step=1, repeats=3, ms_each=20.5).hold_ms, 62)


class TestPlanSteps(unittest.TestCase):
    def setUp(self):
        self.table = _profile(
            (10, 100, None),
            (1, 20, SQUARE),
            (0.1, 5, Modifier("L1")),
        )

    def test_scenario_decomposition(self):
        plan = plan_steps(23.4, 0.05, self.table.entries)
        picks = [(p.step, p.repeats) for p in plan.picks]
        self.assertEqual(picks, [(10, 2), (1, 3), (0.1, 3)])
        self.assertAlmostEqual(plan.covered, 23.3)
        self.assertEqual(plan.total_hold_ms, 200 + 60 + 15)

    def test_margin_uses_half_next_smaller_step(self):
        # 10.3 - max(0.05, 0.5) = 9.8 < 10: the 10-step is skipped
        plan = plan_steps(10.3, 0.05, self.table.entries)
        self.assertNotIn(10, [p.step for p in plan.picks])

    def test_segments_group_by_modifier(self):
        table = _profile(
            (100, 800, TRIANGLE),
            (10, 120, TRIANGLE),
            (1, 60, None),
            (0.1, 40, SQUARE),
            (0.01, 15, SQUARE),
        )
        plan = plan_steps(237.55, 0.005, table.entries)
        modifiers = [s.modifier for s in plan.segments]
        self.assertEqual(modifiers, [TRIANGLE, None, SQUARE])
        self.assertEqual(len(plan.segments[0].steps_used), 2)
        self.assertEqual(
            plan.segments[0].total_hold_ms,
            sum(p.hold_ms for p in plan.segments[0].steps_used),
        )

    def test_empty_plan_when_every_step_too_big(self):
        table = _profile((10, 100, None), (1, 20, None))
        plan = plan_steps(0.5, 0.05, table.entries)
        self.assertTrue(plan.is_empty)
        self.assertEqual(plan.covered, 0)

    def test_zero_remaining(self):
        self.assertTrue(plan_steps(0.0, 0.01, self.table.entries).is_empty)

    def test_max_repeats_clamps_each_pick(self):
        table = _profile((1, 10, None))
        plan = plan_steps(1000, 0.01, table.entries, max_repeats=200)
        self.assertEqual(plan.picks[0].repeats, 200)

    def test_never_overshoots(self):
        table = _profile(
            (100, 800, TRIANGLE), (40, 330, TRIANGLE), (10, 90, TRIANGLE),
            (1, 25, None), (0.1, 12, SQUARE), (0.01, 6, SQUARE), (0.001, 2, SQUARE),
        )
        rng = np.random.default_rng(42)
        for remaining in rng.uniform(0, 500, size=300):
            for tol in (0.0005, 0.05, 0.5):
                plan = plan_steps(float(remaining), tol, table.entries)
                self.assertLessEqual(plan.covered, remaining - tol + 1e-9)
                for pick in plan.picks:
                    self.assertGreaterEqual(pick.repeats, 1)

    def test_termination_of_repeated_planning(self):
        # Simulate perfect execution: each plan is followed by re-planning
        # on the residual; progress stops within a few rounds.
        table = _profile((10, 100, None), (1, 20, None), (0.1, 5, None), (0.01, 2, None))
        remaining, rounds = 387.654, 0
        while True:
            plan = plan_steps(remaining, 0.005, table.entries)
            if plan.is_empty:
                break
            remaining -= plan.covered
            rounds += 1
            self.assertLess(rounds, 10)
        self.assertLess(remaining, table.smallest.step + 0.005 + 1e-9)


class TestExactTopOff(unittest.TestCase):
    def test_lands_exactly_on_whole_boundary(self):
        table = _profile((10, 10000, None), (1, 1000, None))
        plan = plan_steps(12.0, 0.49, table.entries, exact=True)
        self.assertAlmostEqual(plan.covered, 12.0)
        self.assertEqual([(p.step, p.repeats) for p in plan.picks], [(10, 1), (1, 1), (1, 1)])

    def test_no_top_off_without_exact(self):
        table = _profile((10, 10000, None), (1, 1000, None))
        plan = plan_steps(12.0, 0.49, table.entries)
        self.assertAlmostEqual(plan.covered, 11.0)

    def test_top_off_skipped_when_nothing_divides(self):
        table = _profile((10, 10000, None), (3, 3000, None))
        plan = plan_steps(12.0, 0.49, table.entries, exact=True)
        # 10 is taken, residual 2 is not a multiple of 10 or 3
        self.assertAlmostEqual(plan.covered, 10.0)


if __name__ == "__main__":
    unittest.main()
