"""
Step planner - greedy decomposition of a remaining error into calibrated steps.

Given |remaining error|, a tolerance and a descending calibration table,
picks repeats of each step (largest first) without eating into a safety
margin, then groups the picks into modifier segments so each modifier is
pressed once per contiguous run.

Pure functions over the table; no I/O.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

try:
    from .calibration_profile import CalibrationEntry, Modifier
except ImportError:
    from readout_servo.Controllers.calibration_profile import CalibrationEntry, Modifier

logger = logging.getLogger(__name__)

# Residual/step ratios this close to an integer count as exact
EXACT_EPSILON = 1e-9


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class StepPick:
    """`repeats` presses worth of one calibrated step."""
    step: float
    repeats: int
    ms_each: float

    @property
    def hold_ms(self) -> int:
        return max(1, round_half_up(self.ms_each * self.repeats))


@dataclass(frozen=True)
class Segment:
    """Contiguous picks sharing a modifier, executed as one hold/release bracket."""
    modifier: Optional[Modifier]
    steps_used: Tuple[StepPick, ...]

    @property
    def total_hold_ms(self) -> int:
        return sum(p.hold_ms for p in self.steps_used)

    @property
    def covered(self) -> float:
        return sum(p.step * p.repeats for p in self.steps_used)


@dataclass(frozen=True)
class MotionPlan:
    """Ephemeral plan for one batch; recomputed every iteration."""
    segments: Tuple[Segment, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.segments

    @property
    def covered(self) -> float:
        return sum(s.covered for s in self.segments)

    @property
    def total_hold_ms(self) -> int:
        return sum(s.total_hold_ms for s in self.segments)

    @property
    def picks(self) -> Tuple[StepPick, ...]:
        return tuple(p for s in self.segments for p in s.steps_used)


def _group_by_modifier(picks: List[Tuple[CalibrationEntry, int]]) -> Tuple[Segment, ...]:
    segments: List[Segment] = []
    for entry, repeats in picks:
        pick = StepPick(step=entry.step, repeats=repeats, ms_each=entry.duration_ms)
        if segments and segments[-1].modifier == entry.modifier:
            last = segments[-1]
            segments[-1] = Segment(modifier=last.modifier, steps_used=last.steps_used + (pick,))
        else:
            segments.append(Segment(modifier=entry.modifier, steps_used=(pick,)))
    return tuple(segments)


def plan_steps(
    abs_remaining: float,
    tolerance: float,
    entries: Sequence[CalibrationEntry],
    exact: bool = False,
    max_repeats: Optional[int] = None,
) -> MotionPlan:
    """
    Build a MotionPlan covering as much of abs_remaining as is safe.

    For each entry (largest first) the safety margin is the larger of the
    tolerance and half the next-smaller step, so a big step never lands
    somewhere the next step cannot correct from. The last entry only keeps
    the tolerance as margin.

    Args:
        abs_remaining: Magnitude of the remaining error
        tolerance: Effective tolerance for the target
        entries: Calibration entries sorted descending by step
        exact: Top off the residual with a step that divides it evenly
               (lands exactly on integer boundaries in the whole phase)
        max_repeats: Optional cap on repeats per entry

    Returns:
        MotionPlan: Possibly empty; empty means "nothing safe to do, nudge"
    """
    if abs_remaining <= 0 or not entries:
        return MotionPlan()

    remaining = abs_remaining
    picks: List[Tuple[CalibrationEntry, int]] = []

    for index, entry in enumerate(entries):
        next_smaller = entries[index + 1].step if index + 1 < len(entries) else None
        margin = max(tolerance, next_smaller / 2.0) if next_smaller is not None else tolerance
        cap = remaining - margin
        if cap < entry.step:
            continue
        repeats = int(math.floor(cap / entry.step))
        if max_repeats is not None:
            repeats = min(repeats, max_repeats)
        if repeats < 1:
            continue
        picks.append((entry, repeats))
        remaining -= repeats * entry.step

    if exact and remaining > EXACT_EPSILON:
        for entry in entries:
            ratio = remaining / entry.step
            count = round_half_up(ratio)
            if count >= 1 and abs(ratio - count) < EXACT_EPSILON:
                if max_repeats is not None:
                    count = min(count, max_repeats)
                picks.append((entry, count))
                remaining -= count * entry.step
                logger.debug(f"Exact top-off with {count} x {entry.step:g}")
                break

    plan = MotionPlan(segments=_group_by_modifier(picks))
    logger.debug(
        f"Plan for {abs_remaining:.6f} (tol {tolerance:g}): "
        + (", ".join(f"{p.repeats}x{p.step:g}" for p in plan.picks) or "empty")
    )
    return plan
