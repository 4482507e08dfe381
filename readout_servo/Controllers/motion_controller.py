"""
Motion Controller - Closed-Loop Readout Servo

Drives a single axis until its on-screen readout matches a target value,
using only timed button presses and OCR readings. Open-loop actuation,
closed-loop correction.

Architecture:
    - Read: take the current reading, compute remaining error (wrap-aware
      on rotational axes).
    - Plan: greedy StepPlanner decomposition of |error| into calibrated
      steps, grouped by modifier.
    - Act: per segment, hold modifier -> lead -> press direction -> tail ->
      release. Re-read and loop.
    - Nudge: when nothing is safe to plan, press the smallest step once.
      At most max_nudges in a row; any planned batch resets the streak.
      max_batches bounds the whole move, across both phases.

Two-phase moves first close in on trunc(target) with whole steps only,
then finish on the fractional table without re-reading in between.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

try:
    from ..config import MoveOptions, DEFAULT_MOVE_OPTIONS, Region
    from ..interfaces.sensor_interface import SensorInterface, SensorError
    from ..interfaces.actuator_interface import ActuatorInterface
except ImportError:
    from readout_servo.config import MoveOptions, DEFAULT_MOVE_OPTIONS, Region
    from readout_servo.interfaces.sensor_interface import SensorInterface, SensorError
    from readout_servo.interfaces.actuator_interface import ActuatorInterface

from .calibration_profile import CalibrationEntry, CalibrationProfile
from .cancellation import CancellationError, CancellationToken
from .rotation import ANGLE_EPSILON, angular_distance, is_antipodal, normalize_signed, shortest_delta, to_360
from .step_planner import MotionPlan, Segment, StepPick, plan_steps
from .tolerance import effective_tolerance

logger = logging.getLogger(__name__)


class MotionControllerError(ValueError):
    """Exception raised for invalid move requests."""
    pass


class ControlState(Enum):
    """Controller state; the last three are terminal."""
    SEEKING = "seeking"
    SMALLEST_STEP_NUDGE = "smallest_step_nudge"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    MAX_ITERATIONS = "max_iterations"


_REASONS = {
    ControlState.CONVERGED: "within_tolerance",
    ControlState.EXHAUSTED: "smallest_step_exhausted",
    ControlState.MAX_ITERATIONS: "max_steps",
}


@dataclass(frozen=True)
class IterationRecord:
    """One executed batch (or nudge) and the reading it produced."""
    batch_index: int
    phase: str
    direction: int
    steps_used: Tuple[StepPick, ...]
    hold_duration_ms: int
    modifiers: Tuple[Optional[str], ...]
    reading_before: float
    reading_after: float
    remaining_after: float
    nudge: bool = False


@dataclass
class MoveResult:
    """Outcome of move_axis(). Running out of budget is ok=False, not an exception."""
    ok: bool
    reason: str
    final_reading: float
    signed_error: float
    iteration_log: List[IterationRecord] = field(default_factory=list)
    state: ControlState = ControlState.CONVERGED
    batches: int = 0
    nudges: int = 0


class MotionController:
    """
    Closed-loop single-axis controller.

    One move request at a time. The controller never retries a failed
    read: SensorError and CancellationError propagate after every held
    button has been released.
    """

    def __init__(
        self,
        sensor: SensorInterface,
        actuator: ActuatorInterface,
        region: Region,
        cancel_token: Optional[CancellationToken] = None,
        on_iteration: Optional[Callable[[IterationRecord], None]] = None,
    ):
        """
        Initialize motion controller.

        Args:
            sensor: Readout sensor (OCR or mock)
            actuator: Button actuator (keyboard or mock)
            region: Screen region of the axis readout
            cancel_token: Shared cancellation token
            on_iteration: Optional callback invoked after every batch
        """
        self.sensor = sensor
        self.actuator = actuator
        self.region = region
        self.cancel = cancel_token or CancellationToken()
        self.on_iteration = on_iteration

        self.state = ControlState.SEEKING
        self._log: List[IterationRecord] = []
        self._batches = 0
        self._nudges = 0
        self._nudge_streak = 0

    # -- Error geometry ------------------------------------------------------

    @staticmethod
    def _error(reading: float, target: float, wraparound: bool) -> Tuple[float, float]:
        """
        Returns:
            (signed, distance): signed direction hint and unsigned distance.
            On rotational axes signed is 0.0 at the antipode.
        """
        if wraparound:
            distance = angular_distance(reading, target)
            if distance <= ANGLE_EPSILON:
                return 0.0, 0.0
            return shortest_delta(reading, target), distance
        signed = target - reading
        return signed, abs(signed)

    @staticmethod
    def _final_error(reading: float, target: float, wraparound: bool) -> float:
        if wraparound:
            return normalize_signed(target - reading)
        return target - reading

    # -- Actuation -----------------------------------------------------------

    def _read(self) -> float:
        self.cancel.raise_if_cancelled()
        return self.sensor.read(self.region)

    def _execute_segment(self, segment: Segment, button: str, opts: MoveOptions) -> None:
        name = segment.modifier.name if segment.modifier is not None else None
        with self.actuator.holding(name):
            if name is not None:
                self.cancel.sleep_ms(opts.lead_ms)
            self.actuator.press_direction(button, segment.total_hold_ms, self.cancel)
            if name is not None:
                self.cancel.sleep_ms(opts.tail_ms)

    def _execute_plan(self, plan: MotionPlan, direction: int, opts: MoveOptions) -> None:
        button = opts.dir_keys.positive if direction > 0 else opts.dir_keys.negative
        for segment in plan.segments:
            self._execute_segment(segment, button, opts)
        self.cancel.sleep_ms(opts.settle_ms)

    def _record(self, record: IterationRecord) -> None:
        self._log.append(record)
        arrow = "+" if record.direction > 0 else ("-" if record.direction < 0 else "=")
        steps = ", ".join(f"{p.repeats}x{p.step:g}" for p in record.steps_used) or "none"
        logger.info(
            f"[{record.phase}] {'nudge' if record.nudge else 'batch'} #{record.batch_index} "
            f"{arrow} {steps} ({record.hold_duration_ms} ms) | "
            f"{record.reading_before:.3f} -> {record.reading_after:.3f} "
            f"(remaining {record.remaining_after:.6f})"
        )
        if self.on_iteration is not None:
            self.on_iteration(record)

    # -- Phase loop ----------------------------------------------------------

    def _run_phase(
        self,
        phase: str,
        target: float,
        reading: float,
        entries: Sequence[CalibrationEntry],
        tolerance: float,
        max_batches: int,
        opts: MoveOptions,
        allow_nudges: bool = True,
        exact: bool = False,
    ) -> Tuple[ControlState, float]:
        """
        Seek `target` with one calibration table.

        Returns:
            (state, reading): terminal state and the last reading taken
        """
        wrap = opts.wraparound
        batches = 0
        smallest = entries[-1]

        while True:
            self.state = ControlState.SEEKING
            signed, distance = self._error(reading, target, wrap)

            if distance <= tolerance:
                return ControlState.CONVERGED, reading

            if batches >= max_batches or self._batches >= opts.max_batches:
                spent = max_batches if batches >= max_batches else opts.max_batches
                logger.warning(f"[{phase}] batch budget of {spent} spent")
                return ControlState.MAX_ITERATIONS, reading

            if wrap and is_antipodal(reading, target):
                # Both directions are equally short; re-read instead of guessing
                batches += 1
                self._batches += 1
                before = reading
                reading = self._read()
                self._record(IterationRecord(
                    batch_index=self._batches, phase=phase, direction=0, steps_used=(),
                    hold_duration_ms=0, modifiers=(), reading_before=before,
                    reading_after=reading, remaining_after=self._error(reading, target, wrap)[1],
                ))
                continue

            direction = 1 if signed > 0 else -1
            plan = plan_steps(
                distance, tolerance, entries,
                exact=exact, max_repeats=opts.max_repeats_per_batch,
            )

            if not plan.is_empty:
                batches += 1
                self._batches += 1
                self._nudge_streak = 0
                before = reading
                self._execute_plan(plan, direction, opts)
                reading = self._read()
                self._record(IterationRecord(
                    batch_index=self._batches,
                    phase=phase,
                    direction=direction,
                    steps_used=plan.picks,
                    hold_duration_ms=plan.total_hold_ms,
                    modifiers=tuple(s.modifier.name if s.modifier else None for s in plan.segments),
                    reading_before=before,
                    reading_after=reading,
                    remaining_after=self._error(reading, target, wrap)[1],
                ))
                continue

            if not allow_nudges:
                logger.info(f"[{phase}] nothing left to plan with this table")
                return ControlState.EXHAUSTED, reading

            # Nothing safe to plan: press the smallest step once
            self.state = ControlState.SMALLEST_STEP_NUDGE
            pick = StepPick(step=smallest.step, repeats=1, ms_each=smallest.duration_ms)
            nudge = MotionPlan(segments=(Segment(modifier=smallest.modifier, steps_used=(pick,)),))
            self._nudges += 1
            self._nudge_streak += 1
            before = reading
            self._execute_plan(nudge, direction, opts)
            reading = self._read()
            self._record(IterationRecord(
                batch_index=self._nudges,
                phase=phase,
                direction=direction,
                steps_used=nudge.picks,
                hold_duration_ms=nudge.total_hold_ms,
                modifiers=(smallest.modifier.name if smallest.modifier else None,),
                reading_before=before,
                reading_after=reading,
                remaining_after=self._error(reading, target, wrap)[1],
                nudge=True,
            ))

            if self._nudge_streak >= opts.max_nudges:
                if self._error(reading, target, wrap)[1] <= tolerance:
                    return ControlState.CONVERGED, reading
                logger.warning(f"[{phase}] smallest step exhausted after {self._nudge_streak} nudges in a row")
                return ControlState.EXHAUSTED, reading

    # -- Public API ----------------------------------------------------------

    def move_axis(
        self,
        target: float,
        profile: CalibrationProfile,
        options: Optional[MoveOptions] = None,
    ) -> MoveResult:
        """
        Drive the axis until its reading is within tolerance of target.

        Args:
            target: Target reading. Signed degrees in [-180, 180] for
                    rotational moves.
            profile: Calibration profile for this axis class
            options: Keys, tolerance, budgets and mode flags

        Returns:
            MoveResult: ok=True only when converged

        Raises:
            ValueError: Rotational target out of range, or wraparound
                        combined with two_phase
            SensorError: A reading could not be trusted
            CancellationError: The move was cancelled
        """
        opts = options or DEFAULT_MOVE_OPTIONS
        if opts.wraparound and opts.two_phase:
            raise MotionControllerError("two_phase moves are only supported on linear axes")
        if not math.isfinite(target):
            raise MotionControllerError(f"Target must be finite, got {target}")

        goal = to_360(target) if opts.wraparound else float(target)
        tol = effective_tolerance(goal, opts.tolerance)

        self._log = []
        self._batches = 0
        self._nudges = 0
        self._nudge_streak = 0
        self.state = ControlState.SEEKING

        logger.info(
            f"Moving to {target:g}"
            + (f" ({goal:g} in 0-360)" if opts.wraparound else "")
            + f", tolerance {tol:g}, {len(profile)} calibrated steps"
            + (", two-phase" if opts.two_phase else "")
        )

        try:
            reading = self._read()
            logger.info(f"Start reading: {reading:.3f}")

            if opts.two_phase:
                whole = profile.whole()
                if whole:
                    whole_target = float(math.trunc(goal))
                    state, reading = self._run_phase(
                        "whole", whole_target, reading, whole, opts.whole_tolerance,
                        opts.whole_max_cycles, opts, allow_nudges=False, exact=True,
                    )
                    logger.info(f"Whole phase ended {state.value} at {reading:.3f}")
                else:
                    logger.info("No whole steps calibrated, skipping whole phase")
                fine = profile.fractional() or profile.entries
                state, reading = self._run_phase(
                    "fraction", goal, reading, fine, tol, opts.max_batches, opts,
                )
            else:
                state, reading = self._run_phase(
                    "single", goal, reading, profile.entries, tol, opts.max_batches, opts,
                )
        except (SensorError, CancellationError) as e:
            logger.error(f"Move aborted: {e}")
            self.actuator.release_all()
            raise
        except (Exception, KeyboardInterrupt):
            self.actuator.release_all()
            raise

        self.state = state
        result = MoveResult(
            ok=state == ControlState.CONVERGED,
            reason=_REASONS[state],
            final_reading=reading,
            signed_error=self._final_error(reading, goal, opts.wraparound),
            iteration_log=list(self._log),
            state=state,
            batches=self._batches,
            nudges=self._nudges,
        )
        log = logger.info if result.ok else logger.warning
        log(
            f"Move finished: {result.reason} at {reading:.3f} "
            f"(error {result.signed_error:+.6f}, {result.batches} batches, {result.nudges} nudges)"
        )
        return result

    def stop(self) -> None:
        """Cancel any running move and release every held button."""
        self.cancel.cancel("stop requested")
        self.actuator.release_all()

    def _cleanup(self) -> None:
        """Release all resources."""
        try:
            self.actuator.release_all()
        except Exception as e:
            logger.error(f"Actuator release during cleanup: {e}", exc_info=True)
        try:
            self.sensor._cleanup()
        except Exception as e:
            logger.debug(f"Sensor cleanup: {e}")
        logger.info("Motion controller cleanup completed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures cleanup."""
        self._cleanup()
