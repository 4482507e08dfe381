"""
Calibration Tuner - Bisection Search for Hold Durations

For a requested step size, finds the hold duration that moves the readout
by that much, by probing the live axis and narrowing a [low, high] bracket.

Architecture:
    - Probe: read, actuate (inside a modifier hold if the policy picks one),
      read again, measure the delta (forward/wrap-aware on rotational axes).
    - Track the best (lowest error) probe; stop early inside tolerance.
    - Narrow: overshoot -> high = ms, undershoot -> low = ms.
    - A collapsed bracket or an exhausted budget ends the search normally;
      the best probe seen is used.

Each probe physically moves the axis. Position is not restored.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

try:
    from ..config import CalibrationConfig, DEFAULT_CALIBRATION_CONFIG, Region
    from ..interfaces.sensor_interface import SensorInterface
    from ..interfaces.actuator_interface import ActuatorInterface
except ImportError:
    from readout_servo.config import CalibrationConfig, DEFAULT_CALIBRATION_CONFIG, Region
    from readout_servo.interfaces.sensor_interface import SensorInterface
    from readout_servo.interfaces.actuator_interface import ActuatorInterface

from .calibration_profile import CalibrationEntry, CalibrationProfile, Modifier
from .cancellation import CancellationToken
from .rotation import forward_delta
from .step_planner import round_half_up
from .tolerance import effective_tolerance, tolerance_mode

logger = logging.getLogger(__name__)

ModifierPolicy = Callable[[float], Optional[Modifier]]


class TuneStopReason(Enum):
    """Why a bisection run ended. None of these is an error."""
    WITHIN_TOLERANCE = "within_tolerance"
    BRACKET_COLLAPSED = "bracket_collapsed"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass(frozen=True)
class ProbeRecord:
    """One probe: hold for duration_ms and what the readout did."""
    iteration: int
    duration_ms: int
    before: float
    after: float
    measured: float
    error: float
    modifier: Optional[Modifier]


@dataclass(frozen=True)
class TuneResult:
    """Outcome of tuning one step size."""
    entry: CalibrationEntry
    best_probe: ProbeRecord
    probes: List[ProbeRecord]
    reason: TuneStopReason
    tolerance: float


class ThresholdModifierPolicy:
    """
    Picks a modifier from the requested step magnitude alone.

    Large steps use the fast modifier, tiny steps the precise one,
    everything in between none. Thresholds are deployment-specific.
    """

    def __init__(
        self,
        precise_below: float = 0.1,
        fast_above: float = 0.999,
        precise: Optional[str] = "SQUARE",
        fast: Optional[str] = "TRIANGLE",
    ):
        self.precise_below = precise_below
        self.fast_above = fast_above
        self.precise = Modifier(precise) if precise else None
        self.fast = Modifier(fast) if fast else None

    @classmethod
    def from_config(cls, config: CalibrationConfig) -> 'ThresholdModifierPolicy':
        return cls(
            precise_below=config.precise_below,
            fast_above=config.fast_above,
            precise=config.precise_modifier,
            fast=config.fast_modifier,
        )

    def __call__(self, step: float) -> Optional[Modifier]:
        if step > self.fast_above:
            return self.fast
        if step < self.precise_below:
            return self.precise
        return None


def no_modifier_policy(step: float) -> Optional[Modifier]:
    """Policy that never holds a modifier."""
    return None


class CalibrationTuner:
    """
    Bisection tuner producing CalibrationEntry records from live probes.
    """

    def __init__(
        self,
        sensor: SensorInterface,
        actuator: ActuatorInterface,
        region: Region,
        config: Optional[CalibrationConfig] = None,
        modifier_policy: Optional[ModifierPolicy] = None,
        rotational: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        on_probe: Optional[Callable[[float, ProbeRecord], None]] = None,
    ):
        """
        Initialize the tuner.

        Args:
            sensor: Readout sensor
            actuator: Button actuator
            region: Screen region of the axis readout
            config: Bracket, budget, tolerance and timing
            modifier_policy: step -> Optional[Modifier]. Defaults to the
                             threshold policy built from config.
            rotational: Measure deltas with forward_delta (0-360 wrap)
            cancel_token: Shared cancellation token
            on_probe: Optional callback(step, probe) for live display
        """
        self.sensor = sensor
        self.actuator = actuator
        self.region = region
        self.config = config or DEFAULT_CALIBRATION_CONFIG
        self.modifier_policy = modifier_policy or ThresholdModifierPolicy.from_config(self.config)
        self.rotational = rotational
        self.cancel = cancel_token or CancellationToken()
        self.on_probe = on_probe
        self.last_results: List[TuneResult] = []

    def _measure(self, duration_ms: int, modifier: Optional[Modifier]):
        cfg = self.config
        self.cancel.raise_if_cancelled()
        before = self.sensor.read(self.region)

        with self.actuator.holding(modifier.name if modifier else None):
            if modifier is not None:
                self.cancel.sleep_ms(cfg.lead_ms)
            self.actuator.press_direction(cfg.probe_button, duration_ms, self.cancel)
            if modifier is not None:
                self.cancel.sleep_ms(cfg.tail_ms)

        self.cancel.sleep_ms(cfg.settle_ms)
        after = self.sensor.read(self.region)

        if self.rotational:
            measured = forward_delta(before, after)
        else:
            measured = after - before
        return before, after, measured

    def tune(self, step: float) -> TuneResult:
        """
        Find the hold duration that produces `step`.

        Args:
            step: Desired change of the readout per press (> 0)

        Returns:
            TuneResult: Best entry, all probes and the stop reason

        Raises:
            ValueError: If step is not positive
            SensorError: If a read fails (propagated, not retried)
            CancellationError: If cancelled (held buttons are released)
        """
        if step <= 0:
            raise ValueError(f"Calibration step must be positive, got {step}")

        cfg = self.config
        tol = effective_tolerance(step, cfg.tolerance)
        modifier = self.modifier_policy(step)
        low, high = cfg.min_ms, cfg.max_ms
        duration_ms = round_half_up((low + high) / 2)

        logger.info(
            f"Calibrating step {step:g} (tol={tol:g} {tolerance_mode(step, cfg.tolerance)}, "
            f"modifier={modifier or '-'}, bracket=[{low:g}, {high:g}] ms)"
        )

        probes: List[ProbeRecord] = []
        best: Optional[ProbeRecord] = None
        reason = TuneStopReason.BUDGET_EXHAUSTED

        try:
            for iteration in range(1, cfg.max_probe_iterations + 1):
                before, after, measured = self._measure(duration_ms, modifier)
                probe = ProbeRecord(
                    iteration=iteration,
                    duration_ms=duration_ms,
                    before=before,
                    after=after,
                    measured=measured,
                    error=abs(measured - step),
                    modifier=modifier,
                )
                probes.append(probe)
                logger.info(
                    f"  probe #{iteration}: {duration_ms} ms -> {measured:.6f} "
                    f"(error {probe.error:.6f})"
                )
                if self.on_probe is not None:
                    self.on_probe(step, probe)

                if best is None or probe.error < best.error:
                    best = probe

                if probe.error <= tol:
                    reason = TuneStopReason.WITHIN_TOLERANCE
                    break

                if measured > step:
                    high = duration_ms
                else:
                    low = duration_ms

                next_ms = round_half_up((low + high) / 2)
                if next_ms == duration_ms:
                    reason = TuneStopReason.BRACKET_COLLAPSED
                    break
                duration_ms = next_ms
        except (Exception, KeyboardInterrupt):
            self.actuator.release_all()
            raise

        if best is None:
            raise ValueError("max_probe_iterations must be at least 1")

        entry = CalibrationEntry(step=step, duration_ms=best.duration_ms, modifier=modifier)
        logger.info(
            f"Step {step:g}: {entry.duration_ms} ms after {len(probes)} probe(s) "
            f"[{reason.value}], best error {best.error:.6f}"
        )
        return TuneResult(entry=entry, best_probe=best, probes=probes, reason=reason, tolerance=tol)

    def calibrate(self, steps: Optional[Iterable[float]] = None) -> CalibrationProfile:
        """
        Tune every step size in turn and assemble a profile.

        Args:
            steps: Step magnitudes to calibrate; defaults to config.targets

        Returns:
            CalibrationProfile: Sorted, ready to save or use
        """
        steps = list(steps) if steps is not None else list(self.config.targets)
        results = [self.tune(step) for step in steps]
        self.last_results = results
        return CalibrationProfile(r.entry for r in results)
