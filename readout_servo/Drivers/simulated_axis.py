"""
Simulated Axis - Software Stand-in for an On-Screen Readout

Shared state behind MockOCRReader and MockKeyboardActuator: the actuator
moves the value by (rate x hold duration), the reader returns it rounded
to the readout precision, optionally with Gaussian measurement noise.

Rates are per modifier, so "holding TRIANGLE" can move ten times faster
than a plain press, just like the real target application.
"""

import logging
from typing import Callable, Dict, Optional, Sequence

import numpy as np

try:
    from ..Controllers.rotation import normalize_signed
except ImportError:
    from readout_servo.Controllers.rotation import normalize_signed

logger = logging.getLogger(__name__)

ResponseFn = Callable[[float, Optional[str]], float]


class SimulatedAxis:
    """
    A scalar axis driven by timed presses.

    Linear axes accumulate without bounds; rotational axes (wrap=True)
    fold into [0, 360) internally and display as signed (-180, 180] or
    unsigned [0, 360) degrees.
    """

    def __init__(
        self,
        value: float = 0.0,
        rates: Optional[Dict[Optional[str], float]] = None,
        default_rate: float = 0.01,
        wrap: bool = False,
        signed_display: bool = True,
        decimals: int = 3,
        noise_std: float = 0.0,
        seed: Optional[int] = None,
        response: Optional[ResponseFn] = None,
    ):
        """
        Initialize the simulated axis.

        Args:
            value: Starting value
            rates: Units per millisecond keyed by modifier name (None = no modifier)
            default_rate: Rate for modifiers missing from `rates`
            wrap: Treat the value as an angle (mod 360)
            signed_display: For wrap axes, display in (-180, 180]
            decimals: Readout precision
            noise_std: Standard deviation of read noise (0 = exact)
            seed: Seed for the noise generator
            response: Optional callable(duration_ms, modifier) -> magnitude,
                      replacing the linear rate model
        """
        self.rates = dict(rates) if rates else {None: default_rate}
        self.default_rate = default_rate
        self.wrap = wrap
        self.signed_display = signed_display
        self.decimals = decimals
        self.noise_std = noise_std
        self.response = response
        self._rng = np.random.default_rng(seed)
        self._value = float(value) % 360.0 if wrap else float(value)
        self.total_hold_ms = 0.0

    def __repr__(self):
        return f"SimulatedAxis(value={self._value:.6f}, wrap={self.wrap})"

    @property
    def value(self) -> float:
        return self._value

    def set_value(self, value: float) -> None:
        self._value = float(value) % 360.0 if self.wrap else float(value)

    def magnitude(self, duration_ms: float, modifier: Optional[str] = None) -> float:
        """How far a hold of duration_ms moves the axis."""
        if self.response is not None:
            return float(self.response(duration_ms, modifier))
        rate = self.rates.get(modifier, self.default_rate)
        return rate * duration_ms

    def apply(self, direction: int, duration_ms: float, modifiers: Sequence[str] = ()) -> float:
        """
        Move the axis for a completed hold.

        Args:
            direction: +1 or -1
            duration_ms: Hold duration
            modifiers: Modifiers held during the press; the innermost wins

        Returns:
            float: Signed change applied
        """
        modifier = modifiers[-1] if modifiers else None
        delta = direction * self.magnitude(duration_ms, modifier)
        self.set_value(self._value + delta)
        self.total_hold_ms += duration_ms
        logger.debug(
            f"[SIM] {'+' if direction > 0 else '-'}{duration_ms:g} ms "
            f"(modifier={modifier or '-'}) -> {self._value:.6f}"
        )
        return delta

    def reading(self) -> float:
        """Value as the readout would display it."""
        value = self._value
        if self.noise_std > 0:
            value += float(self._rng.normal(0.0, self.noise_std))
        if self.wrap:
            value = normalize_signed(value) if self.signed_display else value % 360.0
        return round(value, self.decimals)
