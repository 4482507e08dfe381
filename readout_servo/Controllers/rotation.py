"""
Angle helpers for rotational axes.

Rotational readouts are shown as signed degrees, but the controller
converges in the unsigned [0, 360) domain and always reasons about the
circular difference between two angles.
"""

# Deltas this close to 0 or 180 have no meaningful direction
ANGLE_EPSILON = 1e-9


class AngleRangeError(ValueError):
    """Raised when a signed angle falls outside [-180, 180]."""
    pass


def normalize_signed(angle: float) -> float:
    """
    Fold any angle into (-180, 180].

    E.g. 190 -> -170, -180 -> 180, 540 -> 180.
    """
    folded = ((angle % 360.0) + 360.0) % 360.0
    if folded > 180.0:
        folded -= 360.0
    return folded


def to_360(signed_angle: float, strict: bool = True) -> float:
    """
    Shift a signed angle into the unsigned domain [0, 360).

    Args:
        signed_angle: Angle in degrees, expected in [-180, 180]
        strict: If True, reject input outside [-180, 180]

    Returns:
        float: -90 -> 270, 0 -> 0, 180 -> 180

    Raises:
        AngleRangeError: In strict mode, if the input is out of range
    """
    if strict:
        if not -180.0 <= signed_angle <= 180.0:
            raise AngleRangeError(f"Angle must be between -180 and 180, got {signed_angle}")
        if signed_angle < 0:
            return 360.0 + signed_angle
        return float(signed_angle)
    folded = signed_angle % 360.0
    return 0.0 if folded >= 360.0 else folded


def is_antipodal(current: float, target: float, epsilon: float = ANGLE_EPSILON) -> bool:
    """True when the two angles are (within epsilon) half a turn apart."""
    return abs(abs(normalize_signed(target - current)) - 180.0) <= epsilon


def angular_distance(current: float, target: float) -> float:
    """Unsigned circular distance in [0, 180]."""
    return abs(normalize_signed(target - current))


def shortest_delta(current: float, target: float, epsilon: float = ANGLE_EPSILON) -> float:
    """
    Signed minimal rotation from current to target.

    Handles 350 -> 10 correctly: +20, not -340. A delta within epsilon of
    0 or 180 is reported as 0.0; at the antipode both directions are
    equally short and picking one would oscillate.

    Returns:
        float: Signed delta in degrees, |delta| <= 180
    """
    delta = normalize_signed(normalize_signed(target) - normalize_signed(current))
    if abs(delta) <= epsilon or abs(abs(delta) - 180.0) <= epsilon:
        return 0.0
    return delta


def forward_delta(current: float, target: float) -> float:
    """
    One-directional (always positive) rotation from current to target.

    Used during calibration, where the probe button only turns one way.

    Returns:
        float: Delta in [0, 360)
    """
    delta = (target - current) % 360.0
    # tiny negative differences fold to 360.0 in float arithmetic
    return 0.0 if delta >= 360.0 else delta
