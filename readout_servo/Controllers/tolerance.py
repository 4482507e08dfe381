"""
Tolerance model: how close is close enough for a given target.
"""

try:
    from ..config import Tolerance
except ImportError:
    from readout_servo.config import Tolerance


def effective_tolerance(target: float, tol: Tolerance) -> float:
    """
    Effective acceptance tolerance for a target.

    Args:
        target: Target value (any finite float)
        tol: Absolute and relative tolerance components

    Returns:
        float: max(tol.absolute, |target| * tol.relative_pct), never negative
    """
    return max(tol.absolute, abs(target) * tol.relative_pct)


def tolerance_mode(target: float, tol: Tolerance) -> str:
    """Which component won: "ABS" or "REL"."""
    return "ABS" if effective_tolerance(target, tol) == tol.absolute else "REL"
