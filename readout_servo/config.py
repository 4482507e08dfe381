"""
Central configuration for readout-servo.

Screen regions, button mappings, tolerances, calibration parameters and
motion budgets are centralized here. Use dataclasses for type safety.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple


# --- Project Paths ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CALIBRATION_DIR = PROJECT_ROOT / "calibration"
POSITION_PROFILE_PATH = CALIBRATION_DIR / "positionCal.json"
ROTATION_PROFILE_PATH = CALIBRATION_DIR / "rotationCal.json"

# Storage sentinel for "no modifier held"
NO_MODIFIER_SENTINEL = "-"


@dataclass(frozen=True)
class Region:
    """
    Screen capture rectangle for a single readout field.
    All values are in screen pixels.
    """
    left: int
    top: int
    width: int
    height: int

    def bbox(self) -> Tuple[int, int, int, int]:
        """Return (left, top, right, bottom) as expected by ImageGrab."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


@dataclass(frozen=True)
class Tolerance:
    """
    Acceptance tolerance: max(absolute, |target| * relative_pct).
    """
    absolute: float = 0.0
    relative_pct: float = 0.0

    def __post_init__(self):
        if self.absolute < 0 or self.relative_pct < 0:
            raise ValueError(
                f"Tolerance values must be non-negative, got "
                f"absolute={self.absolute}, relative_pct={self.relative_pct}"
            )


@dataclass(frozen=True)
class DirectionKeys:
    """Logical buttons that move the axis up (positive) or down (negative)."""
    positive: str = "DPAD_RIGHT"
    negative: str = "DPAD_LEFT"


@dataclass(frozen=True)
class SensorConfig:
    """
    OCR readout configuration.
    Tesseract runs in single-line mode with a numeric whitelist.
    """
    psm: int = 7
    char_whitelist: str = "0123456789.-"
    min_confidence: float = 40.0        # Mean word confidence (0-100)
    preprocess: Tuple[str, ...] = ("gentle", "hard")
    resize_width: int = 2000
    threshold: int = 150                # Binary threshold for "hard" pass
    good_score: int = 3                 # Stop trying passes once a candidate scores this
    decimals: int = 3                   # Readout precision
    all_screens: bool = True


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Duration tuner configuration: bisection bracket, probe budget,
    tolerances and modifier thresholds.
    """
    targets: Tuple[float, ...] = (0.001, 0.01, 0.1, 1, 3, 6, 10, 20, 40, 60, 100)
    min_ms: float = 1
    max_ms: float = 5000
    max_probe_iterations: int = 12
    tolerance: Tolerance = field(default_factory=lambda: Tolerance(absolute=0.000025, relative_pct=0.0005))
    precise_below: float = 0.1          # step < this -> precise modifier
    fast_above: float = 0.999           # step > this -> fast modifier
    precise_modifier: str = "SQUARE"
    fast_modifier: str = "TRIANGLE"
    lead_ms: float = 30                 # Wait after modifier press
    tail_ms: float = 10                 # Wait before modifier release
    settle_ms: float = 0                # Wait before the post-probe read
    probe_button: str = "DPAD_RIGHT"
    start_delay_s: float = 5.0


@dataclass(frozen=True)
class MoveOptions:
    """
    Closed-loop move configuration for one move_axis() request.
    """
    dir_keys: DirectionKeys = field(default_factory=DirectionKeys)
    tolerance: Tolerance = field(default_factory=lambda: Tolerance(absolute=0.0005))
    max_batches: int = 400
    max_nudges: int = 150
    lead_ms: float = 30
    tail_ms: float = 10
    settle_ms: float = 0
    wraparound: bool = False
    two_phase: bool = False
    whole_tolerance: float = 0.49       # Phase 1: how close to trunc(target)
    whole_max_cycles: int = 8
    max_repeats_per_batch: Optional[int] = 200
    start_delay_s: float = 3.0


# --- Button -> keyboard key (pynput names) ---
BUTTON_KEYS: Dict[str, str] = {
    "CROSS": "enter",
    "CIRCLE": "backspace",
    "SQUARE": "s",
    "TRIANGLE": "c",
    "DPAD_UP": "up",
    "DPAD_DOWN": "down",
    "DPAD_LEFT": "left",
    "DPAD_RIGHT": "right",
    "L1": "q",
    "L2": "w",
    "R1": "e",
    "R2": "r",
}

# Stops a run in progress. Must not be one of the BUTTON_KEYS values.
ABORT_KEY = "esc"


def check_button_keys(button_keys: Dict[str, str], abort_key: str = ABORT_KEY) -> None:
    """Raise ValueError if any button is mapped to the abort key."""
    clashes = sorted(b for b, k in button_keys.items() if k.lower() == abort_key.lower())
    if clashes:
        raise ValueError(f"Abort key {abort_key!r} is also bound to {', '.join(clashes)}")


check_button_keys(BUTTON_KEYS)

# --- OCR regions per axis field ---
AXIS_REGIONS: Dict[str, Region] = {
    "x": Region(left=760, top=168, width=140, height=35),
    "y": Region(left=760, top=204, width=140, height=35),
    "z": Region(left=760, top=244, width=140, height=35),
    "xrot": Region(left=708, top=168, width=140, height=35),
    "yrot": Region(left=708, top=204, width=140, height=35),
    "zrot": Region(left=708, top=242, width=140, height=35),
}

# --- Default config instances ---
DEFAULT_SENSOR_CONFIG = SensorConfig()
DEFAULT_CALIBRATION_CONFIG = CalibrationConfig()
DEFAULT_MOVE_OPTIONS = MoveOptions()
DEFAULT_ROTATION_MOVE_OPTIONS = MoveOptions(wraparound=True)
