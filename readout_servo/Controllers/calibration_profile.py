"""
Calibration profile: step size -> hold duration -> modifier.

A profile is produced offline by the CalibrationTuner, persisted as JSON,
and loaded fresh (read-only) for every move request.

Storage format (one file per axis class):
    [{"target": 10, "ms": 812, "heldKey": "TRIANGLE"},
     {"target": 0.5, "ms": 140, "heldKey": "-"}, ...]
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

try:
    from ..config import NO_MODIFIER_SENTINEL
except ImportError:
    from readout_servo.config import NO_MODIFIER_SENTINEL

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a calibration profile is missing, empty or unusable."""
    pass


@dataclass(frozen=True)
class Modifier:
    """A held auxiliary button that changes actuation rate (e.g. TRIANGLE)."""
    name: str

    def __str__(self):
        return self.name


def modifier_from_key(held_key: Optional[str]) -> Optional[Modifier]:
    """Map a stored heldKey string to a Modifier (sentinel/empty -> None)."""
    if held_key is None:
        return None
    held_key = str(held_key).strip()
    if not held_key or held_key == NO_MODIFIER_SENTINEL:
        return None
    return Modifier(held_key)


def modifier_to_key(modifier: Optional[Modifier]) -> str:
    return modifier.name if modifier is not None else NO_MODIFIER_SENTINEL


@dataclass(frozen=True)
class CalibrationEntry:
    """
    Holding `modifier` (or nothing) while actuating for `duration_ms`
    changes the reading by approximately `step`.
    """
    step: float
    duration_ms: float
    modifier: Optional[Modifier] = None

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.step) and self.step > 0
            and math.isfinite(self.duration_ms) and self.duration_ms > 0
        )


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


class CalibrationProfile:
    """
    Ordered, immutable set of CalibrationEntry.

    Unique by step (first occurrence wins) and sorted descending by step,
    ready for greedy consumption. Invalid entries are discarded.

    Raises:
        ConfigurationError: If no usable entry remains
    """

    def __init__(self, entries: Iterable[CalibrationEntry], source: Optional[str] = None):
        self.source = source
        seen = set()
        usable: List[CalibrationEntry] = []
        dropped = 0
        for entry in entries:
            if not entry.is_valid():
                dropped += 1
                continue
            if entry.step in seen:
                dropped += 1
                continue
            seen.add(entry.step)
            usable.append(entry)

        if dropped:
            logger.warning(f"Discarded {dropped} invalid or duplicate calibration record(s)")
        if not usable:
            raise ConfigurationError(
                "Calibration profile has no usable steps"
                + (f" ({source})" if source else "")
            )

        usable.sort(key=lambda e: e.step, reverse=True)
        self._entries: Tuple[CalibrationEntry, ...] = tuple(usable)

    def __repr__(self):
        steps = ", ".join(f"{e.step:g}" for e in self._entries)
        return f"CalibrationProfile([{steps}])"

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    @property
    def entries(self) -> Tuple[CalibrationEntry, ...]:
        return self._entries

    @property
    def smallest(self) -> CalibrationEntry:
        return self._entries[-1]

    @property
    def largest(self) -> CalibrationEntry:
        return self._entries[0]

    def partition(self, predicate: Callable[[CalibrationEntry], bool]) -> Tuple[CalibrationEntry, ...]:
        """Entries matching predicate, still descending. May be empty."""
        return tuple(e for e in self._entries if predicate(e))

    def whole(self) -> Tuple[CalibrationEntry, ...]:
        """Steps >= 1, used to close in on the integer part."""
        return self.partition(lambda e: e.step >= 1)

    def fractional(self) -> Tuple[CalibrationEntry, ...]:
        """Steps < 1, used for the final approach."""
        return self.partition(lambda e: e.step < 1)

    # -- Serialization -------------------------------------------------------

    @classmethod
    def from_records(cls, records: Any, source: Optional[str] = None) -> 'CalibrationProfile':
        """
        Build a profile from stored records.

        Accepts unsorted input; records with non-finite or non-positive
        target/ms are discarded. The legacy "HeldKey" field name is accepted.
        """
        if not isinstance(records, list):
            raise ConfigurationError("Calibration data format invalid: expected a list of records")

        entries = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object calibration record: {record!r}")
                continue
            held_key = record.get("heldKey", record.get("HeldKey"))
            entries.append(CalibrationEntry(
                step=_to_float(record.get("target")),
                duration_ms=_to_float(record.get("ms")),
                modifier=modifier_from_key(held_key),
            ))
        return cls(entries, source=source)

    def to_records(self) -> List[Dict[str, Any]]:
        return [
            {"target": e.step, "ms": e.duration_ms, "heldKey": modifier_to_key(e.modifier)}
            for e in self._entries
        ]


def load_profile(path: Union[str, Path]) -> CalibrationProfile:
    """
    Load a calibration profile from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or unusable
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Calibration file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Calibration file {path} is not valid JSON: {e}") from e

    profile = CalibrationProfile.from_records(data, source=str(path))
    logger.info(f"Calibration data loaded from {path} ({len(profile)} steps)")
    return profile


def save_profile(
    profile: CalibrationProfile,
    path: Union[str, Path],
    timestamp: bool = False,
) -> Path:
    """
    Save a calibration profile as JSON.

    Args:
        profile: Profile to write
        path: Target file name
        timestamp: If True, insert an ISO timestamp before the extension

    Returns:
        Path: The file actually written
    """
    path = Path(path)
    if timestamp:
        stamp = datetime.now().isoformat().replace(":", "-").replace(".", "-")
        path = path.with_name(f"{path.stem}-{stamp}{path.suffix}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(profile.to_records(), indent=2), encoding="utf-8")
    logger.info(f"Calibration data saved to {path}")
    return path
