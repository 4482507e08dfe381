"""
Sensor Interface - Abstract Base Class for Readout Sensors

This interface defines the standard contract for sensors in the HAL.
All readout implementations (e.g., screen capture + OCR) must conform to it.

Context:
    - The axis value is only observable as text rendered on screen
    - A sensor turns a screen region into a floating-point reading
    - Low-confidence or non-numeric recognition is a hard failure
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional
import logging

try:
    from ..config import Region
except ImportError:
    from readout_servo.config import Region

logger = logging.getLogger(__name__)


class SensorError(Exception):
    """
    Raised when a reading cannot be trusted.

    Attributes:
        raw_text: The recognized text that failed to parse (may be empty)
        confidence: Recognition confidence, if the backend reports one
    """

    def __init__(self, message: str, raw_text: str = "", confidence: Optional[float] = None):
        super().__init__(message)
        self.raw_text = raw_text
        self.confidence = confidence


class SensorStatus(Enum):
    """Status enumeration for sensor health and operation state."""
    OK = "ok"
    ERROR = "error"
    NOT_CONNECTED = "not_connected"
    LOW_CONFIDENCE = "low_confidence"
    UNPARSABLE = "unparsable"
    UNKNOWN = "unknown"


class SensorInterface(ABC):
    """
    Abstract base class defining the interface for readout sensors.

    Controllers only ever call read(); every call supersedes the previous
    reading, no history is kept.
    """

    def __init__(self):
        """Initialize the sensor interface."""
        self._is_initialized = False
        self._read_count = 0
        self._last_value: Optional[float] = None

    @abstractmethod
    def read(self, region: Region) -> float:
        """
        Read the current value shown in a screen region.

        Args:
            region: Screen rectangle holding the numeric readout

        Returns:
            float: Parsed reading

        Raises:
            SensorError: If the text is not numeric or confidence is too low
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        """
        Get the current status of the sensor.

        Returns:
            Dict[str, Any]: status, last value, read count and init flag
        """
        return {
            'status': SensorStatus.OK if self._is_initialized else SensorStatus.NOT_CONNECTED,
            'last_value': self._last_value,
            'read_count': self._read_count,
            'initialized': self._is_initialized,
        }

    @property
    def read_count(self) -> int:
        """Number of successful reads since construction."""
        return self._read_count

    @abstractmethod
    def _cleanup(self) -> None:
        """
        Internal cleanup method for capture/recognition resources.

        Must be idempotent (safe to call multiple times).
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures cleanup on exit."""
        try:
            self._cleanup()
        except Exception as e:
            logger.error(f"Error during sensor cleanup: {e}", exc_info=True)
