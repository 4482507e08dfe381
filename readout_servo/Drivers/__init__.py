"""
Drivers Module

This module contains concrete implementations of the sensor and actuator
interfaces defined in readout_servo/interfaces/. These drivers talk to the
screen and the keyboard.

Drivers:
    - ScreenOCRReader: Screen capture + OpenCV + Tesseract readout sensor
    - MockOCRReader: Mock implementation backed by a SimulatedAxis
    - KeyboardActuator: pynput key injection for logical buttons
    - MockKeyboardActuator: Mock implementation recording key events
    - SimulatedAxis: Shared simulated state for the mocks
"""

from .simulated_axis import SimulatedAxis
from .ocr_reader import (
    ScreenOCRReader,
    MockOCRReader,
    clean_numeric_text,
    parse_reading,
    score_numeric_text,
)
from .keyboard_actuator import KeyboardActuator, MockKeyboardActuator

__all__ = [
    'SimulatedAxis',
    'ScreenOCRReader', 'MockOCRReader', 'clean_numeric_text', 'parse_reading', 'score_numeric_text',
    'KeyboardActuator', 'MockKeyboardActuator',
]
