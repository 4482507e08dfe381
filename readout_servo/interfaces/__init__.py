"""
Hardware Abstraction Layer (HAL) Interfaces

This module provides abstract base classes that define the standard interface
for the external collaborators of the controller. Concrete implementations
are provided in the Drivers/ directory.

Interfaces:
    - SensorInterface: Standard interface for on-screen readout sensors
    - ActuatorInterface: Standard interface for timed button actuation
"""

from .sensor_interface import SensorInterface, SensorError, SensorStatus
from .actuator_interface import ActuatorInterface

__all__ = ['SensorInterface', 'SensorError', 'SensorStatus', 'ActuatorInterface']
