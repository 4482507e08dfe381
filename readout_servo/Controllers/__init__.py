"""
Controllers Module

This module contains high-level control logic that coordinates a sensor
and an actuator to achieve system-level behaviors.

Controllers:
    - MotionController: Closed-loop readout servo (single or two-phase, linear or rotational)
    - CalibrationTuner: Bisection search producing a CalibrationProfile
    - plan_steps: Greedy step decomposition used by the controller
"""

from .cancellation import CancellationToken, CancellationError
from .calibration_profile import (
    CalibrationEntry,
    CalibrationProfile,
    ConfigurationError,
    Modifier,
    load_profile,
    save_profile,
)
from .calibration_tuner import CalibrationTuner, ThresholdModifierPolicy, TuneResult, TuneStopReason
from .step_planner import MotionPlan, Segment, StepPick, plan_steps
from .motion_controller import (
    ControlState,
    IterationRecord,
    MotionController,
    MotionControllerError,
    MoveResult,
)

__all__ = [
    'CancellationToken', 'CancellationError',
    'CalibrationEntry', 'CalibrationProfile', 'ConfigurationError', 'Modifier',
    'load_profile', 'save_profile',
    'CalibrationTuner', 'ThresholdModifierPolicy', 'TuneResult', 'TuneStopReason',
    'MotionPlan', 'Segment', 'StepPick', 'plan_steps',
    'ControlState', 'IterationRecord', 'MotionController', 'MotionControllerError', 'MoveResult',
]
