#!/usr/bin/env python3
"""
Command-line entry point for readout-servo.

Usage:
    readout-servo calibrate --axis position [--field x] [--timestamp]
    readout-servo move --target 23.4 [--field y] [--two-phase]
    readout-servo rotate --target -90 [--field zrot]

Each command waits out a start delay so the target window can be focused.
Press Ctrl+C or Esc at any time to abort; held keys are released and the
process exits with status 130.
"""

import argparse
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

try:
    from pynput import keyboard as pynput_keyboard
    LISTENER_AVAILABLE = True
except ImportError:
    pynput_keyboard = None
    LISTENER_AVAILABLE = False

try:
    from .config import (
        ABORT_KEY,
        AXIS_REGIONS,
        DEFAULT_CALIBRATION_CONFIG,
        DEFAULT_MOVE_OPTIONS,
        DEFAULT_ROTATION_MOVE_OPTIONS,
        POSITION_PROFILE_PATH,
        ROTATION_PROFILE_PATH,
        Tolerance,
    )
    from .Controllers import (
        CalibrationTuner,
        CancellationError,
        CancellationToken,
        ConfigurationError,
        MotionController,
        MotionControllerError,
        MoveResult,
        load_profile,
        save_profile,
    )
    from .Controllers.rotation import AngleRangeError
    from .interfaces.sensor_interface import SensorError
except ImportError:
    from readout_servo.config import (
        ABORT_KEY,
        AXIS_REGIONS,
        DEFAULT_CALIBRATION_CONFIG,
        DEFAULT_MOVE_OPTIONS,
        DEFAULT_ROTATION_MOVE_OPTIONS,
        POSITION_PROFILE_PATH,
        ROTATION_PROFILE_PATH,
        Tolerance,
    )
    from readout_servo.Controllers import (
        CalibrationTuner,
        CancellationError,
        CancellationToken,
        ConfigurationError,
        MotionController,
        MotionControllerError,
        MoveResult,
        load_profile,
        save_profile,
    )
    from readout_servo.Controllers.rotation import AngleRangeError
    from readout_servo.interfaces.sensor_interface import SensorError

logger = logging.getLogger("readout_servo")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="readout-servo",
        description="Drive an on-screen numeric readout to a target using timed key presses.",
        epilog="Press Ctrl+C or Esc to abort. Held keys are always released.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--start-delay",
        type=float,
        default=None,
        help="Seconds to wait before actuating (default depends on command)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    cal = sub.add_parser("calibrate", help="Tune hold durations for each step size")
    cal.add_argument("--axis", choices=["position", "rotation"], required=True,
                     help="Axis class to calibrate")
    cal.add_argument("--field", choices=sorted(AXIS_REGIONS), default=None,
                     help="Readout field to watch (default: x or xrot)")
    cal.add_argument("--steps", type=float, nargs="+", default=None,
                     help="Step sizes to calibrate (default: 0.001 ... 100)")
    cal.add_argument("--output", type=Path, default=None, help="Profile file to write")
    cal.add_argument("--timestamp", action="store_true",
                     help="Insert a timestamp into the output file name")

    move = sub.add_parser("move", help="Move a linear axis to a target value")
    move.add_argument("--target", type=float, required=True, help="Target reading")
    move.add_argument("--field", choices=sorted(AXIS_REGIONS), default="x",
                      help="Readout field to drive (default: x)")
    move.add_argument("--two-phase", action="store_true",
                      help="Close in on the integer part first, then the fraction")
    move.add_argument("--tolerance", type=float, default=None,
                      help="Absolute tolerance (default: 0.0005)")
    move.add_argument("--profile", type=Path, default=None, help="Calibration profile to use")

    rot = sub.add_parser("rotate", help="Rotate an angular axis to a signed angle")
    rot.add_argument("--target", type=float, required=True, help="Target angle in [-180, 180]")
    rot.add_argument("--field", choices=sorted(AXIS_REGIONS), default="xrot",
                     help="Readout field to drive (default: xrot)")
    rot.add_argument("--tolerance", type=float, default=None,
                     help="Absolute tolerance in degrees (default: 0.0005)")
    rot.add_argument("--profile", type=Path, default=None, help="Calibration profile to use")

    return parser


def is_abort_key(key, injected: bool = False) -> bool:
    """
    True if a listener event is a real press of ABORT_KEY.

    Events we injected ourselves are never an abort, whatever the key.
    """
    if injected:
        return False
    if len(ABORT_KEY) == 1:
        char = getattr(key, "char", None)
        return bool(char) and char.lower() == ABORT_KEY
    return getattr(key, "name", None) == ABORT_KEY


def make_abort_handler(token: CancellationToken):
    """Listener on_press callback that cancels `token` on the abort key."""
    def on_press(key, injected=False):
        if is_abort_key(key, injected):
            token.cancel(f"user pressed {ABORT_KEY}")
            return False
        return None

    return on_press


def install_abort_handlers(token: CancellationToken):
    """
    Cancel `token` on SIGINT or when ABORT_KEY is pressed.

    Returns:
        The started keyboard listener, or None if pynput is unavailable
    """
    def on_sigint(signum, frame):
        token.cancel("interrupted (Ctrl+C)")

    signal.signal(signal.SIGINT, on_sigint)

    if not LISTENER_AVAILABLE:
        logger.warning("pynput not available, only Ctrl+C can abort")
        return None

    listener = pynput_keyboard.Listener(on_press=make_abort_handler(token))
    listener.daemon = True
    listener.start()
    return listener


def _create_drivers():
    """Real screen/keyboard drivers (imported lazily; they need a desktop)."""
    try:
        from .Drivers.ocr_reader import ScreenOCRReader
        from .Drivers.keyboard_actuator import KeyboardActuator
    except ImportError:
        from readout_servo.Drivers.ocr_reader import ScreenOCRReader
        from readout_servo.Drivers.keyboard_actuator import KeyboardActuator
    return ScreenOCRReader(), KeyboardActuator()


def print_result(result: MoveResult) -> None:
    """Print the per-batch table and the outcome."""
    print(f"\n{'#':>4} {'phase':<8} {'dir':>3} {'hold ms':>8} {'before':>10} {'after':>10} {'remaining':>11}  steps")
    for rec in result.iteration_log:
        steps = " ".join(f"{p.repeats}x{p.step:g}" for p in rec.steps_used) or "-"
        kind = "n" if rec.nudge else ""
        print(
            f"{rec.batch_index:>3}{kind:1} {rec.phase:<8} {rec.direction:>+3d} {rec.hold_duration_ms:>8} "
            f"{rec.reading_before:>10.3f} {rec.reading_after:>10.3f} {rec.remaining_after:>11.6f}  {steps}"
        )
    status = "OK" if result.ok else "FAILED"
    print(
        f"\n[{status}] {result.reason}: final {result.final_reading:.3f} "
        f"(error {result.signed_error:+.6f}) after {result.batches} batches, {result.nudges} nudges"
    )


def run_calibrate(args, token: CancellationToken, sensor=None, actuator=None) -> int:
    rotational = args.axis == "rotation"
    field = args.field or ("xrot" if rotational else "x")
    output = args.output or (ROTATION_PROFILE_PATH if rotational else POSITION_PROFILE_PATH)
    config = DEFAULT_CALIBRATION_CONFIG
    delay = args.start_delay if args.start_delay is not None else config.start_delay_s

    if sensor is None or actuator is None:
        sensor, actuator = _create_drivers()

    print(f"Calibrating {args.axis} on field '{field}'; focus the target window ({delay:g} s)...")
    token.sleep(delay)

    tuner = CalibrationTuner(
        sensor, actuator, AXIS_REGIONS[field],
        config=config, rotational=rotational, cancel_token=token,
    )
    with actuator:
        profile = tuner.calibrate(args.steps)

    print(f"\n{'step':>8} {'ms':>6} {'modifier':<9} {'probes':>6}  reason")
    for res in tuner.last_results:
        entry = res.entry
        print(
            f"{entry.step:>8g} {entry.duration_ms:>6g} {str(entry.modifier or '-'):<9} "
            f"{len(res.probes):>6}  {res.reason.value}"
        )
    path = save_profile(profile, output, timestamp=args.timestamp)
    print(f"\nSaved {len(profile)} steps to {path}")
    return EXIT_OK


def run_move(args, token: CancellationToken, sensor=None, actuator=None) -> int:
    rotational = args.command == "rotate"
    base = DEFAULT_ROTATION_MOVE_OPTIONS if rotational else DEFAULT_MOVE_OPTIONS
    options = base
    if getattr(args, "two_phase", False):
        options = replace(options, two_phase=True)
    if args.tolerance is not None:
        options = replace(options, tolerance=Tolerance(absolute=args.tolerance))
    delay = args.start_delay if args.start_delay is not None else options.start_delay_s

    profile_path = args.profile or (ROTATION_PROFILE_PATH if rotational else POSITION_PROFILE_PATH)
    profile = load_profile(profile_path)

    if sensor is None or actuator is None:
        sensor, actuator = _create_drivers()

    print(f"Moving field '{args.field}' to {args.target:g}; focus the target window ({delay:g} s)...")
    token.sleep(delay)

    with MotionController(sensor, actuator, AXIS_REGIONS[args.field], cancel_token=token) as controller:
        result = controller.move_axis(args.target, profile, options)

    print_result(result)
    return EXIT_OK if result.ok else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the readout-servo CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    token = CancellationToken()
    listener = install_abort_handlers(token)

    try:
        if args.command == "calibrate":
            return run_calibrate(args, token)
        return run_move(args, token)
    except CancellationError as e:
        print(f"\nAborted: {e.reason}", file=sys.stderr)
        return EXIT_CANCELLED
    except (ConfigurationError, SensorError, AngleRangeError, MotionControllerError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FAILED
    except ImportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        if listener is not None:
            listener.stop()


if __name__ == "__main__":
    sys.exit(main())
