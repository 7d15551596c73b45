#!/usr/bin/env python3
"""
SoundVis - real-time audio analysis console

Prints tempo, beat phase and the tracked voices while analyzing the
default (or selected) input device.
"""

import argparse
import cProfile
import sys
import time

from analysis_engine import AnalysisEngine, AnalysisSnapshot
from audio_capture import CaptureError, list_devices
from config import Config
from config_persistence import load_config
from logging_utils import log_event, set_log_level

STATUS_INTERVAL = 0.25


def format_status(snapshot: AnalysisSnapshot, now: float) -> str:
    if snapshot.is_calibrating:
        filled = int(snapshot.calibration_progress * 20)
        return f"Calibrating [{'#' * filled}{'.' * (20 - filled)}] {snapshot.calibration_progress * 100:3.0f}%"

    beat = int(snapshot.phase_at(now) * 4) % 4
    dots = "".join("o" if i == beat else "." for i in range(4))
    if snapshot.bpm > 0:
        tempo = f"{snapshot.bpm:6.1f} BPM {dots} conf={snapshot.confidence:.2f}"
    else:
        tempo = f"  ---- BPM {dots}"

    voices = " ".join(
        f"{v.name}{'*' if v.is_active else ''}@{v.frequency:.0f}"
        for v in snapshot.voices
    )
    return f"{tempo} | {voices or 'no voices'}"


def build_config(args: argparse.Namespace) -> Config:
    if args.mode == "calibrated":
        config = Config.for_calibrated()
    elif args.mode == "continuous":
        config = Config.for_continuous()
    else:
        config = load_config()
    if args.device is not None:
        config.audio.device_index = args.device
    if args.log_level:
        config.log_level = args.log_level
    return config


def run_console(args: argparse.Namespace) -> int:
    if args.list_devices:
        try:
            devices = list_devices()
        except CaptureError as e:
            print(f"Could not list audio devices: {e}", file=sys.stderr)
            return 1
        for device in devices:
            print(f"{device['index']:3d}  {device['name']}  "
                  f"(inputs={device['inputs']}, {device['default_samplerate']:.0f} Hz)")
        return 0

    config = build_config(args)
    set_log_level(config.log_level)

    engine = AnalysisEngine(config)
    try:
        engine.start()
    except CaptureError as e:
        print(f"Could not start audio capture: {e}", file=sys.stderr)
        return 1

    started = time.time()
    try:
        while args.seconds <= 0 or time.time() - started < args.seconds:
            now = time.time()
            print("\r" + format_status(engine.get_snapshot(), now).ljust(100), end="", flush=True)
            time.sleep(STATUS_INTERVAL)
    except KeyboardInterrupt:
        pass
    finally:
        print()
        engine.stop()

    log_event("INFO", "Console", "Exited", seconds=f"{time.time() - started:.1f}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run SoundVis real-time analysis")
    parser.add_argument(
        "--mode",
        choices=("calibrated", "continuous"),
        help="Voice tracking preset (default: saved config)",
    )
    parser.add_argument("--device", type=int, help="Input device index")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument(
        "--seconds",
        type=float,
        default=0.0,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument("--log-level", choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_console(args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_console(args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
