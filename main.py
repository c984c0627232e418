"""
Entry point for the cycle automation tool.

Wires the pieces together at the root: logging, settings, input driver,
telemetry, screenshots and the sequence controller. Runs the Tk front end by
default, or a console session with ``--headless``.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from loguru import logger

from automation import (
    Completed,
    DriverError,
    EmergencyStop,
    ErrorReported,
    EventStream,
    IterationStarted,
    LogMessage,
    SequenceController,
    StepCompleted,
    create_driver,
)
from hotkey_manager import HotkeyManager
from logger import APP_TITLE, APP_VERSION, LOG_FILE, setup_logging
from screenshots import ScreenshotManager
from settings_manager import SettingsManager
from telemetry import Telemetry


# Headless runs never drain the buffer; listeners still see every event.
EVENT_BUFFER_SIZE = 5000


def _enable_high_dpi_awareness() -> None:
    if not sys.platform.startswith("win"):
        return

    try:
        import ctypes

        try:
            ctypes.windll.shcore.SetProcessDpiAwareness(2)
            return
        except AttributeError:
            pass

        try:
            ctypes.windll.user32.SetProcessDPIAware()
        except AttributeError:
            pass
    except Exception:
        # Tk falls back to default scaling.
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="seccam-automation", description=APP_TITLE)
    parser.add_argument("-d", "--dry-run", action="store_true", help="simulate clicks and typing")
    parser.add_argument("-t", "--telemetry", action="store_true", help="write logs/telemetry.log")
    parser.add_argument("-s", "--screenshots", action="store_true", help="capture screenshots around clicks")
    parser.add_argument("--headless", action="store_true", help="run without the GUI")
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        metavar="N",
        help="stop after N cycles in headless mode (0 = until stopped)",
    )
    parser.add_argument("--settings", metavar="PATH", help="settings JSON file")
    parser.add_argument("--points", metavar="PATH", help="click points JSON file")
    parser.add_argument("--log-file", default=LOG_FILE, metavar="PATH", help="session log file")
    parser.add_argument("--version", action="version", version=f"{APP_TITLE} {APP_VERSION}")
    return parser


def _print_event(event) -> None:
    # Listener runs on the sequencer thread; loguru already echoes LogMessage text.
    if isinstance(event, IterationStarted):
        print(f">>> Iteration {event.iteration}")
    elif isinstance(event, StepCompleted) and not event.result.succeeded:
        print(f"!!! Step {event.result.step_index} ({event.result.name}) failed: {event.result.error}")
    elif isinstance(event, ErrorReported):
        print(f"!!! {event.message}")
    elif isinstance(event, Completed):
        print(f"Done: {event.iterations} iteration(s) in {event.duration:.1f}s")
    elif isinstance(event, LogMessage) and event.level == "ERROR":
        print(f"!!! {event.message}")


def run_headless(
    controller: SequenceController,
    settings_manager: SettingsManager,
    dry_run: bool,
    iterations: int,
) -> int:
    settings = settings_manager.load()
    points = settings_manager.load_points()
    try:
        config = settings.to_run_config(points, dry_run=dry_run, max_iterations=max(0, iterations))
    except ValueError as exc:
        logger.error("Invalid configuration: {}", exc)
        return 2

    hotkeys = HotkeyManager(settings.emergency_hotkey)
    hotkeys.register_emergency_callback(lambda: controller.submit(EmergencyStop("hotkey")))
    if hotkeys.enable_hotkeys():
        print(f"Press {settings.emergency_hotkey} for emergency stop, Ctrl+C to abort")

    controller.events.subscribe(_print_event)
    try:
        if not controller.start(config):
            return 1
        while not controller.wait_until_idle(0.5):
            pass
    except KeyboardInterrupt:
        logger.warning("Interrupted from keyboard")
        controller.emergency_stop("keyboard interrupt")
        controller.wait_until_idle(3.0)
    finally:
        hotkeys.disable_hotkeys()
        controller.events.unsubscribe(_print_event)
    return 0


def run_gui(controller: SequenceController, settings_manager: SettingsManager, dry_run: bool) -> int:
    import tkinter as tk

    from gui import AutomationGUI

    _enable_high_dpi_awareness()
    root = tk.Tk()
    AutomationGUI(root, controller, settings_manager, force_dry_run=dry_run)
    root.mainloop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file)

    settings_manager = SettingsManager(storage_path=args.settings, points_path=args.points)
    settings = settings_manager.load()
    dry_run = args.dry_run or settings.dry_run

    driver = None
    try:
        driver = create_driver()
    except DriverError as exc:
        if not dry_run:
            logger.error("No input backend available ({}); use --dry-run", exc)
            return 1
        logger.warning("No input backend available; running in dry-run mode only")

    telemetry = Telemetry(enabled=args.telemetry or settings.telemetry_enabled)
    screenshots = ScreenshotManager(enabled=args.screenshots or settings.screenshots_enabled)
    controller = SequenceController(
        driver,
        events=EventStream(max_buffered=EVENT_BUFFER_SIZE),
        telemetry=telemetry,
        screenshots=screenshots,
    )

    try:
        if args.headless:
            return run_headless(controller, settings_manager, dry_run, args.iterations)
        return run_gui(controller, settings_manager, dry_run)
    finally:
        controller.shutdown()
        telemetry.close()
        logger.info("Session ended")


if __name__ == "__main__":
    sys.exit(main())
