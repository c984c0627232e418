"""
Graphical user interface for the cycle automation tool.

Key capabilities
----------------
- Edit the six click points (typed in, or taken from the cursor position)
- Edit timings, retry budget, failure policy and dry-run mode
- Start / Stop / Emergency stop, plus a global emergency hotkey
- Live status: iteration counter, elapsed time, countdown of the long wait
- Log view with export
"""

from __future__ import annotations

import tkinter as tk
from tkinter import messagebox, scrolledtext, ttk
from typing import List, Optional

from loguru import logger

from automation import (
    Completed,
    EmergencyStop,
    ErrorReported,
    IterationStarted,
    LogMessage,
    SequenceController,
    StateChanged,
    StepCompleted,
    WaitProgress,
)
from hotkey_manager import HotkeyManager
from logger import APP_TITLE, APP_VERSION, StatusLogger, format_duration
from models import ApplicationSettings, ClickPoint, EngineState, FailurePolicy
from settings_manager import SettingsManager


class AutomationGUI:
    """Tkinter front end: sends commands to the controller and renders its events."""

    EVENT_POLL_MS = 100
    MAX_EVENTS_PER_POLL = 200
    PICK_DELAY_MS = 3000
    DEFAULT_WINDOW_SIZE = (1000, 650)
    MIN_WINDOW_SIZE = (900, 550)

    def __init__(
        self,
        root: tk.Tk,
        controller: SequenceController,
        settings_manager: SettingsManager,
        hotkey_manager: Optional[HotkeyManager] = None,
        force_dry_run: bool = False,
    ):
        self.root = root
        self.root.title(f"{APP_TITLE} v{APP_VERSION}")
        width, height = self.DEFAULT_WINDOW_SIZE
        self.root.geometry(f"{width}x{height}")
        self.root.minsize(*self.MIN_WINDOW_SIZE)

        self.controller = controller
        self.settings_manager = settings_manager
        self.settings: ApplicationSettings = settings_manager.load()
        self.points: List[ClickPoint] = settings_manager.load_points()
        self.logger = StatusLogger()
        self.hotkey_manager = hotkey_manager or HotkeyManager(self.settings.emergency_hotkey)
        self.poll_job: Optional[str] = None

        # Tk variables ---------------------------------------------------
        self.hours_var = tk.IntVar(value=self.settings.total_hours)
        self.minutes_var = tk.IntVar(value=self.settings.total_minutes)
        self.step_delay_var = tk.DoubleVar(value=self.settings.step_delay)
        self.max_retries_var = tk.IntVar(value=self.settings.max_retries)
        self.step4_wait_var = tk.DoubleVar(value=self.settings.step4_wait)
        self.cycle_pause_var = tk.DoubleVar(value=self.settings.cycle_pause)
        self.dry_run_var = tk.BooleanVar(value=self.settings.dry_run or force_dry_run)
        self.policy_var = tk.StringVar(value=self.settings.failure_policy.value)
        self.hotkey_var = tk.StringVar(value=self.settings.emergency_hotkey)
        self.status_var = tk.StringVar(value="Status: Ready")
        self.iteration_var = tk.StringVar(value="Iterations: 0")
        self.elapsed_var = tk.StringVar(value="Elapsed: 0:00:00")
        self.remaining_var = tk.StringVar(value="Remaining: -")
        self.step_var = tk.StringVar(value="Step: -")

        self.point_name_vars: List[tk.StringVar] = []
        self.point_x_vars: List[tk.IntVar] = []
        self.point_y_vars: List[tk.IntVar] = []

        self._build_ui()
        self._setup_hotkeys()
        self._set_running_controls(False)

        self.root.protocol("WM_DELETE_WINDOW", self._on_closing)
        self._schedule_event_poll()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        self.root.columnconfigure(0, weight=1)
        self.root.rowconfigure(0, weight=1)

        container = ttk.Frame(self.root, padding=12)
        container.grid(row=0, column=0, sticky="nsew")
        container.columnconfigure(0, weight=2)
        container.columnconfigure(1, weight=3)
        container.rowconfigure(1, weight=1)

        left = ttk.Frame(container)
        left.grid(row=0, column=0, rowspan=2, sticky="nsew", padx=(0, 12))
        left.columnconfigure(0, weight=1)

        self._build_points_section(left)
        self._build_configuration_section(left)
        self._build_controls_section(left)

        self._build_progress_section(container)
        self._build_status_section(container)

    def _build_points_section(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Click points", padding=10)
        frame.grid(row=0, column=0, sticky="ew", pady=(0, 10))
        frame.columnconfigure(0, weight=1)

        for col, title in enumerate(("Name", "X", "Y", "")):
            ttk.Label(frame, text=title).grid(row=0, column=col, sticky="w", padx=2)

        for index, point in enumerate(self.points):
            name_var = tk.StringVar(value=point.name)
            x_var = tk.IntVar(value=point.x)
            y_var = tk.IntVar(value=point.y)
            self.point_name_vars.append(name_var)
            self.point_x_vars.append(x_var)
            self.point_y_vars.append(y_var)

            row = index + 1
            ttk.Entry(frame, textvariable=name_var, width=22).grid(row=row, column=0, sticky="ew", padx=2, pady=1)
            ttk.Spinbox(frame, textvariable=x_var, from_=-10000, to=20000, width=7).grid(row=row, column=1, padx=2)
            ttk.Spinbox(frame, textvariable=y_var, from_=-10000, to=20000, width=7).grid(row=row, column=2, padx=2)
            ttk.Button(
                frame,
                text="Pick",
                width=5,
                command=lambda i=index: self._pick_from_cursor(i),
            ).grid(row=row, column=3, padx=2)

        buttons = ttk.Frame(frame)
        buttons.grid(row=len(self.points) + 1, column=0, columnspan=4, sticky="e", pady=(8, 0))
        ttk.Button(buttons, text="Save points", command=self._save_points).grid(row=0, column=0, padx=(0, 6))
        ttk.Button(buttons, text="Reload", command=self._reload_points).grid(row=0, column=1)

    def _build_configuration_section(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Timing", padding=10)
        frame.grid(row=1, column=0, sticky="ew", pady=(0, 10))

        fields = (
            ("Main wait hours", self.hours_var, 0, 48, 1),
            ("Main wait minutes", self.minutes_var, 0, 59, 1),
            ("Step delay (s)", self.step_delay_var, 0, 600, 1),
            ("Step 4 wait (s)", self.step4_wait_var, 0, 3600, 1),
            ("Cycle pause (s)", self.cycle_pause_var, 0, 3600, 1),
            ("Max retries", self.max_retries_var, 0, 20, 1),
        )
        for row, (label, var, low, high, step) in enumerate(fields):
            ttk.Label(frame, text=label).grid(row=row, column=0, sticky="w", pady=1)
            ttk.Spinbox(frame, textvariable=var, from_=low, to=high, increment=step, width=8).grid(
                row=row, column=1, sticky="w", padx=(8, 0)
            )

        row = len(fields)
        ttk.Label(frame, text="On step failure").grid(row=row, column=0, sticky="w", pady=1)
        ttk.Combobox(
            frame,
            textvariable=self.policy_var,
            values=[policy.value for policy in FailurePolicy],
            state="readonly",
            width=16,
        ).grid(row=row, column=1, sticky="w", padx=(8, 0))

        ttk.Label(frame, text="Emergency hotkey").grid(row=row + 1, column=0, sticky="w", pady=1)
        hotkey_row = ttk.Frame(frame)
        hotkey_row.grid(row=row + 1, column=1, sticky="w", padx=(8, 0))
        ttk.Entry(hotkey_row, textvariable=self.hotkey_var, width=10).grid(row=0, column=0)
        ttk.Button(hotkey_row, text="Apply", command=self._apply_hotkey).grid(row=0, column=1, padx=(6, 0))

        ttk.Checkbutton(frame, text="Dry run (no real input)", variable=self.dry_run_var).grid(
            row=row + 2, column=0, columnspan=2, sticky="w", pady=(6, 0)
        )

    def _build_controls_section(self, parent: ttk.Frame) -> None:
        frame = ttk.Frame(parent)
        frame.grid(row=2, column=0, sticky="ew")
        frame.columnconfigure((0, 1, 2), weight=1)

        self.start_button = ttk.Button(frame, text="Start", command=self._start_automation)
        self.start_button.grid(row=0, column=0, sticky="ew", padx=(0, 4))
        self.stop_button = ttk.Button(frame, text="Stop", command=self._stop_automation)
        self.stop_button.grid(row=0, column=1, sticky="ew", padx=4)
        self.emergency_button = ttk.Button(frame, text="Emergency stop", command=self._emergency_stop)
        self.emergency_button.grid(row=0, column=2, sticky="ew", padx=(4, 0))

    def _build_progress_section(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Progress", padding=10)
        frame.grid(row=0, column=1, sticky="ew", pady=(0, 10))
        frame.columnconfigure(0, weight=1)

        ttk.Label(frame, textvariable=self.status_var).grid(row=0, column=0, sticky="w")
        ttk.Label(frame, textvariable=self.step_var).grid(row=1, column=0, sticky="w")
        ttk.Label(frame, textvariable=self.iteration_var).grid(row=2, column=0, sticky="w")
        ttk.Label(frame, textvariable=self.elapsed_var).grid(row=3, column=0, sticky="w")
        ttk.Label(frame, textvariable=self.remaining_var).grid(row=4, column=0, sticky="w")

        self.progress_bar = ttk.Progressbar(frame, mode="determinate", maximum=1.0)
        self.progress_bar.grid(row=5, column=0, sticky="ew", pady=(8, 0))

    def _build_status_section(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Log", padding=10)
        frame.grid(row=1, column=1, sticky="nsew")
        frame.columnconfigure(0, weight=1)
        frame.rowconfigure(0, weight=1)

        self.log_text = scrolledtext.ScrolledText(frame, height=16, state=tk.DISABLED, wrap=tk.WORD)
        self.log_text.grid(row=0, column=0, sticky="nsew")

        button_bar = ttk.Frame(frame)
        button_bar.grid(row=1, column=0, sticky="e", pady=(8, 0))
        ttk.Button(button_bar, text="Clear log", command=self._clear_log_output).grid(row=0, column=0, padx=(0, 6))
        ttk.Button(button_bar, text="Export log", command=self._export_logs).grid(row=0, column=1)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def _start_automation(self) -> None:
        try:
            self._collect_settings()
            config = self.settings.to_run_config(self._collect_points(), dry_run=bool(self.dry_run_var.get()))
        except (ValueError, tk.TclError) as exc:
            messagebox.showerror("Invalid configuration", str(exc))
            return

        self._persist_settings()
        if self.controller.start(config):
            self.elapsed_var.set("Elapsed: 0:00:00")
            self.iteration_var.set("Iterations: 0")
            self._set_running_controls(True)

    def _stop_automation(self) -> None:
        self.controller.stop()

    def _emergency_stop(self) -> None:
        self.controller.emergency_stop("user")

    def _pick_from_cursor(self, index: int) -> None:
        self._log_message(f"Move the mouse to '{self.point_name_vars[index].get()}' - capturing in 3 seconds")
        self.root.after(self.PICK_DELAY_MS, lambda: self._capture_cursor(index))

    def _capture_cursor(self, index: int) -> None:
        try:
            import pyautogui  # type: ignore

            x, y = pyautogui.position()
        except Exception as exc:  # pragma: no cover - platform specific
            self._log_message(f"Cursor position unavailable: {exc}", level="WARNING")
            return
        self.point_x_vars[index].set(int(x))
        self.point_y_vars[index].set(int(y))
        self._log_message(f"{self.point_name_vars[index].get()} set to ({int(x)}, {int(y)})")

    def _save_points(self) -> None:
        try:
            points = self._collect_points()
        except (ValueError, tk.TclError) as exc:
            messagebox.showerror("Invalid point", str(exc))
            return
        self.points = points
        self.settings_manager.save_points(points)
        self._log_message("Points saved")

    def _reload_points(self) -> None:
        self.points = self.settings_manager.load_points()
        for index, point in enumerate(self.points):
            self.point_name_vars[index].set(point.name)
            self.point_x_vars[index].set(point.x)
            self.point_y_vars[index].set(point.y)
        self._log_message("Points reloaded")

    def _collect_points(self) -> List[ClickPoint]:
        return [
            ClickPoint(
                name=self.point_name_vars[i].get().strip() or f"Point {i + 1}",
                x=int(self.point_x_vars[i].get()),
                y=int(self.point_y_vars[i].get()),
            )
            for i in range(len(self.point_name_vars))
        ]

    def _collect_settings(self) -> None:
        self.settings.total_hours = max(0, int(self.hours_var.get()))
        self.settings.total_minutes = max(0, int(self.minutes_var.get()))
        self.settings.step_delay = max(0.0, float(self.step_delay_var.get()))
        self.settings.max_retries = max(0, int(self.max_retries_var.get()))
        self.settings.step4_wait = max(0.0, float(self.step4_wait_var.get()))
        self.settings.cycle_pause = max(0.0, float(self.cycle_pause_var.get()))
        self.settings.dry_run = bool(self.dry_run_var.get())
        self.settings.failure_policy = FailurePolicy(self.policy_var.get())
        self.settings.emergency_hotkey = self.hotkey_var.get().strip() or "Delete"

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------
    def _schedule_event_poll(self) -> None:
        self._drain_engine_events()
        self.poll_job = self.root.after(self.EVENT_POLL_MS, self._schedule_event_poll)

    def _drain_engine_events(self) -> None:
        for event in self.controller.events.drain(self.MAX_EVENTS_PER_POLL):
            self._handle_event(event)

        status = self.controller.status()
        if status.running:
            self.elapsed_var.set(f"Elapsed: {format_duration(status.elapsed)}")

    def _handle_event(self, event) -> None:
        if isinstance(event, LogMessage):
            self._log_message(event.message, level=event.level)
        elif isinstance(event, IterationStarted):
            self.iteration_var.set(f"Iterations: {event.iteration - 1} (running #{event.iteration})")
        elif isinstance(event, StepCompleted):
            result = event.result
            outcome = "ok" if result.succeeded else f"FAILED ({result.error})"
            self.step_var.set(f"Step: {result.step_index}/8 {result.name} - {outcome}")
        elif isinstance(event, WaitProgress):
            self.remaining_var.set(f"Remaining: {format_duration(event.remaining)}")
            self.progress_bar["value"] = event.elapsed / event.total if event.total else 1.0
        elif isinstance(event, Completed):
            self.iteration_var.set(f"Iterations: {event.iterations}")
            self.elapsed_var.set(f"Elapsed: {format_duration(event.duration)}")
        elif isinstance(event, ErrorReported):
            self._log_message(f"ERROR: {event.message}", level="ERROR")
        elif isinstance(event, StateChanged):
            self._on_state_changed(event.state)

    def _on_state_changed(self, state: EngineState) -> None:
        if state == EngineState.RUNNING:
            self.status_var.set("Status: Running")
            self._set_running_controls(True)
        elif state == EngineState.STOPPING:
            self.status_var.set("Status: Stopping")
        else:
            self.status_var.set("Status: Stopped")
            self.step_var.set("Step: -")
            self.remaining_var.set("Remaining: -")
            self.progress_bar["value"] = 0
            self._set_running_controls(False)

    def _set_running_controls(self, running: bool) -> None:
        self.start_button.configure(state=tk.DISABLED if running else tk.NORMAL)
        self.stop_button.configure(state=tk.NORMAL if running else tk.DISABLED)
        self.emergency_button.configure(state=tk.NORMAL if running else tk.DISABLED)

    # ------------------------------------------------------------------
    # Hotkeys & logging
    # ------------------------------------------------------------------
    def _setup_hotkeys(self) -> None:
        # Same command queue as the button, straight from the listener thread.
        self.hotkey_manager.register_emergency_callback(
            lambda: self.controller.submit(EmergencyStop("hotkey"))
        )
        if not self.hotkey_manager.enable_hotkeys():
            self._log_message(
                "Global hotkey could not be registered. Check system permissions.", level="WARNING"
            )

    def _apply_hotkey(self) -> None:
        hotkey = self.hotkey_var.get().strip() or "Delete"
        try:
            ok = self.hotkey_manager.update_hotkey(hotkey)
        except ValueError as exc:
            messagebox.showerror("Hotkey", str(exc))
            return
        if ok:
            self.settings.emergency_hotkey = hotkey
            self._persist_settings()
            self._log_message(f"Emergency hotkey set to {hotkey}")
        else:
            messagebox.showwarning("Hotkey", "Hotkey could not be updated.")

    def _log_message(self, message: str, level: str = "INFO") -> None:
        entry = self.logger.log(level, message)
        self.log_text.configure(state=tk.NORMAL)
        self.log_text.insert(tk.END, str(entry) + "\n")
        self.log_text.see(tk.END)
        self.log_text.configure(state=tk.DISABLED)

    def _clear_log_output(self) -> None:
        self.log_text.configure(state=tk.NORMAL)
        self.log_text.delete("1.0", tk.END)
        self.log_text.configure(state=tk.DISABLED)
        self.logger.clear_logs()

    def _export_logs(self) -> None:
        from tkinter import filedialog

        path = filedialog.asksaveasfilename(
            defaultextension=".txt",
            filetypes=[("Text files", "*.txt"), ("All files", "*.*")],
        )
        if not path:
            return
        if self.logger.export_logs_to_file(path):
            messagebox.showinfo("Export", "Log exported.")
        else:
            messagebox.showerror("Export", "Log could not be exported.")

    def _persist_settings(self) -> None:
        try:
            self.settings_manager.save(self.settings)
        except OSError as exc:
            logger.warning("Could not save settings: {}", exc)

    def _on_closing(self) -> None:
        if self.controller.is_running():
            self._log_message("Shutting down - stopping automation")
        self.controller.shutdown()
        self.hotkey_manager.disable_hotkeys()
        if self.poll_job:
            self.root.after_cancel(self.poll_job)
        try:
            self._collect_settings()
        except (ValueError, tk.TclError):
            pass
        self._persist_settings()
        self.root.destroy()
