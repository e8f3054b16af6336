"""
Recording session lifecycle.

A session moves strictly forward through
DISCOVERING -> NEGOTIATING -> SPEC_BUILDING -> LAUNCHING -> RUNNING
-> STOPPING -> ENDED. Every phase collects the operator input it needs and
hands an immutable result to the next one. Whatever phase the session is
left from, all launched processes are interrupted before ``run`` returns.

Processes are started back to back, so devices begin recording within
milliseconds of each other but not at the same instant.
"""

import atexit
import signal
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .camera import CapabilityNegotiator
from .config import SessionConfig
from .discovery import DeviceDiscovery
from .errors import LaunchError, NoCaptureDevicesError, SessionError, SessionInterrupted
from .models import CaptureDevice, ProcessRole, Resolution, format_rate
from .pipeline import OverlaySpec, PipelineSpec, PipelineSpecBuilder
from .prompts import ConsolePrompter
from .recorder import ProcessSupervisor, RunningProcess, build_audio_test_command, process_label
from .storage import OutputFile, StorageManager
from .tools import run_tool, tool_available

logger = logging.getLogger(__name__)

STOP_TOKEN = 'q'


class SessionState(Enum):
    DISCOVERING = 1
    NEGOTIATING = 2
    SPEC_BUILDING = 3
    LAUNCHING = 4
    RUNNING = 5
    STOPPING = 6
    ENDED = 7


@dataclass
class Session:
    """Everything one recording session has set up and started."""
    state: SessionState = SessionState.DISCOVERING
    video_specs: List[PipelineSpec] = field(default_factory=list)
    audio_spec: Optional[PipelineSpec] = None
    audio_skipped: bool = False
    processes: List[RunningProcess] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    duration: Optional[float] = None
    started_at: Optional[float] = None
    stop_reason: Optional[str] = None
    outputs: List[OutputFile] = field(default_factory=list)
    history: List[SessionState] = field(default_factory=lambda: [SessionState.DISCOVERING])

    @property
    def recording(self) -> List[str]:
        """Labels of capture processes that are still alive."""
        return [p.label for p in self.processes
                if p.role == ProcessRole.CAPTURE and p.is_alive()]


class SessionController:
    """Drives one recording session from discovery to the final report."""

    def __init__(self, config: SessionConfig, prompter: Optional[ConsolePrompter] = None,
                 discovery: Optional[DeviceDiscovery] = None,
                 negotiator: Optional[CapabilityNegotiator] = None,
                 supervisor: Optional[ProcessSupervisor] = None,
                 storage: Optional[StorageManager] = None,
                 runner: Callable = run_tool, tool_check: Callable = tool_available,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.output_directory: Path = config.output_path
        self.prompter = prompter or ConsolePrompter()
        self.discovery = discovery or DeviceDiscovery(runner=runner, tool_check=tool_check)
        self.negotiator = negotiator or CapabilityNegotiator(config.capture.fourcc, self.prompter,
                                                             runner=runner)
        self.supervisor = supervisor or ProcessSupervisor(
            ffmpeg_bin=config.supervisor.ffmpeg_binary,
            ffplay_bin=config.supervisor.ffplay_binary,
            log_directory=config.log_directory,
            force_kill=config.supervisor.force_kill,
        )
        self.storage = storage or StorageManager(self.output_directory)
        self.builder = PipelineSpecBuilder(
            self.output_directory,
            config.base_name,
            input_format=config.capture.input_format,
            thread_queue_size=config.capture.thread_queue_size,
            duration=config.duration,
            notify=self.prompter.notify,
        )
        self._run_tool = runner
        self._has_tool = tool_check
        self._sleep = sleep
        self._previous_handlers = {}
        self._preview = False
        self.session = Session(duration=config.duration)

    @property
    def state(self) -> SessionState:
        return self.session.state

    def _transition(self, new_state: SessionState) -> None:
        if new_state.value <= self.session.state.value:
            raise SessionError(f"Invalid transition {self.session.state.name} -> {new_state.name}")
        logger.debug(f"Session state {self.session.state.name} -> {new_state.name}")
        self.session.state = new_state
        self.session.history.append(new_state)

    # -- signals -------------------------------------------------------------

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM into an orderly stop."""
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._signal_handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        if self.session.state.value >= SessionState.STOPPING.value:
            logger.info(f"Received signal {signum} while stopping, ignoring")
            return
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise SessionInterrupted(f"signal {signum}")

    # -- lifecycle -----------------------------------------------------------

    def run(self) -> Session:
        """
        Run the whole session.

        Raises:
            NoCaptureDevicesError: no camera was found
            SessionError: the controller was already used
        """
        if self.session.state != SessionState.DISCOVERING:
            raise SessionError("A session cannot be restarted; create a new controller")

        atexit.register(self._emergency_stop)
        try:
            devices, audio_device = self._discover()
            settings = self._negotiate(devices)
            self._build_specs(devices, settings, audio_device)
            self._launch()
            self._wait_for_stop()
        except SessionInterrupted as e:
            self.session.stop_reason = str(e)
            logger.warning(f"Session interrupted by {e}")
        finally:
            self._shutdown()
            atexit.unregister(self._emergency_stop)
        return self.session

    def _discover(self) -> Tuple[List[CaptureDevice], Optional[CaptureDevice]]:
        logger.info("Discovering capture devices...")
        devices = self.discovery.discover_video_devices()
        if not devices:
            raise NoCaptureDevicesError("No USB cameras detected")
        self.prompter.notify(f"Detected USB cameras: {' '.join(d.path for d in devices)}")

        audio_device = self.discovery.discover_audio_device(
            choose=lambda options: self.prompter.choose_index("Select mic index", options))
        if audio_device is None:
            self.prompter.notify("No USB mic detected; audio recording skipped.")
            self.session.audio_skipped = True
        elif not self._test_audio_device(audio_device):
            self.prompter.notify("Audio device test failed.")
            if self.prompter.ask_yes_no("Skip audio recording?", default=True):
                self.prompter.notify("Audio recording skipped.")
                self.session.audio_skipped = True
                audio_device = None
            else:
                self.prompter.notify("Proceeding with audio despite test failure "
                                     "(may error at runtime).")
        return devices, audio_device

    def _test_audio_device(self, device: CaptureDevice) -> bool:
        logger.info(f"Testing audio device {device.path}...")
        cmd = build_audio_test_command(device.backend, device.path,
                                       self.config.supervisor.ffmpeg_binary)
        if self._run_tool(cmd, timeout=10) is None:
            logger.warning(f"Audio device test failed for {device.path}")
            return False
        logger.info("Audio device test successful")
        return True

    def _negotiate(self, devices: List[CaptureDevice]) -> List[Tuple[Resolution, float]]:
        self._transition(SessionState.NEGOTIATING)
        capture = self.config.capture
        auto_detect = self.prompter.ask_yes_no(
            "Auto-detect max resolution and FPS for each camera?", default=False)

        settings = []
        for device in devices:
            resolution, rate = self.negotiator.negotiate(
                device, capture.resolution, capture.default_framerate, auto_detect)
            self.prompter.notify(f"Final settings for {device}: {resolution} at {format_rate(rate)} fps")
            settings.append((resolution, rate))
        return settings

    def _ask_overlay(self) -> Optional[OverlaySpec]:
        overlay_config = self.config.overlay
        if not self.prompter.ask_yes_no("Add text overlay with timestamp?", default=False):
            return None

        text = self.prompter.ask(f"Enter overlay text (default: {overlay_config.default_text})",
                                 overlay_config.default_text)
        if not Path(overlay_config.font_file).exists():
            self.prompter.notify(f"Warning: Font file '{overlay_config.font_file}' not found. "
                                 f"Install DejaVu fonts or set overlay.font_file.")
            if not self.prompter.ask_yes_no("Continue with overlay (text may not render)?",
                                            default=False):
                return None

        return OverlaySpec(
            text=text,
            font_file=overlay_config.font_file,
            font_size=overlay_config.font_size,
            font_color=overlay_config.font_color,
            border_width=overlay_config.border_width,
        )

    def _ask_preview(self) -> Tuple[bool, float]:
        if not self._has_tool(self.config.supervisor.ffplay_binary):
            self.prompter.notify("ffplay not found; skipping preview option.")
            return False, 1.0

        if not self.prompter.ask_yes_no(
                "Preview live footage in windows? "
                "(Warning: May conflict with recording on same device)", default=False):
            return False, 1.0

        self.prompter.notify("Note: Preview and recording may fail if using the same device. "
                             "Close preview windows if recording issues occur.")
        answer = self.prompter.ask("Preview scale (e.g., 1.0 full, 0.5 half, default 1.0)", "1.0")
        try:
            scale = float(answer)
            if scale <= 0:
                raise ValueError(answer)
        except ValueError:
            self.prompter.notify("Invalid scale; using default 1.0.")
            scale = 1.0
        self.prompter.notify(f"Preview set to scale {scale:g}.")
        return True, scale

    def _build_specs(self, devices: List[CaptureDevice], settings: List[Tuple[Resolution, float]],
                     audio_device: Optional[CaptureDevice]) -> None:
        self._transition(SessionState.SPEC_BUILDING)
        mode = self.config.capture.capture_mode
        overlay = self._ask_overlay()
        self._preview, preview_scale = self._ask_preview()

        for index, (device, (resolution, rate)) in enumerate(zip(devices, settings)):
            self.session.video_specs.append(self.builder.build_video_spec(
                device, index, resolution, rate, mode, overlay=overlay,
                preview_scale=preview_scale))

        if audio_device is not None:
            self.session.audio_spec = self.builder.build_audio_spec(audio_device, mode)

    def _start(self, spec: PipelineSpec, role: ProcessRole) -> None:
        try:
            self.session.processes.append(self.supervisor.launch(spec, role))
        except LaunchError as e:
            logger.error(str(e))
            self.session.failed[process_label(spec, role)] = str(e)

    def _launch(self) -> None:
        self._transition(SessionState.LAUNCHING)
        self.session.started_at = time.time()

        if self._preview:
            for spec in self.session.video_specs:
                self._start(spec, ProcessRole.PREVIEW)
        for spec in self.session.video_specs:
            self._start(spec, ProcessRole.CAPTURE)
        if self.session.audio_spec is not None:
            self._start(self.session.audio_spec, ProcessRole.CAPTURE)
        else:
            logger.info("Audio skipped")

        for running in self.supervisor.check_started(self.config.supervisor.startup_check):
            self.session.failed[running.label] = f"exited with status {running.returncode}"
            self.session.processes.remove(running)

        for label in self.session.failed:
            self.prompter.notify(f"✗ {label} failed to start")

    def _wait_for_stop(self) -> None:
        self._transition(SessionState.RUNNING)

        if not self.session.recording:
            logger.error("No recordings started successfully")
            self.session.stop_reason = "no recordings"
            return

        if self.session.duration is not None:
            self.prompter.notify(f"Recordings will auto-stop after "
                                 f"{format_rate(self.session.duration)} seconds.")
            self._sleep(self.session.duration)
            self.session.stop_reason = "duration elapsed"
            return

        self.prompter.notify(f"All recordings started. Outputs will be saved to: {self.output_directory}")
        self.prompter.notify(f"Press '{STOP_TOKEN}' and Enter to end the recording session.")
        while True:
            line = self.prompter.read_line()
            if line is None:
                logger.info("Input closed, ending session")
                self.session.stop_reason = "input closed"
                return
            if line != STOP_TOKEN:
                continue
            if self.prompter.ask_yes_no("Confirm end session and save files?", default=False):
                self.session.stop_reason = "operator"
                return
            self.prompter.notify("Session continuing...")

    def _shutdown(self) -> None:
        launched = bool(self.session.processes)
        self._transition(SessionState.STOPPING)

        if launched:
            self.prompter.notify("Stopping recordings and previews...")
        results = self.supervisor.stop_all(self.config.supervisor.grace_period)
        for label, clean in results.items():
            if not clean:
                logger.warning(f"{label} did not exit within the grace period")

        if launched:
            self.prompter.notify("Waiting for files to finalize and save...")
            self._sleep(self.config.supervisor.settle_delay)

        if self.session.started_at is not None:
            self.session.outputs = self.storage.list_outputs(self.config.base_name,
                                                             since=self.session.started_at)
        self._transition(SessionState.ENDED)
        if launched:
            self._report()

    def _report(self) -> None:
        self.prompter.notify(f"Session ended. Files saved to {self.output_directory}:")
        if not self.session.outputs:
            self.prompter.notify("No output files found (check permissions).")
        for output in self.session.outputs:
            self.prompter.notify(f"  {output.path.name} ({output.size_mb:.1f} MB)")

    def _emergency_stop(self) -> None:
        """atexit hook: never leave capture processes behind."""
        self.supervisor.stop_all(self.config.supervisor.grace_period)
