"""
FFmpeg/FFplay process supervision.
"""

import signal
import subprocess
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Thread
from typing import Callable, Dict, List, Optional

from .errors import LaunchError
from .models import ProcessRole, format_rate
from .pipeline import PipelineSpec

logger = logging.getLogger(__name__)

MONITOR_JOIN_TIMEOUT = 2.0


def _duration_args(spec: PipelineSpec) -> List[str]:
    # ffmpeg stops by itself and writes a proper trailer
    if spec.duration is None:
        return []
    return ['-t', format_rate(spec.duration)]


def _v4l2_input_args(spec: PipelineSpec) -> List[str]:
    return [
        '-f', 'v4l2',
        '-framerate', format_rate(spec.frame_rate),
        '-video_size', str(spec.resolution),
        '-input_format', spec.input_format,
    ]


def build_capture_command(spec: PipelineSpec, ffmpeg_bin: str = 'ffmpeg') -> List[str]:
    """FFmpeg argument vector recording one camera to file."""
    cmd = [ffmpeg_bin, '-hide_banner', '-nostdin']
    cmd.extend(_v4l2_input_args(spec))
    cmd.extend(['-thread_queue_size', str(spec.thread_queue_size), '-i', spec.device.path])

    chain = spec.capture_filter_chain()
    if chain:
        cmd.extend(['-vf', chain])

    cmd.extend(['-c:v', spec.encoding.codec])
    cmd.extend(_duration_args(spec))
    cmd.extend(['-f', spec.encoding.container, '-y', str(spec.output_path)])
    return cmd


def build_audio_command(spec: PipelineSpec, ffmpeg_bin: str = 'ffmpeg') -> List[str]:
    """FFmpeg argument vector recording the microphone to file."""
    cmd = [ffmpeg_bin, '-hide_banner', '-nostdin',
           '-f', spec.input_format,
           '-thread_queue_size', str(spec.thread_queue_size),
           '-i', spec.device.path,
           '-c:a', spec.encoding.codec]
    cmd.extend(_duration_args(spec))
    cmd.extend(['-f', spec.encoding.container, '-y', str(spec.output_path)])
    return cmd


def build_preview_command(spec: PipelineSpec, ffplay_bin: str = 'ffplay') -> List[str]:
    """FFplay argument vector showing one camera in a window."""
    cmd = [ffplay_bin, '-hide_banner']
    cmd.extend(_v4l2_input_args(spec))
    cmd.extend(['-i', spec.device.path])

    chain = spec.preview_filter_chain()
    if chain:
        cmd.extend(['-vf', chain])

    cmd.extend(['-window_title', f'{spec.name} ({spec.device.path})'])
    return cmd


def build_audio_test_command(backend: str, device: str, ffmpeg_bin: str = 'ffmpeg') -> List[str]:
    """One-second capture to the null muxer, used as a pre-flight check."""
    return [ffmpeg_bin, '-hide_banner', '-nostdin', '-loglevel', 'error',
            '-f', backend, '-i', device, '-t', '1', '-f', 'null', '-']


def process_label(spec: PipelineSpec, role: ProcessRole) -> str:
    """Short name used in logs ('cam0', 'cam0-preview', 'audio')."""
    if role == ProcessRole.PREVIEW:
        return f"{spec.name}-preview"
    return spec.name


@dataclass
class RunningProcess:
    """A launched external process bound to one PipelineSpec."""
    spec: PipelineSpec
    role: ProcessRole
    process: subprocess.Popen
    command: List[str] = field(default_factory=list)
    monitor: Optional[Thread] = None

    @property
    def label(self) -> str:
        return process_label(self.spec, self.role)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.poll()

    def is_alive(self) -> bool:
        """Check if the process is still running."""
        return self.process.poll() is None


class ProcessSupervisor:
    """Launches and stops the capture and preview processes of a session."""

    def __init__(self, ffmpeg_bin: str = 'ffmpeg', ffplay_bin: str = 'ffplay',
                 log_directory: Optional[str] = None, force_kill: bool = False,
                 popen: Callable = subprocess.Popen):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffplay_bin = ffplay_bin
        self.log_directory = Path(log_directory) if log_directory else None
        self.force_kill = force_kill
        self._popen = popen
        self._processes: List[RunningProcess] = []

    @property
    def processes(self) -> List[RunningProcess]:
        return list(self._processes)

    def build_command(self, spec: PipelineSpec, role: ProcessRole) -> List[str]:
        if role == ProcessRole.PREVIEW:
            if not spec.is_video:
                raise ValueError("Preview is only available for cameras")
            return build_preview_command(spec, self.ffplay_bin)
        if spec.is_video:
            return build_capture_command(spec, self.ffmpeg_bin)
        return build_audio_command(spec, self.ffmpeg_bin)

    def launch(self, spec: PipelineSpec, role: ProcessRole = ProcessRole.CAPTURE) -> RunningProcess:
        """
        Start one process without waiting for it.

        Raises:
            LaunchError: the executable could not be spawned or exited at once
        """
        cmd = self.build_command(spec, role)
        label = process_label(spec, role)
        if role == ProcessRole.CAPTURE:
            logger.info(f"{label}: Starting recording for {spec.device} to {spec.output_path}")
        else:
            logger.info(f"{label}: Starting preview for {spec.device}")
        logger.debug(f"{label}: Command: {' '.join(cmd)}")

        if role == ProcessRole.CAPTURE:
            spec.output_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            process = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise LaunchError(f"{label}: Failed to start {cmd[0]}: {e}") from e

        if process is None:
            raise LaunchError(f"{label}: No process handle for {cmd[0]}")

        # tracked before anything else can raise, so stop_all always sees it
        running = RunningProcess(spec=spec, role=role, process=process, command=cmd)
        self._processes.append(running)

        returncode = process.poll()
        if returncode is not None and returncode != 0:
            self._processes.remove(running)
            raise LaunchError(f"{label}: {cmd[0]} exited immediately with status {returncode}",
                              returncode=returncode)

        running.monitor = Thread(target=self._monitor_output, args=(running,), daemon=True,
                                 name=f"monitor-{label}")
        running.monitor.start()

        logger.info(f"{label}: Started (PID: {process.pid})")
        return running

    def check_started(self, delay: float = 0.5) -> List[RunningProcess]:
        """
        Give freshly launched processes a moment, then collect the ones
        that already died with an error.
        """
        if not self._processes:
            return []
        if delay > 0:
            time.sleep(delay)

        failed = []
        for running in self._processes:
            returncode = running.returncode
            if returncode is not None and returncode != 0:
                logger.error(f"{running.label}: {running.command[0]} exited during startup "
                             f"with status {returncode}")
                failed.append(running)

        self._processes = [p for p in self._processes if p not in failed]
        return failed

    def stop_all(self, timeout: float = 15) -> Dict[str, bool]:
        """
        Interrupt every live process at once, then wait for all of them
        against a single deadline.

        Returns:
            label -> True if the process exited within the grace period
        """
        live = [p for p in self._processes if p.is_alive()]
        if not live:
            return {}

        logger.info(f"Stopping {len(live)} process(es)...")
        for running in live:
            try:
                # SIGINT lets FFmpeg finish the container properly
                running.process.send_signal(signal.SIGINT)
            except ProcessLookupError:
                pass

        results = {}
        deadline = time.monotonic() + timeout
        for running in live:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                running.process.wait(timeout=remaining)
                logger.info(f"{running.label}: Stopped cleanly")
                results[running.label] = True
            except subprocess.TimeoutExpired:
                results[running.label] = False
                if self.force_kill:
                    logger.warning(f"{running.label}: Timeout waiting for exit, forcing termination")
                    running.process.kill()
                    try:
                        running.process.wait(timeout=5)
                    except subprocess.TimeoutExpired:
                        logger.error(f"{running.label}: Did not exit after kill (PID: {running.pid})")
                else:
                    logger.warning(f"{running.label}: Still running after {timeout}s grace period "
                                   f"(PID: {running.pid})")

        # let the monitors write the tail of stderr before the interpreter exits
        for running in live:
            if running.monitor is not None and not running.is_alive():
                running.monitor.join(timeout=MONITOR_JOIN_TIMEOUT)
        return results

    def wait_all(self) -> Dict[str, int]:
        """Block until every tracked process has exited."""
        return {running.label: running.process.wait() for running in self._processes}

    def _monitor_output(self, running: RunningProcess):
        """Drain process stderr, surfacing errors and warnings."""
        stream = running.process.stderr
        if stream is None:
            return

        log_file = None
        try:
            if self.log_directory:
                self.log_directory.mkdir(parents=True, exist_ok=True)
                log_file = open(self.log_directory / f'{running.spec.output_path.stem}_{running.role.value}.log', 'a')
                log_file.write(f"\n=== {running.label} started at {datetime.now()} ===\n")
                log_file.write(' '.join(running.command) + '\n')

            for line in stream:
                line_text = line.decode('utf-8', errors='replace').strip()
                if not line_text:
                    continue
                if log_file:
                    log_file.write(line_text + '\n')

                lowered = line_text.lower()
                if 'error' in lowered:
                    logger.error(f"{running.label}: {line_text}")
                elif 'warning' in lowered:
                    logger.warning(f"{running.label}: {line_text}")

            if log_file:
                log_file.write(f"=== {running.label} ended at {datetime.now()} ===\n")
        except (OSError, ValueError) as e:
            logger.debug(f"{running.label}: Error monitoring output: {e}")
        finally:
            if log_file:
                log_file.close()
