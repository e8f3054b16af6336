"""
Per-device pipeline descriptions and FFmpeg filter-chain construction.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .models import CaptureDevice, CaptureMode, DeviceKind, Resolution

logger = logging.getLogger(__name__)

TIMESTAMP_TEXT = r'%{localtime:%Y-%m-%d %H\:%M\:%S}'


@dataclass(frozen=True)
class Encoding:
    """Codec/container pairing for one mode."""
    codec: str
    container: str
    extension: str

    @property
    def is_copy(self) -> bool:
        return self.codec == 'copy'


VIDEO_ENCODINGS = {
    CaptureMode.RAW: Encoding(codec='copy', container='avi', extension='avi'),
    CaptureMode.LOSSLESS: Encoding(codec='ffv1', container='matroska', extension='mkv'),
}

AUDIO_ENCODINGS = {
    CaptureMode.RAW: Encoding(codec='pcm_s16le', container='wav', extension='wav'),
    CaptureMode.LOSSLESS: Encoding(codec='flac', container='flac', extension='flac'),
}


def escape_option_value(value: str) -> str:
    """Escape a value for use inside a filter's option list."""
    for char in ('\\', "'", ':'):
        value = value.replace(char, '\\' + char)
    return value


def escape_graph_value(value: str) -> str:
    """Escape an already option-escaped value for the filtergraph parser."""
    for char in ('\\', "'", '[', ']', ',', ';'):
        value = value.replace(char, '\\' + char)
    return value


def escape_filter_text(value: str) -> str:
    """Apply both levels of filtergraph escaping to operator-supplied text."""
    return escape_graph_value(escape_option_value(value))


@dataclass(frozen=True)
class OverlaySpec:
    """Burned-in caption with a live timestamp underneath."""
    text: str
    font_file: str
    font_size: int = 24
    font_color: str = "white"
    border_width: int = 2

    def _drawtext(self, text: str, y: str, expansion: str) -> str:
        options = [
            f"fontfile={escape_filter_text(self.font_file)}",
            f"expansion={expansion}",
            f"text={escape_filter_text(text)}",
            f"fontcolor={escape_filter_text(self.font_color)}",
            f"fontsize={self.font_size}",
            f"borderw={self.border_width}",
            "x=(w-tw)/2",
            f"y={y}",
        ]
        return "drawtext=" + ":".join(options)

    def filters(self):
        """Caption centered near the bottom, timestamp directly beneath."""
        return [
            self._drawtext(self.text, "h-(2*th)-20", "none"),
            self._drawtext(TIMESTAMP_TEXT, "h-th-10", "normal"),
        ]


def scale_filter(scale: float) -> Optional[str]:
    """Geometric scale filter, or None at full size."""
    if scale == 1.0:
        return None
    return f"scale=iw*{scale:g}:ih*{scale:g}"


@dataclass(frozen=True)
class PipelineSpec:
    """Fully resolved description of how one device is captured."""
    device: CaptureDevice
    index: Optional[int]
    mode: CaptureMode
    encoding: Encoding
    output_path: Path
    input_format: str
    resolution: Optional[Resolution] = None
    frame_rate: Optional[float] = None
    thread_queue_size: int = 1024
    overlay: Optional[OverlaySpec] = None
    preview_scale: float = 1.0
    duration: Optional[float] = None

    def __post_init__(self):
        if self.overlay is not None and self.encoding != VIDEO_ENCODINGS[CaptureMode.LOSSLESS]:
            raise ValueError("Overlay filters require the lossless codec and container")
        if self.preview_scale <= 0:
            raise ValueError(f"Preview scale must be positive, got {self.preview_scale}")

    @property
    def is_video(self) -> bool:
        return self.device.kind == DeviceKind.VIDEO

    @property
    def name(self) -> str:
        """Short label used in logs ('cam0', 'audio')."""
        return f"cam{self.index}" if self.is_video else "audio"

    def capture_filter_chain(self) -> Optional[str]:
        """Filter chain applied while recording to file."""
        if self.overlay is None:
            return None
        return ",".join(self.overlay.filters())

    def preview_filter_chain(self) -> Optional[str]:
        """Overlay and scale combined into the preview's single chain."""
        filters = list(self.overlay.filters()) if self.overlay else []
        scale = scale_filter(self.preview_scale)
        if scale:
            filters.append(scale)
        return ",".join(filters) if filters else None


class PipelineSpecBuilder:
    """Builds the immutable per-device PipelineSpecs of a session."""

    def __init__(self, output_directory: Path, base_name: str, input_format: str = 'mjpeg',
                 thread_queue_size: int = 1024, duration: Optional[float] = None,
                 notify: Optional[Callable[[str], None]] = None):
        self.output_directory = Path(output_directory)
        self.base_name = base_name
        self.input_format = input_format
        self.thread_queue_size = thread_queue_size
        self.duration = duration
        self._notify = notify
        self._overlay_notice_sent = False

    def video_output(self, index: int, mode: CaptureMode) -> Path:
        return self.output_directory / f"{self.base_name}_cam{index}.{VIDEO_ENCODINGS[mode].extension}"

    def audio_output(self, mode: CaptureMode) -> Path:
        return self.output_directory / f"{self.base_name}_audio.{AUDIO_ENCODINGS[mode].extension}"

    def build_video_spec(self, device: CaptureDevice, index: int, resolution: Resolution,
                         frame_rate: float, mode: CaptureMode,
                         overlay: Optional[OverlaySpec] = None,
                         preview_scale: float = 1.0) -> PipelineSpec:
        """Describe one camera's recording; an overlay forces lossless mode."""
        if overlay is not None and mode != CaptureMode.LOSSLESS:
            message = (f"Overlay enabled with text '{overlay.text}'; "
                       f"using lossless FFV1 encoding instead of {mode.value} copy.")
            logger.info(f"cam{index}: {message}")
            if self._notify and not self._overlay_notice_sent:
                self._notify(message)
                self._overlay_notice_sent = True
            mode = CaptureMode.LOSSLESS

        return PipelineSpec(
            device=device,
            index=index,
            mode=mode,
            encoding=VIDEO_ENCODINGS[mode],
            output_path=self.video_output(index, mode),
            input_format=self.input_format,
            resolution=resolution,
            frame_rate=frame_rate,
            thread_queue_size=self.thread_queue_size,
            overlay=overlay,
            preview_scale=preview_scale,
            duration=self.duration,
        )

    def build_audio_spec(self, device: CaptureDevice, mode: CaptureMode) -> PipelineSpec:
        """Describe the microphone recording."""
        return PipelineSpec(
            device=device,
            index=None,
            mode=mode,
            encoding=AUDIO_ENCODINGS[mode],
            output_path=self.audio_output(mode),
            input_format=device.backend,
            thread_queue_size=self.thread_queue_size,
            duration=self.duration,
        )
