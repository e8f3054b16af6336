"""
Configuration management for the multi-camera recorder.
"""

import os
import json
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields

from .errors import ConfigError
from .models import CaptureMode, Resolution

logger = logging.getLogger(__name__)

# ffmpeg input_format -> fourcc reported by v4l2-ctl
FOURCC_BY_INPUT_FORMAT = {
    'mjpeg': 'MJPG',
    'yuyv422': 'YUYV',
    'h264': 'H264',
}

DEFAULT_FONT_FILE = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"


@dataclass
class CaptureConfig:
    """Per-camera capture defaults."""
    default_resolution: str = "1920x1080"
    default_framerate: float = 30
    input_format: str = "mjpeg"
    thread_queue_size: int = 1024
    mode: str = "lossless"  # raw, lossless

    @property
    def resolution(self) -> Resolution:
        """Get default resolution as a Resolution."""
        return Resolution.parse(self.default_resolution)

    @property
    def capture_mode(self) -> CaptureMode:
        return CaptureMode(self.mode)

    @property
    def fourcc(self) -> str:
        """Get the v4l2 fourcc tag matching input_format."""
        return FOURCC_BY_INPUT_FORMAT.get(self.input_format.lower(), 'MJPG')


@dataclass
class OverlayConfig:
    """Text/timestamp burn-in settings."""
    font_file: str = DEFAULT_FONT_FILE
    default_text: str = "Multicam Recorder"
    font_size: int = 24
    font_color: str = "white"
    border_width: int = 2


@dataclass
class SupervisorConfig:
    """External process settings."""
    ffmpeg_binary: str = "ffmpeg"
    ffplay_binary: str = "ffplay"
    grace_period: float = 15.0
    startup_check: float = 0.5
    settle_delay: float = 2.0
    force_kill: bool = False


@dataclass
class SessionConfig:
    """Complete recorder configuration."""
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    output_directory: str = "."
    base_name: str = "recording"
    duration: Optional[float] = None
    log_level: str = "INFO"
    log_directory: Optional[str] = None

    @property
    def output_path(self) -> Path:
        """Get output directory as an absolute Path."""
        return Path(self.output_directory).expanduser().resolve()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionConfig':
        """Build configuration from a nested mapping."""
        config = cls()
        if not data:
            return config
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, not {type(data).__name__}")

        if 'capture' in data:
            config.capture = _build_section(CaptureConfig, data['capture'])
        if 'overlay' in data:
            config.overlay = _build_section(OverlayConfig, data['overlay'])
        if 'supervisor' in data:
            config.supervisor = _build_section(SupervisorConfig, data['supervisor'])

        config.output_directory = data.get('output_directory', config.output_directory)
        config.base_name = data.get('base_name', config.base_name)
        config.duration = data.get('duration', config.duration)
        config.log_level = data.get('log_level', config.log_level)
        config.log_directory = data.get('log_directory', config.log_directory)

        config.validate()
        return config

    @classmethod
    def from_yaml(cls, config_path: str) -> 'SessionConfig':
        """Load configuration from YAML file."""
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_json(cls, config_path: str) -> 'SessionConfig':
        """
        Load configuration from a flat JSON file.

        Recognized keys: default_framerate, default_video_size, input_format,
        thread_queue_size, font_file, default_overlay_text. Nested sections
        in the YAML layout are accepted as well.
        """
        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path}: top level must be an object")

        config = cls.from_dict({k: v for k, v in data.items()
                                if k in ('capture', 'overlay', 'supervisor',
                                         'output_directory', 'base_name',
                                         'duration', 'log_level', 'log_directory')})

        if 'default_framerate' in data:
            config.capture.default_framerate = data['default_framerate']
        if 'default_video_size' in data:
            config.capture.default_resolution = data['default_video_size']
        if 'input_format' in data:
            config.capture.input_format = data['input_format']
        if 'thread_queue_size' in data:
            config.capture.thread_queue_size = int(data['thread_queue_size'])
        if 'font_file' in data:
            config.overlay.font_file = data['font_file']
        if 'default_overlay_text' in data:
            config.overlay.default_text = data['default_overlay_text']

        config.validate()
        return config

    def validate(self) -> None:
        """Replace unusable values with defaults, logging each fallback."""
        defaults = CaptureConfig()

        if self.capture.input_format.lower() not in FOURCC_BY_INPUT_FORMAT:
            logger.warning(f"Unsupported input_format {self.capture.input_format!r}, "
                           f"defaulting to {defaults.input_format}")
            self.capture.input_format = defaults.input_format

        try:
            Resolution.parse(str(self.capture.default_resolution))
        except ValueError:
            logger.warning(f"Invalid default_resolution {self.capture.default_resolution!r}, "
                           f"defaulting to {defaults.default_resolution}")
            self.capture.default_resolution = defaults.default_resolution

        try:
            rate = float(self.capture.default_framerate)
            if rate <= 0:
                raise ValueError(rate)
            self.capture.default_framerate = rate
        except (TypeError, ValueError):
            logger.warning(f"Invalid default_framerate {self.capture.default_framerate!r}, "
                           f"defaulting to {defaults.default_framerate}")
            self.capture.default_framerate = defaults.default_framerate

        if self.capture.mode not in (m.value for m in CaptureMode):
            logger.warning(f"Unknown mode {self.capture.mode!r}, defaulting to {defaults.mode}")
            self.capture.mode = defaults.mode

        if self.duration is not None:
            try:
                self.duration = float(self.duration)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid duration: {self.duration!r}")
            if self.duration <= 0:
                raise ConfigError(f"Duration must be positive, got {self.duration}")

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            'capture': _section_dict(self.capture),
            'overlay': _section_dict(self.overlay),
            'supervisor': _section_dict(self.supervisor),
            'output_directory': self.output_directory,
            'base_name': self.base_name,
            'duration': self.duration,
            'log_level': self.log_level,
            'log_directory': self.log_directory,
        }

        with open(output_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {output_path}")


def _build_section(section_cls, data: Optional[Dict[str, Any]]):
    """Instantiate a config section, ignoring unknown keys."""
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{section_cls.__name__} section must be a mapping")
    known = {f.name for f in fields(section_cls)}
    values = {}
    for key, value in (data or {}).items():
        if key in known:
            values[key] = value
        else:
            logger.warning(f"Ignoring unknown {section_cls.__name__} key: {key}")
    return section_cls(**values)


def _section_dict(section) -> Dict[str, Any]:
    return {f.name: getattr(section, f.name) for f in fields(section)}


def load_config(config_path: Optional[str] = None) -> SessionConfig:
    """
    Load recorder configuration from file.

    Tries to load from:
    1. Provided config_path (.json, or YAML otherwise)
    2. ~/.config/multicam-recorder/config.yaml
    3. /etc/multicam-recorder/config.yaml
    4. Default configuration
    """
    if config_path:
        if not os.path.exists(config_path):
            logger.warning(f"Config file '{config_path}' not found, using defaults")
            return SessionConfig()
        logger.info(f"Loading configuration from {config_path}")
        if config_path.endswith('.json'):
            return SessionConfig.from_json(config_path)
        return SessionConfig.from_yaml(config_path)

    # Try standard locations
    user_path = os.path.expanduser('~/.config/multicam-recorder/config.yaml')
    system_path = '/etc/multicam-recorder/config.yaml'

    for candidate in (user_path, system_path):
        if os.path.exists(candidate):
            logger.info(f"Loading configuration from {candidate}")
            return SessionConfig.from_yaml(candidate)

    logger.debug("No configuration file found, using defaults")
    return SessionConfig()
