"""
Main application entry point for the multi-camera recorder.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from .camera import CapabilityNegotiator
from .config import load_config, SessionConfig
from .discovery import DeviceDiscovery
from .errors import ConfigError, NoCaptureDevicesError
from .models import format_rate
from .session import SessionController
from .storage import StorageManager
from .tools import check_dependencies

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_directory: Optional[str] = None):
    """Setup logging configuration."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)

    # File handler
    if log_directory:
        log_dir = Path(log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / 'multicam-recorder.log')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    logger.debug("Logging initialized")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Record several USB cameras and a USB microphone simultaneously')
    parser.add_argument('base_name', nargs='?', default=None,
                        help='Output file prefix (default: recording)')
    parser.add_argument('--raw', action='store_true',
                        help='Stream copy video to AVI and PCM audio to WAV '
                             '(default: lossless FFV1/MKV and FLAC)')
    parser.add_argument('--duration', type=float,
                        help='Stop automatically after SECONDS')
    parser.add_argument('-c', '--config', help='Path to YAML or JSON configuration file')
    parser.add_argument('-o', '--output-dir', help='Directory for recordings')
    parser.add_argument('--log-level', help='Console log level (default: INFO)')
    parser.add_argument('--detect', action='store_true',
                        help='Detect cameras and exit')
    return parser


def apply_arguments(config: SessionConfig, args: argparse.Namespace) -> SessionConfig:
    """Command line values take precedence over the configuration file."""
    if args.base_name:
        config.base_name = args.base_name
    if args.raw:
        config.capture.mode = 'raw'
    if args.duration is not None:
        config.duration = args.duration
    if args.output_dir:
        config.output_directory = args.output_dir
    if args.log_level:
        config.log_level = args.log_level
    config.validate()
    return config


def detect(config: SessionConfig) -> int:
    """Print detected devices and their best capture mode."""
    discovery = DeviceDiscovery()
    negotiator = CapabilityNegotiator(config.capture.fourcc)

    cameras = discovery.discover_video_devices()
    print("\n=== Detected Cameras ===")
    if not cameras:
        print("No USB cameras detected")
    for camera in cameras:
        info = negotiator.describe(camera)
        print(f"\nDevice: {camera.path}")
        print(f"  Name: {info['card_name']}")
        print(f"  Driver: {info['driver']}")
        print(f"  Formats: {', '.join(info['formats']) or 'unknown'}")
        if info['best']:
            resolution, rate = info['best']
            print(f"  Best {config.capture.fourcc} mode: {resolution} at {format_rate(rate)} fps")

    microphone = discovery.discover_audio_device()
    print("\n=== Detected Microphone ===")
    if microphone:
        print(f"\nDevice: {microphone.path} ({microphone.backend})")
    else:
        print("No USB microphone detected")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_arguments(load_config(args.config), args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_directory)

    missing = check_dependencies()
    if missing:
        for name in missing:
            logger.error(f"Required command '{name}' not found. "
                         f"Install it via your package manager.")
        return 1

    if args.detect:
        return detect(config)

    storage = StorageManager(config.output_path)
    valid, errors = storage.validate_storage()
    if not valid:
        for error in errors:
            logger.error(error)
        return 1

    controller = SessionController(config, storage=storage)
    controller.install_signal_handlers()
    try:
        session = controller.run()
    except NoCaptureDevicesError as e:
        logger.error(f"{e}; nothing to record")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    finally:
        controller.restore_signal_handlers()

    logger.info(f"Session ended ({session.stop_reason}), "
                f"{len(session.outputs)} file(s) in {config.output_path}")
    return 0 if session.outputs else 1


if __name__ == '__main__':
    sys.exit(main())
