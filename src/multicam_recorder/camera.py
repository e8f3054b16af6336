"""
Camera capability probing and resolution/frame-rate negotiation.
"""

import re
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .models import CapabilityProfile, CaptureDevice, Resolution, format_rate
from .prompts import ConsolePrompter
from .tools import run_tool

logger = logging.getLogger(__name__)

_FOURCC_RE = re.compile(r"'([A-Za-z0-9 ]{4})'")
_SIZE_RE = re.compile(r'Size:\s*Discrete\s+(\d+)x(\d+)')
_FPS_RE = re.compile(r'\((\d+(?:\.\d+)?)\s*fps\)')


def _format_header(line: str) -> Optional[str]:
    """Fourcc declared on a format header line, if any."""
    stripped = line.strip()
    # "[0]: 'MJPG' (Motion-JPEG, compressed)" or "Pixel Format: 'MJPG'"
    if stripped.startswith('Pixel Format') or re.match(r'^\[\d+\]:', stripped):
        match = _FOURCC_RE.search(stripped)
        if match:
            return match.group(1).strip()
    return None


def parse_format_listing(text: str) -> Dict[str, CapabilityProfile]:
    """
    Parse ``v4l2-ctl --list-formats-ext`` output.

    Returns:
        fourcc -> CapabilityProfile with discrete sizes in listing order
    """
    modes: Dict[str, Dict[Resolution, List[float]]] = {}
    fourcc = None
    size = None

    for line in text.splitlines():
        header = _format_header(line)
        if header:
            fourcc = header
            modes.setdefault(fourcc, {})
            size = None
            continue
        if fourcc is None:
            continue

        size_match = _SIZE_RE.search(line)
        if size_match:
            size = Resolution(int(size_match.group(1)), int(size_match.group(2)))
            modes[fourcc].setdefault(size, [])
            continue

        if size is not None and 'Interval' in line and 'Discrete' in line:
            fps_match = _FPS_RE.search(line)
            if fps_match:
                rate = float(fps_match.group(1))
                if rate not in modes[fourcc][size]:
                    modes[fourcc][size].append(rate)

    return {
        tag: CapabilityProfile(fourcc=tag, modes={res: tuple(rates) for res, rates in sizes.items()})
        for tag, sizes in modes.items()
    }


def parse_confirmation(answer: Optional[str]) -> Optional[Tuple[Resolution, Optional[float]]]:
    """
    Parse an explicit 'WIDTHxHEIGHT [FPS]' override.

    Returns None when the answer is not a usable override.
    """
    if not answer or 'x' not in answer.lower():
        return None
    parts = answer.split()
    try:
        resolution = Resolution.parse(parts[0])
    except ValueError:
        return None
    rate = None
    if len(parts) > 1:
        try:
            rate = float(parts[1])
        except ValueError:
            return None
        if rate <= 0:
            return None
    return resolution, rate


class CapabilityNegotiator:
    """Picks the operating resolution and frame rate of each camera."""

    def __init__(self, fourcc: str, prompter: Optional[ConsolePrompter] = None,
                 runner: Callable = run_tool):
        self.fourcc = fourcc
        self.prompter = prompter
        self._run = runner

    def probe(self, device: CaptureDevice) -> Optional[CapabilityProfile]:
        """Query the camera's capabilities for the configured fourcc."""
        output = self._run(['v4l2-ctl', '-d', device.path, '--list-formats-ext'])
        if not output:
            return None
        return parse_format_listing(output).get(self.fourcc)

    def detect_best(self, device: CaptureDevice, default_resolution: Resolution,
                    default_rate: float) -> Tuple[Resolution, float]:
        """Largest resolution and its fastest rate, or the defaults."""
        profile = self.probe(device)
        best = profile.best_mode() if profile else None
        if best is None:
            logger.warning(f"{device}: no {self.fourcc} modes reported, "
                           f"using defaults {default_resolution} at {format_rate(default_rate)} fps")
            return default_resolution, default_rate
        return best

    def negotiate(self, device: CaptureDevice, default_resolution: Resolution,
                  default_rate: float, auto_detect: bool) -> Tuple[Resolution, float]:
        """
        Settle the capture mode for one camera.

        Without auto-detection the defaults are returned untouched. With it,
        the probed mode is always put to the operator for confirmation.
        """
        if not auto_detect:
            return default_resolution, default_rate

        resolution, rate = self.detect_best(device, default_resolution, default_rate)
        if self.prompter is None:
            return resolution, rate

        self.prompter.notify(f"Probed specs for {device}: {resolution} at {format_rate(rate)} fps")
        answer = self.prompter.read_line(
            "Is this correct? (y/n, or enter custom 'WIDTHxHEIGHT FPS'): ")
        return self._confirm(answer, (resolution, rate), default_resolution, default_rate)

    def _confirm(self, answer: Optional[str], probed: Tuple[Resolution, float],
                 default_resolution: Resolution, default_rate: float) -> Tuple[Resolution, float]:
        if answer in ('y', 'Y'):
            return probed

        if answer in ('n', 'N'):
            size_text = self.prompter.ask(f"Enter custom resolution (default {default_resolution})",
                                          str(default_resolution))
            rate_text = self.prompter.ask(f"Enter custom FPS (default {format_rate(default_rate)})",
                                          format_rate(default_rate))
            try:
                resolution = Resolution.parse(size_text)
            except ValueError:
                logger.warning(f"Invalid resolution {size_text!r}, using {default_resolution}")
                resolution = default_resolution
            try:
                rate = float(rate_text)
                if rate <= 0:
                    raise ValueError(rate_text)
            except ValueError:
                logger.warning(f"Invalid FPS {rate_text!r}, using {format_rate(default_rate)}")
                rate = default_rate
            return resolution, rate

        override = parse_confirmation(answer)
        if override is None:
            return default_resolution, default_rate
        resolution, rate = override
        return resolution, rate if rate is not None else default_rate

    def describe(self, device: CaptureDevice) -> Dict:
        """Device info and capability summary for the --detect listing."""
        info = {'device': device.path, 'card_name': 'unknown', 'driver': 'unknown',
                'formats': [], 'best': None}
        output = self._run(['v4l2-ctl', '--device', device.path, '--info'])
        if output:
            info['driver'] = _extract_field(output, 'Driver name')
            info['card_name'] = _extract_field(output, 'Card type')

        listing = self._run(['v4l2-ctl', '-d', device.path, '--list-formats-ext'])
        if listing:
            profiles = parse_format_listing(listing)
            info['formats'] = list(profiles)
            profile = profiles.get(self.fourcc)
            info['best'] = profile.best_mode() if profile else None
        return info


def _extract_field(text: str, field_name: str) -> str:
    """Extract field value from v4l2-ctl output."""
    pattern = f'{field_name}\\s*:\\s*(.+)'
    match = re.search(pattern, text)
    return match.group(1).strip() if match else "unknown"
