"""
Immutable value types shared by discovery, negotiation and pipeline building.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

_RESOLUTION_RE = re.compile(r'^\s*(\d+)\s*[xX]\s*(\d+)\s*$')


class DeviceKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class CaptureMode(str, Enum):
    """Recording mode: stream copy where possible, or lossless re-encode."""
    RAW = "raw"
    LOSSLESS = "lossless"


class ProcessRole(str, Enum):
    CAPTURE = "capture"
    PREVIEW = "preview"


@dataclass(frozen=True)
class Resolution:
    """Frame size in pixels."""
    width: int
    height: int

    @classmethod
    def parse(cls, text: str) -> 'Resolution':
        """Parse 'WIDTHxHEIGHT'. Raises ValueError on malformed input."""
        match = _RESOLUTION_RE.match(text or '')
        if not match:
            raise ValueError(f"Invalid resolution: {text!r}")
        width, height = int(match.group(1)), int(match.group(2))
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid resolution: {text!r}")
        return cls(width, height)

    @property
    def area(self) -> int:
        return self.width * self.height

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class CaptureDevice:
    """One physical USB input discovered for this session."""
    path: str
    kind: DeviceKind
    transport: str = "usb"
    backend: str = "v4l2"  # v4l2 for cameras, pulse or alsa for microphones
    label: str = ""

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class CapabilityProfile:
    """Discrete resolutions and frame rates a camera offers for one fourcc."""
    fourcc: str
    modes: Dict[Resolution, Tuple[float, ...]] = field(default_factory=dict)

    @property
    def resolutions(self) -> List[Resolution]:
        return list(self.modes)

    def best_mode(self) -> Optional[Tuple[Resolution, float]]:
        """
        Largest pixel area first, then that resolution's fastest frame rate.

        The first resolution seen with the maximum area wins.
        Resolutions without any listed interval are ignored.
        """
        best: Optional[Resolution] = None
        for resolution, rates in self.modes.items():
            if not rates:
                continue
            if best is None or resolution.area > best.area:
                best = resolution
        if best is None:
            return None
        return best, max(self.modes[best])


def format_rate(rate: float) -> str:
    """Render a frame rate the way ffmpeg accepts it ('30', '7.5')."""
    if float(rate).is_integer():
        return str(int(rate))
    return f"{rate:g}"
