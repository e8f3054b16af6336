"""
USB capture device discovery.

Video devices are found through a chain of strategies, each tried only when
the previous one produced no device node:

1. ``v4l2-ctl --list-devices`` entries on a USB bus
2. ``lsusb -v`` scan for Video-class interfaces (gives a camera count only)
3. ``udevadm`` probe of /dev/video* nodes for ``ID_BUS=usb``
4. Sequential guess /dev/video0 .. /dev/video{N-1}

Audio prefers PulseAudio/PipeWire sources and falls back to ALSA cards.
"""

import re
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .models import CaptureDevice, DeviceKind
from .tools import run_tool, tool_available

logger = logging.getLogger(__name__)

_BUS_HEADER_RE = re.compile(r'^Bus (\d+) Device (\d+):')
_VIDEO_CLASS_RE = re.compile(r'bInterfaceClass\s+14\s+Video')
_AUDIO_CLASS_RE = re.compile(r'bInterfaceClass\s+1\s+Audio')
_ALSA_CARD_RE = re.compile(r'^card (\d+):', re.IGNORECASE)
_VIDEO_NODE_RE = re.compile(r'video(\d+)$')


def parse_v4l2_device_list(text: str) -> List[str]:
    """
    Extract capture nodes of USB cameras from ``v4l2-ctl --list-devices``.

    Each USB camera usually exposes a capture node followed by a metadata
    node; only the first /dev/video node under a USB header is kept.
    """
    devices = []
    in_usb_block = False
    taken = False
    for line in text.splitlines():
        if not line.strip():
            in_usb_block = False
            continue
        if not line[0].isspace():
            in_usb_block = '(usb-' in line
            taken = False
            continue
        node = line.strip()
        if in_usb_block and not taken and node.startswith('/dev/video'):
            devices.append(node)
            taken = True
    return devices


def _parse_lsusb_class(text: str, class_re) -> List[str]:
    found = []
    current = None
    for line in text.splitlines():
        header = _BUS_HEADER_RE.match(line)
        if header:
            current = f"{header.group(1)}:{header.group(2)}"
            continue
        if current and class_re.search(line) and current not in found:
            found.append(current)
    return found


def parse_lsusb_cameras(text: str) -> List[str]:
    """Return 'bus:device' ids of USB devices with a Video-class interface."""
    return _parse_lsusb_class(text, _VIDEO_CLASS_RE)


def parse_lsusb_microphones(text: str) -> List[str]:
    """Return 'bus:device' ids of USB devices with an Audio-class interface."""
    return _parse_lsusb_class(text, _AUDIO_CLASS_RE)


def parse_pactl_sources(text: str) -> List[str]:
    """Names of USB sources in ``pactl list short sources`` output."""
    sources = []
    for line in text.splitlines():
        columns = line.split('\t') if '\t' in line else line.split()
        if len(columns) < 2:
            continue
        name = columns[1].strip()
        if '.usb' not in name.lower() or name.endswith('.monitor'):
            continue
        sources.append(name)
    return sources


def parse_arecord_cards(text: str) -> List[int]:
    """Card numbers of USB capture cards in ``arecord -l`` output."""
    cards = []
    for line in text.splitlines():
        match = _ALSA_CARD_RE.match(line)
        if match and 'usb' in line.lower():
            card = int(match.group(1))
            if card not in cards:
                cards.append(card)
    return cards


def is_usb_udev_info(text: str) -> bool:
    """Check udevadm output for a USB-attached device."""
    return any(line.strip().endswith('ID_BUS=usb') for line in text.splitlines())


class DeviceDiscovery:
    """Finds USB cameras and a USB microphone."""

    def __init__(self, dev_root: str = '/dev', runner: Callable = run_tool,
                 tool_check: Callable = tool_available):
        self.dev_root = Path(dev_root)
        self._run = runner
        self._has_tool = tool_check

    def discover_video_devices(self) -> List[CaptureDevice]:
        """Detect USB cameras; an empty list means nothing can be recorded."""
        paths = self._from_v4l2_ctl()
        if not paths:
            logger.warning("No USB cameras detected via v4l2-ctl. "
                           "Falling back to lsusb scan (less reliable).")
            usb_cameras = self._from_lsusb()
            if usb_cameras:
                logger.info(f"Detected potential USB cameras via lsusb: {', '.join(usb_cameras)}")

            paths = self._from_udev()
            if paths:
                logger.info(f"Probed USB-linked video devices: {' '.join(paths)}")
            elif usb_cameras:
                paths = [str(self.dev_root / f'video{i}') for i in range(len(usb_cameras))]
                logger.warning(f"Guessing sequential video devices: {' '.join(paths)}")
            else:
                logger.error("No cameras found via lsusb or udevadm either")
                return []

        devices = [CaptureDevice(path=p, kind=DeviceKind.VIDEO) for p in paths]
        logger.info(f"Detected USB cameras: {' '.join(paths)}")
        return devices

    def discover_audio_device(self, choose: Optional[Callable[[Sequence[str]], int]] = None
                              ) -> Optional[CaptureDevice]:
        """
        Detect a USB microphone.

        PulseAudio is asked first; ALSA is listed when ``pactl`` is missing
        or the sound server cannot be reached.

        Args:
            choose: called with the candidate labels when more than one USB
                source exists; returns the selected index
        """
        output = None
        if self._has_tool('pactl'):
            output = self._run(['pactl', 'list', 'short', 'sources'])
            if output is None:
                logger.warning("PulseAudio unavailable; falling back to ALSA")

        if output is not None:
            backend = 'pulse'
            candidates = parse_pactl_sources(output)
            source = "PulseAudio"
        else:
            backend = 'alsa'
            output = self._run(['arecord', '-l'])
            candidates = [f"hw:{card},0" for card in parse_arecord_cards(output or '')]
            source = "ALSA"

        if not candidates:
            logger.warning(f"No USB mic detected via {source}")
            self._log_lsusb_microphones()
            return None

        index = 0
        if len(candidates) > 1:
            logger.info(f"Detected {len(candidates)} USB mics via {source}")
            if choose is not None:
                index = choose(candidates)
            if not 0 <= index < len(candidates):
                index = 0

        device = CaptureDevice(path=candidates[index], kind=DeviceKind.AUDIO, backend=backend)
        logger.info(f"Selected USB mic: {device.path} ({backend})")
        return device

    def _from_v4l2_ctl(self) -> List[str]:
        output = self._run(['v4l2-ctl', '--list-devices'])
        return parse_v4l2_device_list(output) if output else []

    def _from_lsusb(self) -> List[str]:
        output = self._run(['lsusb', '-v'])
        return parse_lsusb_cameras(output) if output else []

    def _from_udev(self) -> List[str]:
        if not self._has_tool('udevadm'):
            return []
        probed = []
        for node in self._video_nodes():
            output = self._run(['udevadm', 'info', '--query=property', f'--name={node}'])
            if output and is_usb_udev_info(output):
                probed.append(node)
        return probed

    def _video_nodes(self) -> List[str]:
        """All /dev/video* nodes in numeric order."""
        nodes = []
        for path in self.dev_root.glob('video*'):
            match = _VIDEO_NODE_RE.search(path.name)
            if match:
                nodes.append((int(match.group(1)), str(path)))
        return [node for _, node in sorted(nodes)]

    def _log_lsusb_microphones(self) -> None:
        output = self._run(['lsusb', '-v'])
        mics = parse_lsusb_microphones(output) if output else []
        if mics:
            logger.info(f"Detected potential USB mics via lsusb: {', '.join(mics)} "
                        f"(manual configuration may be needed for device mapping)")
