"""
Thin wrappers for invoking the external probing tools.
"""

import shutil
import subprocess
import logging
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("ffmpeg", "v4l2-ctl")
OPTIONAL_TOOLS = ("ffplay", "pactl", "arecord", "lsusb", "udevadm")


def tool_available(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def run_tool(cmd: Sequence[str], timeout: float = 10) -> Optional[str]:
    """
    Run a probing tool and return its stdout.

    Returns None when the tool is missing, times out or exits non-zero,
    so callers can move on to their next strategy.
    """
    if not tool_available(cmd[0]):
        logger.debug(f"{cmd[0]} not available")
        return None

    try:
        result = subprocess.run(list(cmd), capture_output=True, text=True,
                                timeout=timeout, stdin=subprocess.DEVNULL)
    except subprocess.TimeoutExpired:
        logger.warning(f"Timeout running {' '.join(cmd)}")
        return None
    except OSError as e:
        logger.debug(f"Could not run {cmd[0]}: {e}")
        return None

    if result.returncode != 0:
        logger.debug(f"{' '.join(cmd)} exited with {result.returncode}")
        return None
    return result.stdout


def check_dependencies() -> List[str]:
    """
    Warn about missing optional tools.

    Returns:
        Names of missing required tools
    """
    for name in OPTIONAL_TOOLS:
        if not tool_available(name):
            logger.warning(f"Optional command '{name}' not found. Some features may be limited.")
    return [name for name in REQUIRED_TOOLS if not tool_available(name)]
