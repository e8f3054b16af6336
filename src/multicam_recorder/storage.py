"""
Output directory management and post-session reporting.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)

# filesystem timestamps come from a coarse clock
MTIME_SLACK = 2.0


@dataclass(frozen=True)
class OutputFile:
    """A recording found in the output directory after the session."""
    path: Path
    size_bytes: int
    modified: datetime

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 ** 2)


class StorageManager:
    """Manages the session output directory."""

    def __init__(self, output_directory: Path, low_space_gb: float = 5.0):
        self.output_directory = Path(output_directory)
        self.low_space_gb = low_space_gb

    def get_disk_usage(self) -> Dict:
        """Get disk usage statistics."""
        try:
            usage = psutil.disk_usage(str(self.output_directory))
            return {
                'total_gb': usage.total / (1024 ** 3),
                'used_gb': usage.used / (1024 ** 3),
                'free_gb': usage.free / (1024 ** 3),
                'percent_used': usage.percent,
            }
        except OSError as e:
            logger.error(f"Error getting disk usage: {e}")
            return {}

    def validate_storage(self) -> Tuple[bool, List[str]]:
        """
        Make sure recordings can be written.

        Returns:
            (is_valid, list of error messages)
        """
        errors = []

        if not self.output_directory.exists():
            try:
                self.output_directory.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created output directory: {self.output_directory}")
            except OSError as e:
                errors.append(f"Cannot create output directory: {e}")
                return False, errors

        test_file = self.output_directory / '.write_test'
        try:
            test_file.touch()
            test_file.unlink()
        except OSError as e:
            errors.append(f"Output directory not writable: {e}")

        usage = self.get_disk_usage()
        if usage and usage['free_gb'] < self.low_space_gb:
            logger.warning(f"Low disk space: only {usage['free_gb']:.1f} GB available "
                           f"in {self.output_directory}")

        return len(errors) == 0, errors

    def list_outputs(self, base_name: str, since: Optional[float] = None) -> List[OutputFile]:
        """
        Recordings present for a session.

        Only ``<base>_cam<N>.<ext>`` and ``<base>_audio.<ext>`` are listed.

        Args:
            base_name: session file prefix, taken literally
            since: epoch seconds; files last modified before it are left out
        """
        pattern = re.compile(rf'{re.escape(base_name)}_(cam\d+|audio)\.[^.]+')
        files = []
        if not self.output_directory.is_dir():
            return files
        try:
            for path in sorted(self.output_directory.iterdir()):
                if not pattern.fullmatch(path.name) or not path.is_file():
                    continue
                stat = path.stat()
                if since is not None and stat.st_mtime < since - MTIME_SLACK:
                    logger.debug(f"Ignoring {path.name} from an earlier session")
                    continue
                files.append(OutputFile(path=path, size_bytes=stat.st_size,
                                        modified=datetime.fromtimestamp(stat.st_mtime)))
        except OSError as e:
            logger.error(f"Error listing {self.output_directory}: {e}")
        return files
