"""
Exception types raised by the recorder.
"""


class RecorderError(Exception):
    """Base class for recorder errors."""


class ConfigError(RecorderError):
    """Configuration file could not be read or parsed."""


class NoCaptureDevicesError(RecorderError):
    """No video capture device could be discovered."""


class LaunchError(RecorderError):
    """An external capture or preview process failed to start."""

    def __init__(self, message: str, returncode=None):
        super().__init__(message)
        self.returncode = returncode


class SessionError(RecorderError):
    """Session was driven outside of its lifecycle."""


class SessionInterrupted(RecorderError):
    """A termination signal arrived while the session was in progress."""
