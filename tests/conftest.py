"""
Test Configuration and Fixtures

Fake tool output, fake processes and a scripted operator shared by the
recorder tests. Nothing here touches real devices or spawns real processes.
"""

import io
import itertools
import subprocess
from pathlib import Path

import pytest

from multicam_recorder.config import SessionConfig
from multicam_recorder.prompts import ConsolePrompter
from multicam_recorder.recorder import ProcessSupervisor

# =============================================================================
# TOOL OUTPUT FIXTURES
# =============================================================================

V4L2_DEVICES = """\
HD Pro Webcam C920 (usb-0000:00:14.0-1):
\t/dev/video0
\t/dev/video1
\t/dev/media0

Logitech BRIO (usb-0000:00:14.0-2):
\t/dev/video2
\t/dev/video3

bcm2835-codec-decode (platform:bcm2835-codec):
\t/dev/video10
\t/dev/media1
"""

FORMATS_EXT = """\
ioctl: VIDIOC_ENUM_FMT
\tType: Video Capture

\t[0]: 'YUYV' (YUYV 4:2:2)
\t\tSize: Discrete 3840x2160
\t\t\tInterval: Discrete 0.200s (5.000 fps)
\t\tSize: Discrete 640x480
\t\t\tInterval: Discrete 0.033s (30.000 fps)
\t[1]: 'MJPG' (Motion-JPEG, compressed)
\t\tSize: Discrete 640x480
\t\t\tInterval: Discrete 0.033s (30.000 fps)
\t\tSize: Discrete 1280x720
\t\t\tInterval: Discrete 0.017s (60.000 fps)
\t\t\tInterval: Discrete 0.033s (30.000 fps)
\t\tSize: Discrete 1920x1080
\t\t\tInterval: Discrete 0.067s (15.000 fps)
"""

PACTL_SOURCES = (
    "0\talsa_output.usb-Blue_Microphones_Yeti-00.analog-stereo.monitor\tmodule-alsa-card.c\t"
    "s16le 2ch 48000Hz\tSUSPENDED\n"
    "1\talsa_input.usb-Blue_Microphones_Yeti-00.analog-stereo\tmodule-alsa-card.c\t"
    "s16le 2ch 48000Hz\tSUSPENDED\n"
    "2\talsa_input.pci-0000_00_1f.3.analog-stereo\tmodule-alsa-card.c\t"
    "s16le 2ch 44100Hz\tSUSPENDED\n"
)


@pytest.fixture
def v4l2_devices_text():
    return V4L2_DEVICES


@pytest.fixture
def formats_text():
    return FORMATS_EXT


# =============================================================================
# FAKE TOOLS
# =============================================================================


class FakeRunner:
    """
    Stand-in for tools.run_tool keyed by the joined command line.

    Unknown commands behave like a missing tool and return None.
    """

    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.calls = []

    def __call__(self, cmd, timeout=10):
        key = ' '.join(cmd)
        self.calls.append(key)
        return self.outputs.get(key)

    def called(self, prefix):
        return [c for c in self.calls if c.startswith(prefix)]


class FakeTools:
    """Stand-in for tools.tool_available."""

    def __init__(self, *names):
        self.names = set(names)

    def __call__(self, name):
        return name in self.names


@pytest.fixture
def fake_runner():
    return FakeRunner()


# =============================================================================
# FAKE PROCESSES
# =============================================================================

_pids = itertools.count(1000)


class FakePopen:
    """Minimal subprocess.Popen double."""

    def __init__(self, args, returncode=None, exits_on_signal=True, events=None, stderr=b""):
        self.args = args
        self.pid = next(_pids)
        self.returncode = returncode
        self.exits_on_signal = exits_on_signal
        self.signals = []
        self.killed = False
        self.events = events if events is not None else []
        self.stderr = io.BytesIO(stderr)

    def poll(self):
        return self.returncode

    def send_signal(self, signum):
        self.events.append(('signal', self.pid))
        self.signals.append(signum)
        if self.exits_on_signal:
            self.returncode = 255

    def wait(self, timeout=None):
        self.events.append(('wait', self.pid))
        if self.returncode is None:
            if timeout is not None:
                raise subprocess.TimeoutExpired(self.args, timeout)
            self.returncode = 0
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


class FakeLauncher:
    """
    Popen factory recording every launch.

    ffmpeg outputs are touched on launch so post-session listings find them.
    Devices in ``missing`` raise FileNotFoundError; devices in ``crash``
    return a process that has already exited with status 1.
    """

    def __init__(self, missing=(), crash=(), exits_on_signal=True):
        self.missing = set(missing)
        self.crash = set(crash)
        self.exits_on_signal = exits_on_signal
        self.launched = []
        self.events = []

    def __call__(self, cmd, **kwargs):
        device = cmd[cmd.index('-i') + 1]
        if device in self.missing:
            raise FileNotFoundError(2, "No such file or directory", cmd[0])
        returncode = 1 if device in self.crash else None
        process = FakePopen(cmd, returncode=returncode, exits_on_signal=self.exits_on_signal,
                            events=self.events)
        self.launched.append(process)
        if cmd[0].endswith('ffmpeg') and returncode is None:
            Path(cmd[-1]).touch()
        return process

    def commands(self, tool=None):
        return [p.args for p in self.launched if tool is None or p.args[0].endswith(tool)]


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def supervisor(launcher):
    return ProcessSupervisor(popen=launcher)


# =============================================================================
# OPERATOR
# =============================================================================


class ScriptedPrompter(ConsolePrompter):
    """
    Prompter fed from a list of answers.

    Once the answers run out it behaves like a closed stdin, so every
    prompt falls back to its default.
    """

    def __init__(self, answers=()):
        self.answers = list(answers)
        self.prompts = []
        self.messages = []
        super().__init__(input_func=self._next_answer, output_func=self.messages.append)

    def _next_answer(self, prompt):
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def saw(self, text):
        return any(text in m for m in self.messages)


@pytest.fixture
def prompter():
    return ScriptedPrompter()


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture
def session_config(tmp_path):
    """Fast configuration writing into a temporary directory."""
    config = SessionConfig()
    config.output_directory = str(tmp_path)
    config.base_name = 'base'
    config.supervisor.startup_check = 0
    config.supervisor.settle_delay = 0
    config.supervisor.grace_period = 1
    return config


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Whole-session scenarios with fake processes")
