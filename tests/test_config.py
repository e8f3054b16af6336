"""
Configuration Tests

To run:
    pytest tests/test_config.py -v
"""

import json

import pytest

from multicam_recorder.config import SessionConfig, load_config
from multicam_recorder.errors import ConfigError
from multicam_recorder.models import CaptureMode, Resolution


@pytest.mark.unit
def test_defaults():
    config = SessionConfig()

    assert config.capture.resolution == Resolution(1920, 1080)
    assert config.capture.default_framerate == 30
    assert config.capture.fourcc == 'MJPG'
    assert config.capture.capture_mode == CaptureMode.LOSSLESS
    assert config.base_name == 'recording'
    assert config.duration is None


@pytest.mark.unit
def test_yaml_round_trip(tmp_path):
    config = SessionConfig()
    config.capture.input_format = 'yuyv422'
    config.capture.default_framerate = 60
    config.supervisor.force_kill = True
    config.base_name = 'take1'
    path = tmp_path / 'config.yaml'

    config.to_yaml(str(path))
    loaded = SessionConfig.from_yaml(str(path))

    assert loaded.capture.fourcc == 'YUYV'
    assert loaded.capture.default_framerate == 60
    assert loaded.supervisor.force_kill is True
    assert loaded.base_name == 'take1'


@pytest.mark.unit
def test_flat_json_keys(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'default_framerate': 60,
        'default_video_size': '1280x720',
        'input_format': 'yuyv422',
        'thread_queue_size': 512,
        'font_file': '/tmp/font.ttf',
        'default_overlay_text': 'Lab A',
    }))

    config = load_config(str(path))

    assert config.capture.resolution == Resolution(1280, 720)
    assert config.capture.default_framerate == 60
    assert config.capture.input_format == 'yuyv422'
    assert config.capture.thread_queue_size == 512
    assert config.overlay.font_file == '/tmp/font.ttf'
    assert config.overlay.default_text == 'Lab A'


@pytest.mark.unit
def test_invalid_values_fall_back(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("capture:\n"
                    "  input_format: h265\n"
                    "  default_resolution: big\n"
                    "  default_framerate: -3\n"
                    "  mode: lossy\n"
                    "  unknown_key: 1\n")

    config = load_config(str(path))

    assert config.capture.input_format == 'mjpeg'
    assert config.capture.default_resolution == '1920x1080'
    assert config.capture.default_framerate == 30
    assert config.capture.mode == 'lossless'


@pytest.mark.unit
def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / 'absent.yaml'))

    assert config.base_name == 'recording'


@pytest.mark.unit
def test_unreadable_yaml_raises(tmp_path):
    path = tmp_path / 'broken.yaml'
    path.write_text("capture: [unclosed\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


@pytest.mark.unit
@pytest.mark.parametrize('name, content', [
    ('scalar.yaml', "just a string\n"),
    ('list.yaml', "- capture\n- overlay\n"),
    ('section.yaml', "capture: 30\n"),
    ('list.json', '["default_framerate", 30]'),
])
def test_non_mapping_config_raises_config_error(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)

    with pytest.raises(ConfigError):
        load_config(str(path))


@pytest.mark.unit
def test_non_positive_duration_rejected():
    config = SessionConfig()
    config.duration = 0

    with pytest.raises(ConfigError):
        config.validate()
