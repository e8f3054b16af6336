"""
Command Line Tests

To run:
    pytest tests/test_main.py -v
"""

from unittest import mock

import pytest

from multicam_recorder import main as cli
from multicam_recorder.config import SessionConfig
from multicam_recorder.errors import NoCaptureDevicesError


@pytest.mark.unit
def test_arguments_override_config(tmp_path):
    args = cli.build_parser().parse_args(
        ['take1', '--raw', '--duration', '5', '--output-dir', str(tmp_path)])

    config = cli.apply_arguments(SessionConfig(), args)

    assert config.base_name == 'take1'
    assert config.capture.mode == 'raw'
    assert config.duration == 5.0
    assert config.output_path == tmp_path.resolve()


@pytest.mark.unit
def test_defaults_keep_config_values():
    args = cli.build_parser().parse_args([])
    config = SessionConfig()
    config.base_name = 'from_file'

    config = cli.apply_arguments(config, args)

    assert config.base_name == 'from_file'
    assert config.capture.mode == 'lossless'


@pytest.mark.unit
def test_missing_required_tool_exits_1():
    with mock.patch.object(cli, 'setup_logging'), \
            mock.patch.object(cli, 'check_dependencies', return_value=['v4l2-ctl']):
        assert cli.main([]) == 1


@pytest.mark.unit
def test_invalid_duration_exits_1():
    assert cli.main(['--duration', '-4']) == 1


@pytest.mark.unit
def test_no_cameras_exits_1(tmp_path):
    with mock.patch.object(cli, 'setup_logging'), \
            mock.patch.object(cli, 'check_dependencies', return_value=[]), \
            mock.patch.object(cli, 'SessionController') as controller_cls:
        controller_cls.return_value.run.side_effect = NoCaptureDevicesError("none")

        assert cli.main(['--output-dir', str(tmp_path)]) == 1
        controller_cls.return_value.restore_signal_handlers.assert_called_once()
