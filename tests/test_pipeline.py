"""
Pipeline Spec Tests

To run:
    pytest tests/test_pipeline.py -v
"""

from pathlib import Path

import pytest

from multicam_recorder.models import CaptureDevice, CaptureMode, DeviceKind, Resolution
from multicam_recorder.pipeline import (
    AUDIO_ENCODINGS,
    VIDEO_ENCODINGS,
    OverlaySpec,
    PipelineSpec,
    PipelineSpecBuilder,
    escape_filter_text,
    scale_filter,
)

CAMERAS = [CaptureDevice(path=f'/dev/video{n}', kind=DeviceKind.VIDEO) for n in (0, 2, 4)]
MIC = CaptureDevice(path='hw:2,0', kind=DeviceKind.AUDIO, backend='alsa')
OVERLAY = OverlaySpec(text='Lab A', font_file='/fonts/mono.ttf')
HD = Resolution(1280, 720)


@pytest.fixture
def builder(tmp_path):
    return PipelineSpecBuilder(tmp_path, 'base', duration=5)


# =============================================================================
# OUTPUT NAMING
# =============================================================================

@pytest.mark.unit
@pytest.mark.parametrize('mode, ext', [(CaptureMode.RAW, 'avi'), (CaptureMode.LOSSLESS, 'mkv')])
def test_one_spec_per_camera_with_indexed_paths(builder, tmp_path, mode, ext):
    specs = [builder.build_video_spec(cam, i, HD, 30, mode) for i, cam in enumerate(CAMERAS)]

    assert [s.output_path for s in specs] == [tmp_path / f'base_cam{i}.{ext}' for i in range(3)]
    assert len({s.output_path for s in specs}) == len(CAMERAS)


@pytest.mark.unit
def test_audio_paths_and_codecs(builder, tmp_path):
    raw = builder.build_audio_spec(MIC, CaptureMode.RAW)
    lossless = builder.build_audio_spec(MIC, CaptureMode.LOSSLESS)

    assert raw.output_path == tmp_path / 'base_audio.wav'
    assert raw.encoding == AUDIO_ENCODINGS[CaptureMode.RAW]
    assert raw.encoding.codec == 'pcm_s16le'
    assert lossless.output_path == tmp_path / 'base_audio.flac'
    assert lossless.encoding.codec == 'flac'
    assert raw.input_format == 'alsa'
    assert raw.duration == 5


# =============================================================================
# OVERLAY FORCES LOSSLESS
# =============================================================================

@pytest.mark.unit
def test_overlay_forces_lossless(builder):
    spec = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.RAW, overlay=OVERLAY)

    assert spec.mode == CaptureMode.LOSSLESS
    assert spec.encoding == VIDEO_ENCODINGS[CaptureMode.LOSSLESS]
    assert spec.output_path.suffix == '.mkv'


@pytest.mark.unit
def test_overlay_override_is_idempotent(builder):
    forced = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.RAW, overlay=OVERLAY)
    direct = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.LOSSLESS, overlay=OVERLAY)

    assert forced == direct


@pytest.mark.unit
def test_overlay_override_is_announced_once(tmp_path):
    notices = []
    builder = PipelineSpecBuilder(tmp_path, 'base', notify=notices.append)

    for i, cam in enumerate(CAMERAS):
        builder.build_video_spec(cam, i, HD, 30, CaptureMode.RAW, overlay=OVERLAY)

    assert len(notices) == 1
    assert 'lossless' in notices[0]


@pytest.mark.unit
def test_spec_rejects_filters_with_stream_copy():
    with pytest.raises(ValueError):
        PipelineSpec(device=CAMERAS[0], index=0, mode=CaptureMode.RAW,
                     encoding=VIDEO_ENCODINGS[CaptureMode.RAW], output_path=Path('x.avi'),
                     input_format='mjpeg', resolution=HD, frame_rate=30, overlay=OVERLAY)


# =============================================================================
# FILTER CHAINS
# =============================================================================

@pytest.mark.unit
def test_overlay_has_caption_and_timestamp_beneath(builder):
    spec = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.LOSSLESS, overlay=OVERLAY)

    caption, timestamp = spec.overlay.filters()
    assert caption.startswith('drawtext=') and 'text=Lab A' in caption
    assert 'expansion=none' in caption
    assert 'x=(w-tw)/2' in caption and 'y=h-(2*th)-20' in caption
    assert 'localtime' in timestamp and 'y=h-th-10' in timestamp
    assert spec.capture_filter_chain() == f'{caption},{timestamp}'


@pytest.mark.unit
def test_preview_chain_combines_overlay_and_scale(builder):
    spec = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.LOSSLESS,
                                    overlay=OVERLAY, preview_scale=0.5)

    chain = spec.preview_filter_chain()
    assert chain.startswith('drawtext=')
    assert chain.endswith(',scale=iw*0.5:ih*0.5')
    assert 'scale' not in spec.capture_filter_chain()


@pytest.mark.unit
def test_no_filters_without_overlay_or_scale(builder):
    spec = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.RAW)

    assert spec.capture_filter_chain() is None
    assert spec.preview_filter_chain() is None
    assert scale_filter(1.0) is None
    assert scale_filter(2) == 'scale=iw*2:ih*2'


@pytest.mark.unit
@pytest.mark.parametrize('text, expected', [
    ("plain", "plain"),
    ("it's", "it\\\\\\'s"),
    ("a:b", "a\\\\:b"),
    ("one, two", "one\\, two"),
    ("[x];y", "\\[x\\]\\;y"),
    ("back\\slash", "back\\\\\\\\slash"),
])
def test_escape_filter_text(text, expected):
    assert escape_filter_text(text) == expected


@pytest.mark.unit
def test_hostile_text_cannot_add_filters(builder):
    overlay = OverlaySpec(text="x',scale=1:1,drawtext=text='pwned", font_file='/f.ttf')
    spec = builder.build_video_spec(CAMERAS[0], 0, HD, 30, CaptureMode.LOSSLESS, overlay=overlay)

    chain = spec.capture_filter_chain()
    # only the two separators between our own filters stay unescaped
    unescaped_commas = [i for i, c in enumerate(chain) if c == ',' and chain[i - 1] != '\\']
    assert len(unescaped_commas) == 1
