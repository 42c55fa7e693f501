import pytest

from picamkit.encoder import EncoderOptions
from picamkit.encoder_factory import create_encoder
from picamkit.formats import PixelFormat, StreamInfo
from picamkit.mjpeg_encoder import MjpegEncoder
from picamkit.null_encoder import NullEncoder

INFO = StreamInfo(16, 16, 16, PixelFormat.YUV420)


@pytest.mark.parametrize("codec", ["yuv420", "YUV420", "Yuv420"])
def test_yuv420_gives_null_encoder(codec):
    with create_encoder(EncoderOptions(codec=codec), INFO) as enc:
        assert isinstance(enc, NullEncoder)
        assert enc.options.codec == codec


@pytest.mark.parametrize("codec", ["mjpeg", "MJPEG"])
def test_mjpeg_gives_mjpeg_encoder(codec):
    with create_encoder(EncoderOptions(codec=codec), INFO) as enc:
        assert isinstance(enc, MjpegEncoder)
        assert enc.options.codec == codec


def test_h264_is_unavailable():
    with pytest.raises(RuntimeError, match="H.264"):
        create_encoder(EncoderOptions(codec="h264"), INFO)


@pytest.mark.parametrize("codec", ["libav", "vp9", ""])
def test_unknown_codec_rejected(codec):
    with pytest.raises(ValueError, match="Unrecognised codec"):
        create_encoder(EncoderOptions(codec=codec), INFO)