import io

import pytest
from PIL import Image

from picamkit.encoder import EncoderOptions
from picamkit.formats import PixelFormat, StreamInfo
from picamkit.mjpeg_encoder import MjpegEncoder

W, H = 16, 16
INFO = StreamInfo(W, H, W, PixelFormat.YUV420)


def _frame(seed):
    size = W * H + 2 * (W // 2) * (H // 2)
    return bytes((seed * 7 + i) % 256 for i in range(size))


def _collect(encoder, count):
    events = []
    encoder.input_done_callback = lambda: events.append("in")
    encoder.output_ready_callback = lambda mem, ts, key: events.append((bytes(mem), ts, key))
    with encoder:
        for i in range(count):
            encoder.encode_buffer(_frame(i), INFO, i * 33333)
    return events


def test_outputs_are_jpegs_in_input_order():
    events = _collect(MjpegEncoder(EncoderOptions(codec="mjpeg", quality=80)), 10)
    outputs = [e for e in events if e != "in"]
    assert [ts for _, ts, _ in outputs] == [i * 33333 for i in range(10)]
    assert all(key for _, _, key in outputs)
    for data, _, _ in outputs:
        assert data[:2] == b"\xff\xd8"
        assert Image.open(io.BytesIO(data)).size == (W, H)


def test_each_output_follows_its_input_done():
    events = _collect(MjpegEncoder(EncoderOptions(codec="mjpeg")), 4)
    assert events[0::2] == ["in"] * 4
    assert len(events) == 8


def test_higher_quality_gives_larger_output():
    low = [e for e in _collect(MjpegEncoder(EncoderOptions(quality=10)), 1) if e != "in"]
    high = [e for e in _collect(MjpegEncoder(EncoderOptions(quality=95)), 1) if e != "in"]
    assert len(high[0][0]) > len(low[0][0])


def test_unsupported_format_reported_on_close():
    enc = MjpegEncoder(EncoderOptions())
    enc.encode_buffer(b"\0" * 48, StreamInfo(4, 4, 12, PixelFormat.RGB888), 0)
    with pytest.raises(ValueError):
        enc.close()


def test_encode_after_close_fails():
    enc = MjpegEncoder(EncoderOptions())
    enc.close()
    with pytest.raises(RuntimeError):
        enc.encode_buffer(_frame(0), INFO, 0)