import pytest

from picamkit.encoder import Encoder, EncoderOptions
from picamkit.formats import PixelFormat, StreamInfo


class _Recording(Encoder):
    def __init__(self, options):
        super().__init__(options)
        self.frames = []
        self.closed = 0

    def encode_buffer(self, mem, info, timestamp_us):
        self.frames.append((bytes(mem), timestamp_us))
        self.input_done_callback()
        self.output_ready_callback(mem, timestamp_us, True)

    def close(self):
        self.closed += 1


INFO = StreamInfo(2, 2, 2, PixelFormat.YUV420)


def test_abstract_encoder_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Encoder(EncoderOptions())


def test_context_manager_closes_and_returns_self():
    enc = _Recording(EncoderOptions())
    with enc as entered:
        assert entered is enc
        assert enc.closed == 0
    assert enc.closed == 1


def test_context_manager_closes_on_error():
    enc = _Recording(EncoderOptions())
    with pytest.raises(KeyError):
        with enc:
            raise KeyError("boom")
    assert enc.closed == 1


def test_callbacks_are_replaceable():
    enc = _Recording(EncoderOptions(codec="yuv420"))
    events = []
    enc.input_done_callback = lambda: events.append("in")
    enc.output_ready_callback = lambda mem, ts, key: events.append(("out", bytes(mem), ts, key))
    enc.encode_buffer(b"ab", INFO, 7)
    assert events == ["in", ("out", b"ab", 7, True)]
    assert enc.frames == [(b"ab", 7)]
    assert enc.options.codec == "yuv420"