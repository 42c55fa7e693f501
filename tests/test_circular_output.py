import pytest

from picamkit.circular_output import CircularBuffer, CircularOutput
from picamkit.output import Flag, OutputOptions


def test_empty_buffer_available():
    cb = CircularBuffer(32)
    assert cb.empty()
    assert cb.available() == 31


def test_write_read_round_trip_with_wrap():
    cb = CircularBuffer(32)
    cb.write(b"x" * 20)
    assert cb.read(20) == b"x" * 20
    data = bytes(range(25))
    cb.write(data)
    assert not cb.empty()
    assert cb.available() == 31 - 25
    assert cb.read(25) == data
    assert cb.empty()


def test_pad_and_skip():
    cb = CircularBuffer(16)
    cb.write(b"ab")
    cb.pad(3)
    cb.write(b"cd")
    assert cb.read(2) == b"ab"
    cb.skip(3)
    assert cb.read(2) == b"cd"
    assert cb.empty()


def test_write_too_large_raises():
    cb = CircularBuffer(16)
    with pytest.raises(ValueError):
        cb.write(bytes(16))


def test_keeps_most_recent_frames(tmp_path):
    path = tmp_path / "out.h264"
    out = CircularOutput(OutputOptions(output=str(path), circular=1))
    frames = [bytes([i]) * 300_000 for i in range(5)]
    for i, frame in enumerate(frames):
        out.output_ready(frame, i * 40_000, True)
    out.close()
    assert path.read_bytes() == frames[2] + frames[3] + frames[4]


def test_skips_frames_before_first_keyframe(tmp_path):
    path = tmp_path / "out.h264"
    out = CircularOutput(OutputOptions(output=str(path), circular=1))
    out.output_buffer(b"A" * 7, 0, Flag.NONE)
    out.output_buffer(b"B" * 9, 1, Flag.KEYFRAME)
    out.output_buffer(b"C" * 33, 2, Flag.NONE)
    out.close()
    assert path.read_bytes() == b"B" * 9 + b"C" * 33


def test_buffer_too_small(tmp_path):
    out = CircularOutput(OutputOptions(output=str(tmp_path / "o"), circular=1))
    with pytest.raises(RuntimeError):
        out.output_buffer(bytes(2 << 20), 0, Flag.KEYFRAME)
    out.close()


def test_timestamps_written_on_close(tmp_path):
    pts = tmp_path / "pts.txt"
    out = CircularOutput(OutputOptions(output=str(tmp_path / "o"), circular=1, save_pts=str(pts)))
    out.output_ready(b"a" * 10, 1_000_000, True)
    out.output_ready(b"b" * 10, 1_040_000, False)
    out.close()
    lines = pts.read_text().splitlines()
    assert lines[0] == "# timecode format v2"
    assert lines[1:] == ["0.000", "40.000"]


def test_missing_output_raises():
    with pytest.raises(OSError):
        CircularOutput(OutputOptions(output="", circular=1))