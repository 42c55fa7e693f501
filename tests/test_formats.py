import pytest

from picamkit.formats import PixelFormat, StreamInfo, open_output


def test_open_output_writes_file(tmp_path):
    path = tmp_path / "out.bin"
    with open_output(str(path)) as fp:
        fp.write(b"abc")
    assert path.read_bytes() == b"abc"


def test_open_output_closes_file(tmp_path):
    path = tmp_path / "out.bin"
    with open_output(str(path)) as fp:
        pass
    assert fp.closed


def test_open_output_stdout(capsysbinary):
    with open_output("-") as fp:
        fp.write(b"hello")
    assert capsysbinary.readouterr().out == b"hello"


def test_open_output_bad_path(tmp_path):
    bad = tmp_path / "missing" / "dir" / "file.bin"
    with pytest.raises(OSError, match="failed to open file"):
        with open_output(str(bad)):
            pass


def test_stream_info_fields():
    info = StreamInfo(width=4, height=2, stride=12, pixel_format=PixelFormat.RGB888)
    assert (info.width, info.height, info.stride) == (4, 2, 12)
    assert info.pixel_format is PixelFormat.RGB888
    assert info.colour_space is None


def test_stream_info_is_frozen():
    info = StreamInfo(2, 2, 6, PixelFormat.BGR888)
    with pytest.raises(AttributeError):
        info.width = 3
    assert info.width == 2
    assert info == StreamInfo(2, 2, 6, PixelFormat.BGR888)


def test_pixel_format_lookup_by_name():
    assert PixelFormat("YUV420") is PixelFormat.YUV420
    with pytest.raises(ValueError):
        PixelFormat("NOT_A_FORMAT")