import pytest

from picamkit.formats import PixelFormat, StreamInfo
from picamkit.yuv import encode_yuv, yuv_save


def _pad(rows, stride, fill=0xFF):
    return b"".join(r + bytes([fill]) * (stride - len(r)) for r in rows)


def _yuv420_image(width, height, stride):
    y_rows = [bytes((x + 10 * y) % 250 for x in range(width)) for y in range(height)]
    u_rows = [bytes(100 + x for x in range(width // 2)) for _ in range(height // 2)]
    v_rows = [bytes(150 + x for x in range(width // 2)) for _ in range(height // 2)]
    buf = _pad(y_rows, stride) + _pad(u_rows, stride // 2) + _pad(v_rows, stride // 2)
    expected = b"".join(y_rows + u_rows + v_rows)
    return buf, expected


def test_yuv420_strips_stride():
    buf, expected = _yuv420_image(4, 4, 8)
    info = StreamInfo(4, 4, 8, PixelFormat.YUV420)
    out = encode_yuv([buf], info, "yuv420")
    assert out == expected
    assert len(out) == 4 * 4 * 3 // 2
    assert 0xFF not in out


def test_yuv420_unpadded_is_identity():
    buf, expected = _yuv420_image(6, 2, 6)
    assert buf == expected
    assert encode_yuv([buf], StreamInfo(6, 2, 6, PixelFormat.YUV420), "yuv420") == buf


def test_yuyv_to_planar():
    row0 = bytes([1, 50, 2, 60, 3, 51, 4, 61])
    row1 = bytes([5, 90, 6, 90, 7, 90, 8, 90])
    buf = row0 + b"\xff\xff" + row1 + b"\xff\xff"
    info = StreamInfo(4, 2, 10, PixelFormat.YUYV)
    out = encode_yuv([buf], info, "yuv420")
    assert out[:8] == bytes([1, 2, 3, 4, 5, 6, 7, 8])
    assert out[8:10] == bytes([50, 51])
    assert out[10:12] == bytes([60, 61])
    assert len(out) == 12


def test_rgb24_rows():
    rows = [bytes(range(y * 6, y * 6 + 6)) for y in range(3)]
    buf = _pad(rows, 8)
    out = encode_yuv([buf], StreamInfo(2, 3, 8, PixelFormat.RGB888), "rgb24")
    assert out == b"".join(rows)


def test_rgb48_rows_are_twice_as_wide():
    rows = [bytes(range(y * 12, y * 12 + 12)) for y in range(2)]
    buf = _pad(rows, 16)
    out = encode_yuv([buf], StreamInfo(2, 2, 16, PixelFormat.RGB161616), "rgb48")
    assert out == b"".join(rows)


@pytest.mark.parametrize("fmt", [PixelFormat.YUV420, PixelFormat.YUYV])
def test_yuv_odd_dimensions(fmt):
    with pytest.raises(ValueError, match="must be even"):
        encode_yuv([bytes(100)], StreamInfo(3, 2, 8, fmt), "yuv420")


@pytest.mark.parametrize("fmt", [PixelFormat.YUV420, PixelFormat.YUYV])
def test_yuv_bad_encoding(fmt):
    with pytest.raises(ValueError, match="output format rgb24 not supported"):
        encode_yuv([bytes(100)], StreamInfo(2, 2, 4, fmt), "rgb24")


def test_yuv420_plane_count():
    with pytest.raises(ValueError, match="number of planes"):
        encode_yuv([bytes(6), bytes(6)], StreamInfo(2, 2, 2, PixelFormat.YUV420), "yuv420")


def test_rgb_bad_encoding():
    with pytest.raises(ValueError, match="encoding should be set to rgb"):
        encode_yuv([bytes(12)], StreamInfo(2, 2, 6, PixelFormat.BGR888), "yuv420")


def test_unrecognised_format():
    with pytest.raises(ValueError, match="unrecognised"):
        encode_yuv([bytes(12)], StreamInfo(2, 2, 6, PixelFormat.SRGGB10), "yuv420")


def test_buffer_too_small():
    with pytest.raises(ValueError, match="too small"):
        encode_yuv([bytes(4)], StreamInfo(2, 2, 2, PixelFormat.YUV420), "yuv420")


def test_save_writes_file(tmp_path):
    buf, expected = _yuv420_image(4, 2, 8)
    path = tmp_path / "img.yuv"
    yuv_save([buf], StreamInfo(4, 2, 8, PixelFormat.YUV420), str(path), "yuv420")
    assert path.read_bytes() == expected