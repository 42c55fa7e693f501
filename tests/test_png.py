import io

import pytest
from PIL import Image

from picamkit.formats import PixelFormat, StreamInfo
from picamkit.png import encode_png, png_save


def _image(width, height, stride):
    rows = [bytes((x * 7 + y * 13) % 256 for x in range(width * 3)) for y in range(height)]
    buf = b"".join(r + b"\x00" * (stride - len(r)) for r in rows)
    return rows, buf


def test_png_signature():
    _, buf = _image(2, 2, 8)
    data = encode_png([buf], StreamInfo(2, 2, 8, PixelFormat.BGR888))
    assert data[:8] == b"\x89PNG\r\n\x1a\n"


def test_round_trip_pixels():
    rows, buf = _image(5, 3, 20)
    data = encode_png([buf], StreamInfo(5, 3, 20, PixelFormat.BGR888))
    with Image.open(io.BytesIO(data)) as img:
        assert img.mode == "RGB"
        assert img.size == (5, 3)
        assert img.tobytes() == b"".join(rows)


def test_wrong_pixel_format():
    with pytest.raises(ValueError, match="should be BGR"):
        encode_png([bytes(12)], StreamInfo(2, 2, 6, PixelFormat.RGB888))


def test_buffer_too_small():
    with pytest.raises(ValueError, match="too small"):
        encode_png([bytes(6)], StreamInfo(2, 2, 6, PixelFormat.BGR888))


def test_save_to_file(tmp_path):
    rows, buf = _image(4, 4, 12)
    path = tmp_path / "img.png"
    png_save([buf], StreamInfo(4, 4, 12, PixelFormat.BGR888), str(path))
    with Image.open(path) as img:
        assert img.tobytes() == b"".join(rows)