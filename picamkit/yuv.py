"""Save uncompressed YUV and RGB image data."""

from __future__ import annotations

from typing import Sequence

from .formats import PixelFormat, StreamInfo, open_output

_RGB_FORMATS = {
    PixelFormat.BGR888,
    PixelFormat.RGB888,
    PixelFormat.BGR161616,
    PixelFormat.RGB161616,
}


def _row(plane: memoryview, offset: int, length: int) -> bytes:
    data = plane[offset:offset + length]
    if len(data) != length:
        raise ValueError("image buffer too small")
    return bytes(data)


def _yuv420(mem: Sequence, info: StreamInfo, encoding: str) -> bytes:
    if encoding != "yuv420":
        raise ValueError(f"output format {encoding} not supported")
    w, h, stride = info.width, info.height, info.stride
    if w & 1 or h & 1:
        raise ValueError("both width and height must be even")
    if len(mem) != 1:
        raise ValueError("incorrect number of planes in YUV420 data")
    plane = memoryview(mem[0]).cast("B")

    parts = [_row(plane, j * stride, w) for j in range(h)]
    u_start = stride * h
    h, w, stride = h // 2, w // 2, stride // 2
    v_start = u_start + stride * h
    parts += [_row(plane, u_start + j * stride, w) for j in range(h)]
    parts += [_row(plane, v_start + j * stride, w) for j in range(h)]
    return b"".join(parts)


def _yuyv(mem: Sequence, info: StreamInfo, encoding: str) -> bytes:
    if encoding != "yuv420":
        raise ValueError(f"output format {encoding} not supported")
    w, h, stride = info.width, info.height, info.stride
    if w & 1 or h & 1:
        raise ValueError("both width and height must be even")
    plane = memoryview(mem[0]).cast("B")
    half = w // 2

    y_rows = [_row(plane, j * stride, 2 * w)[0::2] for j in range(h)]
    chroma_rows = [_row(plane, j * stride, 4 * half) for j in range(0, h, 2)]
    u_rows = [row[1::4] for row in chroma_rows]
    v_rows = [row[3::4] for row in chroma_rows]
    return b"".join(y_rows + u_rows + v_rows)


def _rgb(mem: Sequence, info: StreamInfo, encoding: str) -> bytes:
    if encoding not in ("rgb24", "rgb48"):
        raise ValueError("encoding should be set to rgb")
    plane = memoryview(mem[0]).cast("B")
    row_bytes = 3 * info.width * (2 if encoding == "rgb48" else 1)
    return b"".join(_row(plane, j * info.stride, row_bytes) for j in range(info.height))


def encode_yuv(mem: Sequence, info: StreamInfo, encoding: str) -> bytes:
    """Return the raw bytes to save for ``mem``, with stride padding removed.

    YUYV and YUV420 input is written as planar YUV420; RGB input as packed rows.
    """
    if info.pixel_format == PixelFormat.YUYV:
        return _yuyv(mem, info, encoding)
    if info.pixel_format == PixelFormat.YUV420:
        return _yuv420(mem, info, encoding)
    if info.pixel_format in _RGB_FORMATS:
        return _rgb(mem, info, encoding)
    raise ValueError("unrecognised YUV/RGB save format")


def yuv_save(mem: Sequence, info: StreamInfo, filename: str, encoding: str) -> None:
    """Write uncompressed image data to ``filename`` (``"-"`` for stdout)."""
    data = encode_yuv(mem, info, encoding)
    with open_output(filename) as fp:
        fp.write(data)