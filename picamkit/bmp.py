"""Encode RGB images as uncompressed 24-bit BMP."""

from __future__ import annotations

import logging
import struct
from typing import Sequence

from .formats import PixelFormat, StreamInfo, open_output

log = logging.getLogger(__name__)

_FILE_HEADER = struct.Struct("<2sIHHI")
_IMAGE_HEADER = struct.Struct("<IIiHHIIIIII")
_PIXEL_OFFSET = _FILE_HEADER.size + _IMAGE_HEADER.size


def encode_bmp(mem: Sequence, info: StreamInfo) -> bytes:
    """Return the BMP file bytes for an RGB888 buffer (first plane of ``mem``)."""
    if info.pixel_format != PixelFormat.RGB888:
        raise ValueError("pixel format for bmp should be RGB")

    plane = memoryview(mem[0]).cast("B")
    line = info.width * 3
    pitch = (line + 3) & ~3
    padding = bytes(pitch - line)

    filesize = _PIXEL_OFFSET + info.height * pitch
    parts = [
        _FILE_HEADER.pack(b"BM", filesize, 0, 0, _PIXEL_OFFSET),
        # Negative height makes the image come out the right way up.
        _IMAGE_HEADER.pack(
            _IMAGE_HEADER.size, info.width, -info.height, 1, 24, 0, 0, 100000, 100000, 0, 0
        ),
    ]
    for row_number in range(info.height):
        start = row_number * info.stride
        row = plane[start:start + line]
        if len(row) != line:
            raise ValueError(f"failed to write BMP file, row {row_number}")
        parts.append(bytes(row))
        parts.append(padding)
    return b"".join(parts)


def bmp_save(mem: Sequence, info: StreamInfo, filename: str) -> None:
    """Write an RGB888 buffer to ``filename`` as BMP (``"-"`` for stdout)."""
    data = encode_bmp(mem, info)
    with open_output(filename) as fp:
        fp.write(data)
    log.debug("Wrote %d bytes to BMP file", len(data))