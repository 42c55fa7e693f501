"""Encode RGB images as PNG."""

from __future__ import annotations

import io
import logging
from typing import Sequence

from PIL import Image

from .formats import PixelFormat, StreamInfo, open_output

log = logging.getLogger(__name__)


def encode_png(mem: Sequence, info: StreamInfo) -> bytes:
    """Return PNG bytes for a BGR888 buffer (R, G, B byte order in memory)."""
    if info.pixel_format != PixelFormat.BGR888:
        raise ValueError("pixel format for png should be BGR")

    plane = memoryview(mem[0]).cast("B")
    line = info.width * 3
    rows = []
    for y in range(info.height):
        row = plane[y * info.stride:y * info.stride + line]
        if len(row) != line:
            raise ValueError("image buffer too small")
        rows.append(bytes(row))

    image = Image.frombytes("RGB", (info.width, info.height), b"".join(rows))
    out = io.BytesIO()
    # Fast compression gets most of the size reduction at a fraction of the cost.
    image.save(out, format="PNG", compress_level=1)
    return out.getvalue()


def png_save(mem: Sequence, info: StreamInfo, filename: str) -> None:
    """Write a BGR888 buffer to ``filename`` as PNG (``"-"`` for stdout)."""
    data = encode_png(mem, info)
    with open_output(filename) as fp:
        fp.write(data)
    log.debug("Wrote PNG file of %d bytes", len(data))