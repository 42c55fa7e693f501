"""Pixel formats, stream descriptions and output-file helpers shared by the image savers."""

from __future__ import annotations

import contextlib
import enum
import sys
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional


class PixelFormat(str, enum.Enum):
    """Pixel formats a camera stream can deliver."""

    RGB888 = "RGB888"
    BGR888 = "BGR888"
    RGB161616 = "RGB161616"
    BGR161616 = "BGR161616"
    YUV420 = "YUV420"
    YUYV = "YUYV"

    SRGGB10_CSI2P = "SRGGB10_CSI2P"
    SGRBG10_CSI2P = "SGRBG10_CSI2P"
    SBGGR10_CSI2P = "SBGGR10_CSI2P"
    SGBRG10_CSI2P = "SGBRG10_CSI2P"
    SRGGB10 = "SRGGB10"
    SGRBG10 = "SGRBG10"
    SBGGR10 = "SBGGR10"
    SGBRG10 = "SGBRG10"
    SRGGB12_CSI2P = "SRGGB12_CSI2P"
    SGRBG12_CSI2P = "SGRBG12_CSI2P"
    SBGGR12_CSI2P = "SBGGR12_CSI2P"
    SGBRG12_CSI2P = "SGBRG12_CSI2P"
    SRGGB12 = "SRGGB12"
    SGRBG12 = "SGRBG12"
    SBGGR12 = "SBGGR12"
    SGBRG12 = "SGBRG12"
    SRGGB16 = "SRGGB16"
    SGRBG16 = "SGRBG16"
    SBGGR16 = "SBGGR16"
    SGBRG16 = "SGBRG16"
    R10_CSI2P = "R10_CSI2P"
    R10 = "R10"
    R12 = "R12"
    RGGB_PISP_COMP1 = "RGGB_PISP_COMP1"
    GRBG_PISP_COMP1 = "GRBG_PISP_COMP1"
    GBRG_PISP_COMP1 = "GBRG_PISP_COMP1"
    BGGR_PISP_COMP1 = "BGGR_PISP_COMP1"


@dataclass(frozen=True)
class StreamInfo:
    """Geometry and format of one image buffer."""

    width: int
    height: int
    stride: int
    pixel_format: PixelFormat
    colour_space: Optional[str] = None


@contextlib.contextmanager
def open_output(filename: str) -> Iterator[BinaryIO]:
    """Open ``filename`` for binary writing; ``"-"`` means standard output, which is left open."""
    if filename == "-":
        out = sys.stdout.buffer
        try:
            yield out
        finally:
            out.flush()
        return
    try:
        fp = open(filename, "wb")
    except OSError as err:
        raise OSError(f"failed to open file {filename}") from err
    with fp:
        yield fp