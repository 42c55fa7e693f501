"""Save raw Bayer images as DNG files."""

from __future__ import annotations

import logging
import math
import struct
import sys
import time
from array import array
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Mapping, Optional, Sequence

from .formats import PixelFormat, StreamInfo

log = logging.getLogger(__name__)

MAKE = "Raspberry Pi"
SOFTWARE = "picamkit"

_RGGB = (0, 1, 1, 2)
_GRBG = (1, 0, 2, 1)
_BGGR = (2, 1, 1, 0)
_GBRG = (1, 2, 0, 1)

# Fixed parameters of the compressed sensor format.
_COMPRESS_OFFSET = 2048

# Thumbnails are 1/16 of the full size in each direction.
_THUMB_SHIFT = 4


@dataclass(frozen=True)
class BayerFormat:
    """How a raw pixel format is laid out in memory."""

    name: str
    bits: int
    order: tuple
    packed: bool
    compressed: bool


_BAYER_FORMATS = {
    PixelFormat.SRGGB10_CSI2P: BayerFormat("RGGB-10", 10, _RGGB, True, False),
    PixelFormat.SGRBG10_CSI2P: BayerFormat("GRBG-10", 10, _GRBG, True, False),
    PixelFormat.SBGGR10_CSI2P: BayerFormat("BGGR-10", 10, _BGGR, True, False),
    PixelFormat.SGBRG10_CSI2P: BayerFormat("GBRG-10", 10, _GBRG, True, False),
    PixelFormat.SRGGB10: BayerFormat("RGGB-10", 10, _RGGB, False, False),
    PixelFormat.SGRBG10: BayerFormat("GRBG-10", 10, _GRBG, False, False),
    PixelFormat.SBGGR10: BayerFormat("BGGR-10", 10, _BGGR, False, False),
    PixelFormat.SGBRG10: BayerFormat("GBRG-10", 10, _GBRG, False, False),
    PixelFormat.SRGGB12_CSI2P: BayerFormat("RGGB-12", 12, _RGGB, True, False),
    PixelFormat.SGRBG12_CSI2P: BayerFormat("GRBG-12", 12, _GRBG, True, False),
    PixelFormat.SBGGR12_CSI2P: BayerFormat("BGGR-12", 12, _BGGR, True, False),
    PixelFormat.SGBRG12_CSI2P: BayerFormat("GBRG-12", 12, _GBRG, True, False),
    PixelFormat.SRGGB12: BayerFormat("RGGB-12", 12, _RGGB, False, False),
    PixelFormat.SGRBG12: BayerFormat("GRBG-12", 12, _GRBG, False, False),
    PixelFormat.SBGGR12: BayerFormat("BGGR-12", 12, _BGGR, False, False),
    PixelFormat.SGBRG12: BayerFormat("GBRG-12", 12, _GBRG, False, False),
    PixelFormat.SRGGB16: BayerFormat("RGGB-16", 16, _RGGB, False, False),
    PixelFormat.SGRBG16: BayerFormat("GRBG-16", 16, _GRBG, False, False),
    PixelFormat.SBGGR16: BayerFormat("BGGR-16", 16, _BGGR, False, False),
    PixelFormat.SGBRG16: BayerFormat("GBRG-16", 16, _GBRG, False, False),
    PixelFormat.R10_CSI2P: BayerFormat("BGGR-10", 10, _BGGR, True, False),
    PixelFormat.R10: BayerFormat("BGGR-10", 10, _BGGR, False, False),
    PixelFormat.R12: BayerFormat("BGGR-12", 12, _BGGR, False, False),
    PixelFormat.RGGB_PISP_COMP1: BayerFormat("RGGB-16-PISP", 16, _RGGB, False, True),
    PixelFormat.GRBG_PISP_COMP1: BayerFormat("GRBG-16-PISP", 16, _GRBG, False, True),
    PixelFormat.GBRG_PISP_COMP1: BayerFormat("GBRG-16-PISP", 16, _GBRG, False, True),
    PixelFormat.BGGR_PISP_COMP1: BayerFormat("BGGR-16-PISP", 16, _BGGR, False, True),
}


def bayer_format_for(pixel_format: PixelFormat) -> BayerFormat:
    """Return the Bayer layout of ``pixel_format``; ValueError if it is not a raw format."""
    try:
        return _BAYER_FORMATS[pixel_format]
    except KeyError:
        raise ValueError("unsupported Bayer format") from None


@dataclass(frozen=True)
class Matrix:
    """A 3x3 matrix stored row by row."""

    m: tuple

    def __post_init__(self) -> None:
        values = tuple(float(v) for v in self.m)
        if len(values) != 9:
            raise ValueError("a 3x3 matrix needs 9 values")
        object.__setattr__(self, "m", values)

    @classmethod
    def diagonal(cls, d0: float, d1: float, d2: float) -> "Matrix":
        return cls((d0, 0, 0, 0, d1, 0, 0, 0, d2))

    def transpose(self) -> "Matrix":
        m = self.m
        return Matrix((m[0], m[3], m[6], m[1], m[4], m[7], m[2], m[5], m[8]))

    def cofactor(self) -> "Matrix":
        m = self.m
        return Matrix((
            m[4] * m[8] - m[5] * m[7], -(m[3] * m[8] - m[5] * m[6]), m[3] * m[7] - m[4] * m[6],
            -(m[1] * m[8] - m[2] * m[7]), m[0] * m[8] - m[2] * m[6], -(m[0] * m[7] - m[1] * m[6]),
            m[1] * m[5] - m[2] * m[4], -(m[0] * m[5] - m[2] * m[3]), m[0] * m[4] - m[1] * m[3],
        ))

    def adjugate(self) -> "Matrix":
        return self.cofactor().transpose()

    def determinant(self) -> float:
        m = self.m
        return (m[0] * (m[4] * m[8] - m[5] * m[7])
                - m[1] * (m[3] * m[8] - m[5] * m[6])
                + m[2] * (m[3] * m[7] - m[4] * m[6]))

    def inverse(self) -> "Matrix":
        det = self.determinant()
        if det == 0:
            raise ValueError("matrix is singular")
        return self.adjugate() * (1.0 / det)

    def __mul__(self, other):
        if isinstance(other, Matrix):
            a, b = self.m, other.m
            return Matrix(tuple(
                a[i * 3] * b[j] + a[i * 3 + 1] * b[3 + j] + a[i * 3 + 2] * b[6 + j]
                for i in range(3) for j in range(3)
            ))
        if isinstance(other, (int, float)):
            return Matrix(tuple(v * other for v in self.m))
        return NotImplemented


@dataclass(frozen=True)
class Roi:
    """Region of interest as fractions of the image size; a zero size means "to the edge"."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


def _plane(src: Any) -> memoryview:
    return memoryview(src).cast("B")


def _source_row(data: memoryview, offset: int, length: int) -> bytes:
    row = bytes(data[offset:offset + length])
    if len(row) != length:
        raise ValueError("image buffer too small")
    return row


def unpack_10bit(src: Any, info: StreamInfo) -> tuple:
    """Unpack CSI-2 10-bit data.

    Returns ``(packed, values)``: the pixels as a contiguous MSB-first 10-bit
    bitstream, and as a list of integers.
    """
    data = _plane(src)
    w_align = info.width & ~3
    row_bytes = w_align * 5 // 4
    packed = bytearray()
    values: list = []
    for y in range(info.height):
        row = _source_row(data, y * info.stride, row_bytes)
        for b0, b1, b2, b3, lo in zip(row[0::5], row[1::5], row[2::5], row[3::5], row[4::5]):
            v1 = (b0 << 2) | (lo & 3)
            v2 = (b1 << 2) | ((lo >> 2) & 3)
            v3 = (b2 << 2) | ((lo >> 4) & 3)
            v4 = (b3 << 2) | ((lo >> 6) & 3)
            packed += bytes((
                v1 >> 2,
                ((v1 & 3) << 6) | (v2 >> 4),
                ((v2 & 0xF) << 4) | (v3 >> 6),
                ((v3 & 0x3F) << 2) | (v4 >> 8),
                v4 & 0xFF,
            ))
            values += (v1, v2, v3, v4)
    return bytes(packed), values


def unpack_12bit(src: Any, info: StreamInfo) -> tuple:
    """Unpack CSI-2 12-bit data into ``(packed, values)`` like :func:`unpack_10bit`."""
    data = _plane(src)
    w_align = info.width & ~1
    row_bytes = w_align * 3 // 2
    packed = bytearray()
    values: list = []
    for y in range(info.height):
        row = _source_row(data, y * info.stride, row_bytes)
        for b0, b1, lo in zip(row[0::3], row[1::3], row[2::3]):
            v1 = (b0 << 4) | (lo & 15)
            v2 = (b1 << 4) | ((lo >> 4) & 15)
            packed += bytes((v1 >> 4, ((v1 & 0xF) << 4) | (v2 >> 8), v2 & 0xFF))
            values += (v1, v2)
    return bytes(packed), values


def unpack_16bit(src: Any, info: StreamInfo) -> list:
    """Return the 16-bit pixels (native byte order in memory) with stride padding removed."""
    data = _plane(src)
    values = array("H")
    for y in range(info.height):
        values.frombytes(_source_row(data, y * info.stride, 2 * info.width))
    return values.tolist()


def postprocess(a: int) -> int:
    """Add the fixed black offset of the compressed format, saturating at 16 bits."""
    return min(0xFFFF, a + _COMPRESS_OFFSET)


def dequantize(q: int, qmode: int) -> int:
    """Expand a quantised sample according to its quantisation mode."""
    if qmode == 0:
        value = 16 * q if q < 320 else 32 * (q - 160)
    elif qmode == 1:
        value = 64 * q
    elif qmode == 2:
        value = 128 * q
    else:
        value = 256 * q if q < 94 else min(0xFFFF, 512 * (q - 47))
    return value & 0xFFFF


def decode_sub_block(w: int, qmode: Optional[int] = None) -> tuple:
    """Decode one 32-bit compressed word into four samples.

    The quantisation mode is held in the low two bits of ``w``.
    """
    if qmode is None:
        qmode = w & 3
    if qmode < 3:
        field0 = (w >> 2) & 511
        field1 = (w >> 11) & 127
        field2 = (w >> 18) & 127
        field3 = (w >> 25) & 127
        if qmode == 2 and field0 >= 384:
            q1 = field0
            q2 = field1 + 384
        else:
            q1 = field0 if field1 >= 64 else field0 + 64 - field1
            q2 = field0 + field1 - 64 if field1 >= 64 else field0
        p1 = max(0, q1 - 64)
        p2 = max(0, q2 - 64)
        if qmode == 2:
            p1 = min(384, p1)
            p2 = min(384, p2)
        q = (p1 + field2, q1, q2, p2 + field3)
    else:
        pack0 = (w >> 2) & 32767
        pack1 = (w >> 17) & 32767
        q = (
            (pack0 & 15) + 16 * ((pack0 >> 8) // 11),
            (pack0 >> 4) % 176,
            (pack1 & 15) + 16 * ((pack1 >> 8) // 11),
            (pack1 >> 4) % 176,
        )
    return tuple(dequantize(v, qmode) for v in q)


def uncompress(src: Any, info: StreamInfo) -> list:
    """Decompress a compressed raw image; rows are padded to a multiple of 8 pixels."""
    data = _plane(src)
    padded = (info.width + 7) & ~7
    out = [0] * (padded * info.height)
    for y in range(info.height):
        for x in range(0, info.width, 8):
            block = _source_row(data, y * info.stride + x, 8)
            even = decode_sub_block(int.from_bytes(block[:4], "little"))
            odd = decode_sub_block(int.from_bytes(block[4:], "little"))
            base = y * padded + x
            out[base:base + 8:2] = [postprocess(v) for v in even]
            out[base + 1:base + 8:2] = [postprocess(v) for v in odd]
    return out


# TIFF field types.
_BYTE, _ASCII, _SHORT, _LONG, _RATIONAL, _SRATIONAL = 1, 2, 3, 4, 5, 10


@dataclass(frozen=True)
class _Entry:
    tag: int
    type: int
    count: int
    payload: bytes


def _ascii(tag: int, text: str) -> _Entry:
    payload = text.encode() + b"\0"
    return _Entry(tag, _ASCII, len(payload), payload)


def _bytes(tag: int, values: Sequence[int]) -> _Entry:
    return _Entry(tag, _BYTE, len(values), bytes(values))


def _shorts(tag: int, *values: int) -> _Entry:
    return _Entry(tag, _SHORT, len(values), struct.pack(f"<{len(values)}H", *values))


def _longs(tag: int, *values: int) -> _Entry:
    return _Entry(tag, _LONG, len(values), struct.pack(f"<{len(values)}I", *values))


def _fraction(value: float, limit: int) -> tuple:
    if math.isinf(value):
        return limit, 1
    bound = max(1, min(1_000_000, int(limit // max(abs(value), 1.0))))
    frac = Fraction(value).limit_denominator(bound)
    return frac.numerator, frac.denominator


def _rationals(tag: int, *values: float) -> _Entry:
    pairs = [n for v in values for n in _fraction(v, 0xFFFFFFFF)]
    return _Entry(tag, _RATIONAL, len(values), struct.pack(f"<{len(pairs)}I", *pairs))


def _srationals(tag: int, *values: float) -> _Entry:
    pairs = [n for v in values for n in _fraction(v, 0x7FFFFFFF)]
    return _Entry(tag, _SRATIONAL, len(values), struct.pack(f"<{len(pairs)}i", *pairs))


def _ifd_bytes(entries: Sequence[_Entry], position: int) -> bytes:
    ordered = sorted(entries, key=lambda e: e.tag)
    external_start = position + 2 + 12 * len(ordered) + 4
    fields = [struct.pack("<H", len(ordered))]
    external = bytearray()
    for entry in ordered:
        if len(entry.payload) <= 4:
            value = entry.payload.ljust(4, b"\0")
        else:
            value = struct.pack("<I", external_start + len(external))
            external += entry.payload
            if len(external) % 2:
                external += b"\0"
        fields.append(struct.pack("<HHI", entry.tag, entry.type, entry.count) + value)
    fields.append(struct.pack("<I", 0))
    return b"".join(fields) + bytes(external)


def _even(n: int) -> int:
    return n + (n & 1)


def _black_levels(fmt: BayerFormat, metadata: Mapping[str, Any]) -> list:
    scale = (1 << fmt.bits) / 65536.0
    levels = [4096 * scale] * 4
    sensor_levels = metadata.get("SensorBlackLevels")
    if sensor_levels is None:
        log.warning("no black level found, using default")
        return levels
    # Metadata levels come as R, Gr, Gb, B; re-order for the actual Bayer order.
    for i in range(4):
        j = fmt.order[i]
        j = 0 if j == 0 else (3 if j == 2 else 1 + bool(fmt.order[i ^ 1]))
        levels[j] = sensor_levels[i] * scale
    return levels


def _thumbnail(values: Sequence[int], stride_pixels: int, info: StreamInfo, bits: int) -> tuple:
    width = info.width >> _THUMB_SHIFT
    height = info.height >> _THUMB_SHIFT
    out = bytearray()
    for y in range(height):
        for x in range(width):
            off = (y * stride_pixels + x) << _THUMB_SHIFT
            grey = (values[off] + values[off + 1] + values[off + stride_pixels]
                    + values[off + stride_pixels + 1])
            grey = (grey << 14) >> bits
            grey = int(math.sqrt(grey)) & 0xFF  # simple gamma correction
            out += bytes((grey, grey, grey))
    return width, height, bytes(out)


def dng_save(mem: Any, info: StreamInfo, metadata: Optional[Mapping[str, Any]],
             filename: str, cam_model: str, roi: Optional[Roi] = None) -> None:
    """Write a raw Bayer buffer to ``filename`` as a DNG with a greyscale thumbnail.

    ``metadata`` may hold SensorBlackLevels, ExposureTime (us), AnalogueGain,
    ColourGains, ColourCorrectionMatrix and LensPosition.
    """
    fmt = bayer_format_for(info.pixel_format)
    log.info("Bayer format is %s", fmt.name)
    metadata = metadata or {}
    roi = roi or Roi()

    stride_pixels = info.width
    padded = (info.width + 7) & ~7
    bytes_per_pixel = fmt.bits / 8.0
    bits_per_pixel = 16
    packed = b""
    if fmt.compressed:
        values = uncompress(mem, info)
        stride_pixels = padded
    elif fmt.packed:
        bits_per_pixel = fmt.bits
        unpack = unpack_10bit if fmt.bits == 10 else unpack_12bit
        packed, values = unpack(mem, info)
    else:
        values = unpack_16bit(mem, info)
    values = list(values)
    values += [0] * (padded * info.height - len(values))

    black_levels = _black_levels(fmt, metadata)

    exposure = metadata.get("ExposureTime")
    if exposure is None:
        exposure = 10000
        log.warning("default to exposure time of %dus", exposure)
    exp_time = exposure / 1e6

    gain = metadata.get("AnalogueGain")
    if gain is None:
        iso = 100
        log.warning("default to ISO value of %d", iso)
    else:
        iso = int(gain * 100.0) & 0xFFFF

    neutral = [1.0, 1.0, 1.0]
    wb_gains = Matrix.diagonal(1, 1, 1)
    colour_gains = metadata.get("ColourGains")
    if colour_gains is not None:
        neutral[0] = 1.0 / colour_gains[0]
        neutral[2] = 1.0 / colour_gains[1]
        wb_gains = Matrix.diagonal(colour_gains[0], 1, colour_gains[1])

    # A plausible default in case the metadata has no colour matrix.
    ccm = Matrix((1.90255, -0.77478, -0.12777,
                  -0.31338, 1.88197, -0.56858,
                  -0.06001, -0.61785, 1.67786))
    if metadata.get("ColourCorrectionMatrix") is not None:
        ccm = Matrix(tuple(metadata["ColourCorrectionMatrix"]))
    else:
        log.warning("no CCM metadata found")

    rgb2xyz = Matrix((0.4124564, 0.3575761, 0.1804375,
                      0.2126729, 0.7151522, 0.0721750,
                      0.0193339, 0.1191920, 0.9503041))
    cam_xyz = (rgb2xyz * ccm * wb_gains).inverse()

    log.debug("Black levels %s, exposure time %sus, ISO %d", black_levels, exp_time * 1e6, iso)
    log.debug("Neutral %s", neutral)
    log.debug("Cam_XYZ: %s", cam_xyz.m)

    thumb_width, thumb_height, thumb_data = _thumbnail(values, stride_pixels, info, fmt.bits)

    start_x = int(info.width * roi.x)
    start_y = int(info.height * roi.y)
    width = int(info.width * roi.width)
    height = int(info.height * roi.height)
    if bits_per_pixel == 10:
        start_x -= start_x % 4  # 4 pixels share 5 bytes
    elif bits_per_pixel == 12:
        start_x -= start_x % 2  # 2 pixels share 3 bytes
    if width == 0:
        width = info.width - start_x
    if height == 0:
        height = info.height
    if start_x + width > info.width:
        width = info.width - start_x
    if start_y + height > info.height:
        height = info.height - start_y
    width, height = max(0, width), max(0, height)

    rows = []
    if bits_per_pixel == 16:
        for y in range(start_y, start_y + height):
            begin = y * stride_pixels + start_x
            rows.append(struct.pack(f"<{width}H", *values[begin:begin + width]))
    else:
        buf8 = bytearray(int(info.width * bytes_per_pixel * info.height))
        buf8[:len(packed)] = packed
        scanline = (width * bits_per_pixel + 7) // 8
        roi_offset = int(start_x * bytes_per_pixel)
        for y in range(start_y, start_y + height):
            begin = int(info.width * bytes_per_pixel * y) + roi_offset
            rows.append(bytes(buf8[begin:begin + scanline]).ljust(scanline, b"\0"))
    main_data = b"".join(rows)

    thumb_offset = 8
    main_offset = _even(thumb_offset + len(thumb_data))
    ifd0_offset = _even(main_offset + len(main_data))

    def ifd0(sub_offset: int, exif_offset: int) -> list:
        return [
            _longs(254, 1),
            _longs(256, thumb_width),
            _longs(257, thumb_height),
            _shorts(258, 8, 8, 8),
            _shorts(259, 1),
            _shorts(262, 2),
            _ascii(271, MAKE),
            _ascii(272, cam_model),
            _longs(273, thumb_offset),
            _shorts(274, 1),
            _shorts(277, 3),
            _longs(278, thumb_height),
            _longs(279, len(thumb_data)),
            _shorts(284, 1),
            _ascii(305, SOFTWARE),
            _longs(330, sub_offset),
            _longs(34665, exif_offset),
            _bytes(50706, (1, 1, 0, 0)),
            _bytes(50707, (1, 0, 0, 0)),
            _ascii(50708, f"{MAKE} {cam_model}"),
            _srationals(50721, *cam_xyz.m),
            _rationals(50728, *neutral),
            _shorts(50778, 21),
        ]

    sub_entries = [
        _longs(254, 0),
        _longs(256, width),
        _longs(257, height),
        _shorts(258, bits_per_pixel),
        _shorts(259, 1),
        _shorts(262, 32803),
        _longs(273, main_offset),
        _shorts(277, 1),
        _longs(278, height),
        _longs(279, len(main_data)),
        _shorts(284, 1),
        _shorts(33421, 2, 2),
        _bytes(33422, fmt.order),
        _shorts(50713, 2, 2),
        _rationals(50714, *black_levels),
        _longs(50717, (1 << fmt.bits) - 1),
    ]

    exif_entries = [
        _ascii(36867, time.strftime("%Y:%m:%d %H:%M:%S", time.localtime())),
        _shorts(34855, iso),
        _rationals(33434, exp_time),
    ]
    lens_position = metadata.get("LensPosition")
    if lens_position is not None:
        distance = 1.0 / lens_position if lens_position > 0.0 else math.inf
        exif_entries.append(_rationals(37382, distance))

    sub_offset = _even(ifd0_offset + len(_ifd_bytes(ifd0(0, 0), 0)))
    sub_bytes = _ifd_bytes(sub_entries, sub_offset)
    exif_offset = _even(sub_offset + len(sub_bytes))
    exif_bytes = _ifd_bytes(exif_entries, exif_offset)
    ifd0_bytes = _ifd_bytes(ifd0(sub_offset, exif_offset), ifd0_offset)

    out = bytearray(b"II*\0" + struct.pack("<I", ifd0_offset))
    for offset, chunk in ((thumb_offset, thumb_data), (main_offset, main_data),
                          (ifd0_offset, ifd0_bytes), (sub_offset, sub_bytes),
                          (exif_offset, exif_bytes)):
        out += bytes(offset - len(out))
        out += chunk

    try:
        with open(filename, "wb") as fp:
            fp.write(out)
    except OSError as err:
        raise OSError(f"could not open file {filename}") from err
    if sys.flags.verbose:
        log.debug("Wrote %d bytes to DNG file", len(out))