"""Encode YUV images as JPEG with EXIF data and an embedded thumbnail."""

from __future__ import annotations

import enum
import io
import logging
import re
import struct
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from PIL import Image

from .formats import PixelFormat, StreamInfo, open_output

log = logging.getLogger(__name__)

MAKE = "Raspberry Pi"
SOFTWARE = "rpicam-apps"

_EXIF_HEADER = b"Exif\0\0"
_APP1 = b"\xff\xd8\xff\xe1"
# The whole APP1 segment must stay below 64KiB, so keep thumbnails well under that.
_MAX_THUMB_SIZE = 60000

# EXIF field formats.
_BYTE, _ASCII, _SHORT, _LONG, _RATIONAL = 1, 2, 3, 4, 5
_SBYTE, _UNDEFINED, _SSHORT, _SLONG, _SRATIONAL = 6, 7, 8, 9, 10

_FORMAT_SIZE = {
    _BYTE: 1, _ASCII: 1, _SHORT: 2, _LONG: 4, _RATIONAL: 8,
    _SBYTE: 1, _UNDEFINED: 1, _SSHORT: 2, _SLONG: 4, _SRATIONAL: 8,
}


class ExifIfd(enum.Enum):
    """EXIF image file directories, valued by the names used on the command line."""

    IFD0 = "IFD0"
    IFD1 = "IFD1"
    EXIF = "EXIF"
    GPS = "GPS"
    INTEROPERABILITY = "EINT"


@dataclass(frozen=True)
class JpegOptions:
    """Settings for the main image, its thumbnail and extra EXIF items."""

    quality: int = 93
    restart: int = 0
    exif: Tuple[str, ...] = ()
    thumb_width: int = 320
    thumb_height: int = 240
    thumb_quality: int = 70


@dataclass(frozen=True)
class _Entry:
    format: int
    count: int
    data: bytes


# Known tags: name -> (tag id, format, number of components; 0 means variable).
_TAGS: Dict[str, Tuple[int, int, int]] = {
    "ImageWidth": (0x0100, _SHORT, 1),
    "ImageLength": (0x0101, _SHORT, 1),
    "BitsPerSample": (0x0102, _SHORT, 3),
    "Compression": (0x0103, _SHORT, 1),
    "ImageDescription": (0x010E, _ASCII, 0),
    "Make": (0x010F, _ASCII, 0),
    "Model": (0x0110, _ASCII, 0),
    "Orientation": (0x0112, _SHORT, 1),
    "XResolution": (0x011A, _RATIONAL, 1),
    "YResolution": (0x011B, _RATIONAL, 1),
    "ResolutionUnit": (0x0128, _SHORT, 1),
    "Software": (0x0131, _ASCII, 0),
    "DateTime": (0x0132, _ASCII, 0),
    "Artist": (0x013B, _ASCII, 0),
    "WhitePoint": (0x013E, _RATIONAL, 2),
    "PrimaryChromaticities": (0x013F, _RATIONAL, 6),
    "JPEGInterchangeFormat": (0x0201, _LONG, 1),
    "JPEGInterchangeFormatLength": (0x0202, _LONG, 1),
    "YCbCrCoefficients": (0x0211, _UNDEFINED, 0),
    "YCbCrPositioning": (0x0213, _SHORT, 1),
    "ReferenceBlackWhite": (0x0214, _RATIONAL, 6),
    "Copyright": (0x8298, _ASCII, 0),
    "ExposureTime": (0x829A, _RATIONAL, 1),
    "FNumber": (0x829D, _RATIONAL, 1),
    "ExposureProgram": (0x8822, _SHORT, 1),
    "ISOSpeedRatings": (0x8827, _SHORT, 1),
    "ExifVersion": (0x9000, _UNDEFINED, 4),
    "DateTimeOriginal": (0x9003, _ASCII, 0),
    "DateTimeDigitized": (0x9004, _ASCII, 0),
    "ShutterSpeedValue": (0x9201, _SRATIONAL, 1),
    "ApertureValue": (0x9202, _RATIONAL, 1),
    "BrightnessValue": (0x9203, _SRATIONAL, 1),
    "ExposureBiasValue": (0x9204, _SRATIONAL, 1),
    "MaxApertureValue": (0x9205, _RATIONAL, 1),
    "SubjectDistance": (0x9206, _RATIONAL, 1),
    "MeteringMode": (0x9207, _SHORT, 1),
    "LightSource": (0x9208, _SHORT, 1),
    "Flash": (0x9209, _SHORT, 1),
    "FocalLength": (0x920A, _RATIONAL, 1),
    "SubjectArea": (0x9214, _SHORT, 0),
    "UserComment": (0x9286, _UNDEFINED, 0),
    "ColorSpace": (0xA001, _SHORT, 1),
    "PixelXDimension": (0xA002, _LONG, 1),
    "PixelYDimension": (0xA003, _LONG, 1),
    "ExposureMode": (0xA402, _SHORT, 1),
    "WhiteBalance": (0xA403, _SHORT, 1),
    "DigitalZoomRatio": (0xA404, _RATIONAL, 1),
    "FocalLengthIn35mmFilm": (0xA405, _SHORT, 1),
    "SceneCaptureType": (0xA406, _SHORT, 1),
    "Contrast": (0xA408, _SHORT, 1),
    "Saturation": (0xA409, _SHORT, 1),
    "Sharpness": (0xA40A, _SHORT, 1),
    "ImageUniqueID": (0xA420, _ASCII, 0),
    "LensMake": (0xA433, _ASCII, 0),
    "LensModel": (0xA434, _ASCII, 0),
    "GPSLatitudeRef": (0x0001, _ASCII, 0),
    "GPSLatitude": (0x0002, _RATIONAL, 3),
    "GPSLongitudeRef": (0x0003, _ASCII, 0),
    "GPSLongitude": (0x0004, _RATIONAL, 3),
    "GPSAltitude": (0x0006, _RATIONAL, 1),
    "GPSTimeStamp": (0x0007, _RATIONAL, 3),
    "GPSDateStamp": (0x001D, _ASCII, 0),
}

# Tags whose libexif format is "undefined" but which really hold numbers.
_EXCEPTIONS = {0x0211: (_RATIONAL, 3)}

_ITEM_RE = re.compile(r"([^.]{1,4})\.([^=]{1,127})=")
_INT_RE = re.compile(r"\s*([+-]?\d+)")
_RATIO_RE = re.compile(r"\s*([+-]?\d+)/\s*([+-]?\d+)")


def _signed(value: int, bits: int) -> int:
    half = 1 << (bits - 1)
    return ((value + half) & ((1 << bits) - 1)) - half


def _int_reader(fmt: str, convert: Callable[[int], int], what: str):
    def read(text: str, pos: int) -> Tuple[bytes, int]:
        match = _INT_RE.match(text, pos)
        if not match:
            raise ValueError(f"failed to read EXIF {what}")
        return struct.pack(fmt, convert(int(match.group(1)))), match.end() - pos
    return read


def _ratio_reader(fmt: str, convert: Callable[[int], int], what: str):
    def read(text: str, pos: int) -> Tuple[bytes, int]:
        match = _RATIO_RE.match(text, pos)
        if not match:
            raise ValueError(f"failed to read EXIF {what}")
        num, den = (convert(int(g)) for g in match.groups())
        return struct.pack(fmt, num, den), match.end() - pos
    return read


_READERS = {
    _SHORT: _int_reader("<H", lambda v: v & 0xFFFF, "unsigned short"),
    _SSHORT: _int_reader("<h", lambda v: _signed(v, 16), "signed short"),
    _LONG: _int_reader("<I", lambda v: v & 0xFFFFFFFF, "unsigned long"),
    _SLONG: _int_reader("<i", lambda v: _signed(v, 32), "signed long"),
    _RATIONAL: _ratio_reader("<II", lambda v: v & 0xFFFFFFFF, "unsigned rational"),
    _SRATIONAL: _ratio_reader("<ii", lambda v: _signed(v, 32), "signed rational"),
}


def parse_exif_item(item: str) -> Optional[Tuple[ExifIfd, int, int, int, bytes]]:
    """Parse ``IFD.TagName=value`` into ``(ifd, tag, format, count, data)``.

    Returns None, with a warning, for a tag name that is not known.
    """
    match = _ITEM_RE.match(item)
    if not match:
        raise ValueError("failed to read EXIF IFD and tag")
    ifd_name, tag_name = match.groups()
    try:
        ifd = ExifIfd(ifd_name)
    except ValueError:
        raise ValueError(f"bad IFD name {ifd_name}") from None
    if tag_name not in _TAGS:
        log.warning("no EXIF tag %s found - ignoring", tag_name)
        return None
    tag, fmt, count = _TAGS[tag_name]
    value_start = match.end()

    if fmt == _UNDEFINED:
        if tag in _EXCEPTIONS:
            fmt, count = _EXCEPTIONS[tag]
        else:
            log.warning("format for tag %s undefined - treating as ASCII", tag_name)
            fmt = _ASCII
    if fmt == _ASCII:
        data = item[value_start:].encode()
        return ifd, tag, _ASCII, len(data), data

    reader = _READERS.get(fmt)
    if reader is None:
        raise ValueError(f"unsupported format for EXIF tag {tag_name}")
    if count == 0:
        count = item.count(",", value_start) + 1
    parts = []
    pos = value_start
    for _ in range(count):
        if pos >= len(item):
            raise ValueError(f"too few parameters for EXIF tag {tag_name}")
        data, consumed = reader(item, pos)
        parts.append(data)
        pos += consumed + 1  # allow a comma
    return ifd, tag, fmt, count, b"".join(parts)


def _ascii(text: str) -> _Entry:
    data = text.encode()
    return _Entry(_ASCII, len(data), data)


def _short(value: int) -> _Entry:
    return _Entry(_SHORT, 1, struct.pack("<H", int(value) & 0xFFFF))


def _long(value: int) -> _Entry:
    return _Entry(_LONG, 1, struct.pack("<I", int(value) & 0xFFFFFFFF))


def _rational(num: int, den: int) -> _Entry:
    return _Entry(_RATIONAL, 1, struct.pack("<II", int(num) & 0xFFFFFFFF, int(den) & 0xFFFFFFFF))


def _ifd_block(entries: Mapping[int, _Entry], position: int, next_offset: int) -> bytes:
    ordered = sorted(entries.items())
    external_start = position + 2 + 12 * len(ordered) + 4
    fields = [struct.pack("<H", len(ordered))]
    external = bytearray()
    for tag, entry in ordered:
        if len(entry.data) <= 4:
            value = entry.data.ljust(4, b"\0")
        else:
            value = struct.pack("<I", external_start + len(external))
            external += entry.data
            if len(external) % 2:
                external += b"\0"
        fields.append(struct.pack("<HHI", tag, entry.format, entry.count) + value)
    fields.append(struct.pack("<I", next_offset))
    return b"".join(fields) + bytes(external)


_POINTERS = (
    (ExifIfd.INTEROPERABILITY, ExifIfd.EXIF, 0xA005),
    (ExifIfd.EXIF, ExifIfd.IFD0, 0x8769),
    (ExifIfd.GPS, ExifIfd.IFD0, 0x8825),
)
_IFD_ORDER = (ExifIfd.IFD0, ExifIfd.EXIF, ExifIfd.INTEROPERABILITY, ExifIfd.GPS, ExifIfd.IFD1)


def _save_exif(ifds: Mapping[ExifIfd, Mapping[int, _Entry]]) -> bytes:
    tables = {ifd: dict(entries) for ifd, entries in ifds.items() if entries}
    tables.setdefault(ExifIfd.IFD0, {})
    for child, parent, tag in _POINTERS:
        if child in tables:
            tables.setdefault(parent, {})[tag] = _long(0)
    order = [ifd for ifd in _IFD_ORDER if ifd in tables]

    positions = {}
    pos = 8
    for ifd in order:
        positions[ifd] = pos
        pos += len(_ifd_block(tables[ifd], pos, 0))
    for child, parent, tag in _POINTERS:
        if child in tables:
            tables[parent][tag] = _long(positions[child])

    blocks = []
    for ifd in order:
        following = positions.get(ExifIfd.IFD1, 0) if ifd == ExifIfd.IFD0 else 0
        blocks.append(_ifd_block(tables[ifd], positions[ifd], following))
    return _EXIF_HEADER + b"II*\0" + struct.pack("<I", 8) + b"".join(blocks)


def _take(plane: memoryview, offset: int, length: int) -> bytes:
    data = bytes(plane[offset:offset + length])
    if len(data) != length:
        raise ValueError("image buffer too small")
    return data


def _yuv420_fast(plane: memoryview, info: StreamInfo) -> Tuple[bytes, bytes, bytes, Tuple[int, int]]:
    w, h, stride = info.width, info.height, info.stride
    stride2 = stride // 2
    u_start = stride * h
    v_start = u_start + stride2 * (h // 2)
    cw, ch = (w + 1) // 2, (h + 1) // 2
    last_row = max(h // 2 - 1, 0)

    def chroma(start: int) -> bytes:
        rows = []
        for j in range(ch):
            row = _take(plane, start + min(j, last_row) * stride2, w // 2)
            rows.append(row + row[-1:] * (cw - len(row)))
        return b"".join(rows)

    y = b"".join(_take(plane, j * stride, w) for j in range(h))
    return y, chroma(u_start), chroma(v_start), (cw, ch)


def _resample(plane: memoryview, info: StreamInfo, out_w: int, out_h: int) -> Tuple[bytes, bytes, bytes]:
    stride = info.stride
    h_off = [(i * info.width) // out_w for i in range(out_w)]
    ys, us, vs = bytearray(), bytearray(), bytearray()
    try:
        if info.pixel_format == PixelFormat.YUYV:
            offs = [o * 2 for o in h_off]
            u_offs = [(o & ~3) + 1 for o in offs]
            v_offs = [(o & ~3) + 3 for o in offs]
            for r in range(out_h):
                base = ((r * info.height) // out_h) * stride
                ys += bytes(plane[base + o] for o in offs)
                us += bytes(plane[base + o] for o in u_offs)
                vs += bytes(plane[base + o] for o in v_offs)
        else:
            u_start = stride * info.height
            v_start = u_start + (stride // 2) * (info.height // 2)
            uv_offs = [o // 2 for o in h_off]
            for r in range(out_h):
                base = ((r * info.height) // out_h) * stride
                base_uv = (((r // 2) * info.height) // out_h) * (stride // 2)
                ys += bytes(plane[base + o] for o in h_off)
                us += bytes(plane[u_start + base_uv + o] for o in uv_offs)
                vs += bytes(plane[v_start + base_uv + o] for o in uv_offs)
    except IndexError:
        raise ValueError("image buffer too small") from None
    return bytes(ys), bytes(us), bytes(vs)


def yuv_to_jpeg(mem: Sequence, info: StreamInfo, output_width: int, output_height: int,
                quality: int, restart: int = 0) -> bytes:
    """Encode a YUYV or YUV420 buffer as a JPEG of the given size."""
    if info.pixel_format not in (PixelFormat.YUYV, PixelFormat.YUV420):
        raise ValueError("unsupported YUV format in JPEG encode")
    plane = memoryview(mem[0]).cast("B")
    size = (output_width, output_height)

    if (info.pixel_format == PixelFormat.YUV420
            and info.width == output_width and info.height == output_height):
        y, u, v, chroma_size = _yuv420_fast(plane, info)
        u_img = Image.frombytes("L", chroma_size, u).resize(size, Image.NEAREST)
        v_img = Image.frombytes("L", chroma_size, v).resize(size, Image.NEAREST)
    else:
        y, u, v = _resample(plane, info, output_width, output_height)
        u_img = Image.frombytes("L", size, u)
        v_img = Image.frombytes("L", size, v)
    image = Image.merge("YCbCr", (Image.frombytes("L", size, y), u_img, v_img))

    params: Dict[str, Any] = {"quality": quality, "subsampling": "4:2:0"}
    if restart:
        params["restart_marker_blocks"] = restart
    out = io.BytesIO()
    image.save(out, format="JPEG", **params)
    return out.getvalue()


def create_exif_data(mem: Sequence, info: StreamInfo, metadata: Optional[Mapping[str, Any]],
                     cam_model: str, options: JpegOptions) -> Tuple[bytes, bytes]:
    """Build the EXIF block (starting ``Exif\\0\\0``) and the thumbnail JPEG (empty if none)."""
    metadata = metadata or {}
    ifds: Dict[ExifIfd, Dict[int, _Entry]] = {ifd: {} for ifd in ExifIfd}
    exif = ifds[ExifIfd.EXIF]

    now = time.strftime("%Y:%m:%d %H:%M:%S", time.localtime())
    exif[0x010F] = _ascii(MAKE)
    exif[0x0110] = _ascii(cam_model)
    exif[0x0131] = _ascii(SOFTWARE)
    exif[0x0132] = _ascii(now)
    exif[0x9003] = _ascii(now)
    exif[0x9004] = _ascii(now)

    exposure = metadata.get("ExposureTime")
    if exposure is not None:
        log.debug("Exposure time: %s", exposure)
        exif[0x829A] = _rational(int(exposure), 1000000)
    analogue = metadata.get("AnalogueGain")
    if analogue is not None:
        digital = metadata.get("DigitalGain")
        gain = analogue * (digital if digital is not None else 1.0)
        log.debug("Ag %s Dg %s Total %s", analogue, digital, gain)
        exif[0x8827] = _short(int(100 * gain))
    lens = metadata.get("LensPosition")
    if lens is not None:
        exif[0x9206] = _rational(1000, int(1000.0 * lens))

    for item in options.exif:
        log.debug("Processing EXIF item: %s", item)
        parsed = parse_exif_item(item)
        if parsed is not None:
            ifd, tag, fmt, count, data = parsed
            ifds[ifd][tag] = _Entry(fmt, count, data)

    thumb = b""
    if options.thumb_quality:
        log.debug("Thumbnail dimensions are %d x %d", options.thumb_width, options.thumb_height)
        ifd1 = ifds[ExifIfd.IFD1]
        ifd1[0x0100] = _short(options.thumb_width)
        ifd1[0x0101] = _short(options.thumb_height)
        ifd1[0x0103] = _short(6)
        ifd1[0x0201] = _long(0)
        ifd1[0x0202] = _long(0)
        exif_len = len(_save_exif(ifds))

        quality = options.thumb_quality
        while quality > 0:
            thumb = yuv_to_jpeg(mem, info, options.thumb_width, options.thumb_height, quality, 0)
            if len(thumb) < _MAX_THUMB_SIZE:
                break
            quality -= 5
        log.debug("Thumbnail size %d", len(thumb))
        if quality <= 0:
            raise RuntimeError("failed to make acceptable thumbnail")

        # The thumbnail follows the EXIF block; offsets count from the TIFF header.
        ifd1[0x0201] = _long(exif_len - len(_EXIF_HEADER))
        ifd1[0x0202] = _long(len(thumb))

    return _save_exif(ifds), thumb


def _strip_header(jpeg: bytes) -> bytes:
    """Drop the SOI marker and any JFIF APP0 segments from an encoded JPEG."""
    if jpeg[:2] != b"\xff\xd8":
        raise ValueError("encoder produced invalid JPEG data")
    pos = 2
    while jpeg[pos:pos + 2] == b"\xff\xe0":
        (length,) = struct.unpack_from(">H", jpeg, pos + 2)
        pos += 2 + length
    return jpeg[pos:]


def encode_jpeg(mem: Sequence, info: StreamInfo, metadata: Optional[Mapping[str, Any]],
                cam_model: str, options: JpegOptions) -> bytes:
    """Return a complete JPEG file with EXIF data and (optionally) a thumbnail."""
    if info.width & 1 or info.height & 1:
        raise ValueError("both width and height must be even")
    if len(mem) != 1:
        raise ValueError("only single plane YUV supported")

    exif, thumb = create_exif_data(mem, info, metadata, cam_model, options)
    jpeg = yuv_to_jpeg(mem, info, info.width, info.height, options.quality, options.restart)
    log.debug("JPEG size is %d", len(jpeg))
    log.debug("EXIF data len %d", len(exif))

    segment_length = len(exif) + len(thumb) + 2
    if segment_length > 0xFFFF:
        raise ValueError("EXIF data too large")
    return _APP1 + struct.pack(">H", segment_length) + exif + thumb + _strip_header(jpeg)


def jpeg_save(mem: Sequence, info: StreamInfo, metadata: Optional[Mapping[str, Any]],
              filename: str, cam_model: str, options: JpegOptions) -> None:
    """Write a YUV buffer to ``filename`` as JPEG (``"-"`` for stdout)."""
    data = encode_jpeg(mem, info, metadata, cam_model, options)
    with open_output(filename) as fp:
        fp.write(data)