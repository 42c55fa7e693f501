"""Choose the encoder implementation that suits the options."""

from __future__ import annotations

from .encoder import Encoder, EncoderOptions
from .formats import StreamInfo
from .mjpeg_encoder import MjpegEncoder
from .null_encoder import NullEncoder


def create_encoder(options: EncoderOptions, info: StreamInfo) -> Encoder:
    """Return an encoder for ``options.codec`` (compared without regard to case).

    ``yuv420`` passes frames through and ``mjpeg`` encodes JPEGs. No H.264 codec
    is available here, and any other name is rejected.
    """
    codec = options.codec.lower()
    if codec == "yuv420":
        return NullEncoder(options)
    if codec == "h264":
        raise RuntimeError("Unable to find an appropriate H.264 codec")
    if codec == "mjpeg":
        return MjpegEncoder(options)
    raise ValueError(f"Unrecognised codec {options.codec}")