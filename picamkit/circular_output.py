"""Keep recent frames in a ring buffer and write them out when closed."""

from __future__ import annotations

import logging
import struct
import sys
from typing import Any, BinaryIO

from .output import Flag, Output, OutputOptions

log = logging.getLogger(__name__)

# Frames are aligned within the buffer to this many bytes (a power of 2).
ALIGN = 16

# length, keyframe, timestamp; laid out to occupy one aligned unit.
_HEADER = struct.Struct("<I?3xq")


def _aligned(n: int) -> int:
    return (n + ALIGN - 1) & ~(ALIGN - 1)


class CircularBuffer:
    """A fixed-size ring buffer of bytes."""

    def __init__(self, size: int) -> None:
        self.size = size
        self._buf = bytearray(size)
        self._rptr = 0
        self._wptr = 0

    def empty(self) -> bool:
        return self._rptr == self._wptr

    def available(self) -> int:
        if self._wptr == self._rptr:
            return self.size - 1
        return (self.size - self._wptr + self._rptr) % self.size - 1

    def skip(self, n: int) -> None:
        self._rptr = (self._rptr + n) % self.size

    def read(self, n: int) -> bytes:
        """Remove and return the next ``n`` bytes."""
        parts = []
        if self._rptr + n >= self.size:
            first = self.size - self._rptr
            parts.append(bytes(self._buf[self._rptr:]))
            n -= first
            self._rptr = 0
        parts.append(bytes(self._buf[self._rptr:self._rptr + n]))
        self._rptr += n
        return b"".join(parts)

    def pad(self, n: int) -> None:
        self._wptr = (self._wptr + n) % self.size

    def write(self, data: Any) -> None:
        view = memoryview(data).cast("B")
        if len(view) >= self.size:
            raise ValueError("data larger than circular buffer")
        if self._wptr + len(view) >= self.size:
            first = self.size - self._wptr
            self._buf[self._wptr:] = view[:first]
            view = view[first:]
            self._wptr = 0
        self._buf[self._wptr:self._wptr + len(view)] = view
        self._wptr += len(view)


class CircularOutput(Output):
    """Write frames to a ring buffer of ``options.circular`` megabytes; save on close.

    Saved output starts at the first keyframe still in the buffer.
    """

    def __init__(self, options: OutputOptions) -> None:
        super().__init__(options)
        self._cb = CircularBuffer(options.circular << 20)
        self._fp: BinaryIO
        if options.output == "-":
            self._fp = sys.stdout.buffer
        elif options.output:
            try:
                self._fp = open(options.output, "wb")
            except OSError as err:
                super().close()
                raise OSError("could not open output file") from err
        else:
            super().close()
            raise OSError("could not open output file")
        self._dumped = False

    def output_buffer(self, mem: Any, timestamp_us: int, flags: Flag) -> None:
        data = memoryview(mem).cast("B")
        size = len(data)
        pad = (ALIGN - size) & (ALIGN - 1)
        while size + pad + _HEADER.size > self._cb.available():
            if self._cb.empty():
                raise RuntimeError("circular buffer too small")
            length, _, _ = _HEADER.unpack(self._cb.read(_HEADER.size))
            self._cb.skip(_aligned(length))
        self._cb.write(_HEADER.pack(size, bool(flags & Flag.KEYFRAME), timestamp_us))
        self._cb.write(data)
        self._cb.pad(pad)

    def timestamp_ready(self, timestamp: int) -> None:
        # Timestamps are only written for the frames saved at the end.
        pass

    def close(self) -> None:
        if self._dumped:
            return
        self._dumped = True
        total = frames = 0
        seen_keyframe = False
        while not self._cb.empty():
            length, keyframe, timestamp = _HEADER.unpack(self._cb.read(_HEADER.size))
            seen_keyframe |= keyframe
            if seen_keyframe:
                self._fp.write(self._cb.read(length))
                self._cb.skip((ALIGN - length) & (ALIGN - 1))
                total += length
                if self._fp_timestamps:
                    Output.timestamp_ready(self, timestamp)
                frames += 1
            else:
                self._cb.skip(_aligned(length))
        if self._fp is sys.stdout.buffer:
            self._fp.flush()
        else:
            self._fp.close()
        log.info("Wrote %d bytes (%d frames)", total, frames)
        super().close()