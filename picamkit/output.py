"""Base class for video stream outputs, with timestamp and metadata recording."""

from __future__ import annotations

import enum
import logging
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Mapping, Optional, TextIO

from .formats import StreamInfo

log = logging.getLogger(__name__)


class Flag(enum.IntFlag):
    """Properties of one encoded buffer handed to an output."""

    NONE = 0
    KEYFRAME = 1
    RESTART = 2


class _State(enum.Enum):
    DISABLED = 0
    WAITING_KEYFRAME = 1
    RUNNING = 2


@dataclass
class OutputOptions:
    """Settings that control where and how encoded video is written."""

    output: str = ""
    save_pts: str = ""
    metadata: str = ""
    metadata_format: str = "json"
    pause: bool = False
    flush: bool = False
    circular: int = 0
    listen: bool = False
    segment: int = 0
    split: bool = False
    codec: str = "h264"
    platform: str = "vc4"


def _value_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:f}"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "[ " + ", ".join(_value_string(v) for v in value) + " ]"
    return str(value)


def start_metadata_output(out: TextIO, fmt: str) -> None:
    """Write whatever must precede the first metadata record."""
    if fmt == "json":
        out.write("[\n")


def write_metadata(out: TextIO, fmt: str, metadata: Mapping[str, Any], first_write: bool) -> None:
    """Write one frame's metadata as ``txt`` lines or as a JSON object."""
    if fmt == "txt":
        for name, value in metadata.items():
            out.write(f"{name}={_value_string(value)}\n")
        out.write("\n")
        return
    if not first_write:
        out.write(",\n")
    out.write("{")
    first_done = False
    for name, value in metadata.items():
        text = _value_string(value)
        quote = '"' if "/" in text else ""
        out.write(("," if first_done else "") + "\n" + f'    "{name}": {quote}{text}{quote}')
        first_done = True
    out.write("\n}")


def stop_metadata_output(out: TextIO, fmt: str) -> None:
    """Write whatever must follow the last metadata record."""
    if fmt == "json":
        out.write("\n]\n")


class Output:
    """An output that accepts encoded buffers; on its own it discards them.

    Subclasses override :meth:`output_buffer` to deliver the data somewhere.
    """

    def __init__(self, options: OutputOptions) -> None:
        self.options = options
        self.stream_info: Optional[StreamInfo] = None
        self._fp_timestamps: Optional[TextIO] = None
        self._state = _State.WAITING_KEYFRAME
        self._enable = not options.pause
        self._time_offset = 0
        self._last_timestamp = 0
        self._metadata_out: Optional[TextIO] = None
        self._metadata_file: Optional[TextIO] = None
        self._metadata_started = False
        self._metadata_queue: Deque[Mapping[str, Any]] = deque()
        self._closed = False

        if options.save_pts:
            try:
                self._fp_timestamps = open(options.save_pts, "w")
            except OSError as err:
                raise OSError(f"Failed to open timestamp file {options.save_pts}") from err
            self._fp_timestamps.write("# timecode format v2\n")

        if options.metadata:
            if options.metadata != "-":
                try:
                    self._metadata_file = open(options.metadata, "w")
                except OSError:
                    if self._fp_timestamps:
                        self._fp_timestamps.close()
                    raise
                self._metadata_out = self._metadata_file
                start_metadata_output(self._metadata_out, options.metadata_format)
            else:
                self._metadata_out = sys.stdout

    def __enter__(self) -> "Output":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def signal(self) -> None:
        """Toggle between paused and running."""
        self._enable = not self._enable

    def output_ready(self, mem: Any, timestamp_us: int, keyframe: bool) -> None:
        """Accept one encoded buffer; after enabling, output waits for a keyframe."""
        flags = Flag.KEYFRAME if keyframe else Flag.NONE
        if not self._enable:
            self._state = _State.DISABLED
        elif self._state == _State.DISABLED:
            self._state = _State.WAITING_KEYFRAME
        if self._state == _State.WAITING_KEYFRAME and keyframe:
            self._state = _State.RUNNING
            flags |= Flag.RESTART
        if self._state != _State.RUNNING:
            return

        # Keep timestamps continuous across a pause.
        if flags & Flag.RESTART:
            self._time_offset = timestamp_us - self._last_timestamp
        self._last_timestamp = timestamp_us - self._time_offset

        self.output_buffer(mem, self._last_timestamp, flags)

        if self._fp_timestamps:
            self.timestamp_ready(self._last_timestamp)

        if self.options.metadata and self._metadata_queue:
            metadata = self._metadata_queue.popleft()
            write_metadata(self._metadata_out, self.options.metadata_format, metadata,
                           not self._metadata_started)
            self._metadata_started = True

    def metadata_ready(self, metadata: Mapping[str, Any]) -> None:
        """Queue one frame's metadata, to be written with its buffer."""
        if not self.options.metadata:
            return
        self._metadata_queue.append(metadata)

    def output_buffer(self, mem: Any, timestamp_us: int, flags: Flag) -> None:
        """Deliver one buffer; the base class outputs nothing."""

    def timestamp_ready(self, timestamp: int) -> None:
        """Record a timestamp (in microseconds) as milliseconds in the timestamp file."""
        sign = "-" if timestamp < 0 else ""
        millis, micros = divmod(abs(timestamp), 1000)
        if sign:
            self._fp_timestamps.write(f"-{millis}.{-micros:03d}\n" if micros else f"-{millis}.000\n")
        else:
            self._fp_timestamps.write(f"{millis}.{micros:03d}\n")
        if self.options.flush:
            self._fp_timestamps.flush()

    def close(self) -> None:
        """Finish the timestamp and metadata files."""
        if self._closed:
            return
        self._closed = True
        if self._fp_timestamps:
            self._fp_timestamps.close()
            self._fp_timestamps = None
        if self.options.metadata and self._metadata_out is not None:
            stop_metadata_output(self._metadata_out, self.options.metadata_format)
            if self._metadata_file is not None:
                self._metadata_file.close()
            else:
                self._metadata_out.flush()