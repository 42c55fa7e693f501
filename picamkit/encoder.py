"""Base class for video encoders that run on worker threads."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Callable

from .formats import StreamInfo

InputDoneCallback = Callable[[], None]
OutputReadyCallback = Callable[[Any, int, bool], None]


def _ignore_input_done() -> None:
    pass


def _ignore_output_ready(mem: Any, timestamp_us: int, keyframe: bool) -> None:
    pass


@dataclass
class EncoderOptions:
    """Settings that select and configure a video encoder."""

    codec: str = "h264"
    quality: int = 50
    platform: str = "vc4"


class Encoder(abc.ABC):
    """An encoder that takes frames and hands encoded buffers back through callbacks.

    ``input_done_callback()`` is called once the encoder has finished with an input
    buffer, so the caller may reuse it. ``output_ready_callback(mem, timestamp_us,
    keyframe)`` is called with each encoded buffer; the callee must not keep ``mem``
    after it returns.
    """

    def __init__(self, options: EncoderOptions) -> None:
        self.options = options
        self.input_done_callback: InputDoneCallback = _ignore_input_done
        self.output_ready_callback: OutputReadyCallback = _ignore_output_ready

    @abc.abstractmethod
    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        """Queue one frame for encoding."""

    def close(self) -> None:
        """Finish all queued work and release resources."""

    def __enter__(self) -> "Encoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()