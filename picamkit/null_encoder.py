"""An encoder that passes frames through unchanged."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional

from .encoder import Encoder, EncoderOptions
from .formats import StreamInfo

log = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


class NullEncoder(Encoder):
    """Return each input buffer, as is, as its own "encoded" output on a worker thread."""

    def __init__(self, options: EncoderOptions) -> None:
        super().__init__(options)
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._abort = threading.Event()
        self._error: Optional[BaseException] = None
        self._closed = False
        log.debug("Opened NullEncoder")
        self._thread = threading.Thread(target=self._output_thread, daemon=True)
        self._thread.start()

    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        if self._closed:
            raise RuntimeError("encoder is closed")
        self._queue.put((mem, timestamp_us))

    def _output_thread(self) -> None:
        while True:
            try:
                mem, timestamp_us = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._abort.is_set():
                    return
                continue
            try:
                # The input-done callback must run before the output-ready one.
                self.input_done_callback()
                self.output_ready_callback(mem, timestamp_us, True)
            except BaseException as err:
                if self._error is None:
                    self._error = err

    def close(self) -> None:
        """Stop the worker thread and raise any error a callback raised."""
        if self._closed:
            return
        self._closed = True
        self._abort.set()
        self._thread.join()
        log.debug("NullEncoder closed")
        if self._error is not None:
            raise self._error