"""Motion-JPEG encoder using a pool of worker threads."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Dict, Optional, Union

from .encoder import Encoder, EncoderOptions
from .formats import StreamInfo
from .jpeg import yuv_to_jpeg

log = logging.getLogger(__name__)

# Whichever thread is idle picks up the next frame.
NUM_ENC_THREADS = 4

_POLL_SECONDS = 0.2


class MjpegEncoder(Encoder):
    """Encode each YUV frame as a JPEG; outputs come back in input order, all keyframes."""

    def __init__(self, options: EncoderOptions) -> None:
        super().__init__(options)
        self._encode_queue: "queue.Queue[tuple]" = queue.Queue()
        self._index = 0
        self._index_lock = threading.Lock()
        self._results: Dict[int, Union[tuple, BaseException]] = {}
        self._output_cond = threading.Condition()
        self._abort_encode = threading.Event()
        self._abort_output = False
        self._error: Optional[BaseException] = None
        self._closed = False

        self._output_thread = threading.Thread(target=self._output_loop, daemon=True)
        self._output_thread.start()
        self._encode_threads = [
            threading.Thread(target=self._encode_loop, daemon=True) for _ in range(NUM_ENC_THREADS)
        ]
        for thread in self._encode_threads:
            thread.start()
        log.debug("Opened MjpegEncoder")

    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        if self._closed:
            raise RuntimeError("encoder is closed")
        with self._index_lock:
            index = self._index
            self._index += 1
            self._encode_queue.put((mem, info, timestamp_us, index))

    def _encode_loop(self) -> None:
        frames = 0
        encode_time = 0.0
        while True:
            try:
                mem, info, timestamp_us, index = self._encode_queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._abort_encode.is_set():
                    if frames:
                        log.debug("Encode %d frames, average time %fms",
                                  frames, encode_time * 1000 / frames)
                    return
                continue
            start = time.perf_counter()
            try:
                result: Union[tuple, BaseException] = (
                    yuv_to_jpeg([mem], info, info.width, info.height, self.options.quality, 0),
                    timestamp_us,
                )
            except Exception as err:
                result = err
            encode_time += time.perf_counter() - start
            frames += 1
            with self._output_cond:
                self._results[index] = result
                self._output_cond.notify_all()

    def _output_loop(self) -> None:
        index = 0
        while True:
            with self._output_cond:
                while index not in self._results:
                    if self._abort_output and not self._results:
                        return
                    self._output_cond.wait(_POLL_SECONDS)
                result = self._results.pop(index)
            index += 1
            try:
                self.input_done_callback()
                if isinstance(result, BaseException):
                    raise result
                data, timestamp_us = result
                self.output_ready_callback(data, timestamp_us, True)
            except BaseException as err:
                if self._error is None:
                    self._error = err

    def close(self) -> None:
        """Finish pending frames, stop the threads and raise any error seen."""
        if self._closed:
            return
        self._closed = True
        self._abort_encode.set()
        for thread in self._encode_threads:
            thread.join()
        with self._output_cond:
            self._abort_output = True
            self._output_cond.notify_all()
        self._output_thread.join()
        log.debug("MjpegEncoder closed")
        if self._error is not None:
            raise self._error