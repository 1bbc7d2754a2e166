"""In-process byte channel between the capture process and its consumers."""

import io
import logging
import threading
from collections import deque
from typing import Deque, Optional

logger = logging.getLogger(__name__)


class PassThroughStream(io.RawIOBase):
    """Readable stream fed by the capture reader thread.

    The producer calls ``feed``, ``end`` and ``fail``; it never blocks.
    Consumers use the normal file API: ``read`` blocks until data arrives,
    returns ``b""`` once the stream has ended and drained, and raises
    ``OSError`` if the producer failed.
    """

    def __init__(self):
        super().__init__()
        self._chunks: Deque[bytes] = deque()
        self._cond = threading.Condition()
        self._ended = False
        self._error: Optional[BaseException] = None
        self.bytes_fed = 0

    # Producer side

    def feed(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._cond:
            if self._ended:
                logger.debug(f"Dropping {len(chunk)} bytes fed after end of stream")
                return
            self._chunks.append(bytes(chunk))
            self.bytes_fed += len(chunk)
            self._cond.notify_all()

    def end(self) -> None:
        with self._cond:
            self._ended = True
            self._cond.notify_all()

    def fail(self, error: BaseException) -> None:
        with self._cond:
            if self._error is None:
                self._error = error
            self._ended = True
            self._cond.notify_all()

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    # Consumer side

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        with self._cond:
            while not self._chunks and not self._ended:
                self._cond.wait()

            if not self._chunks:
                if self._error is not None:
                    raise OSError(f"Audio stream failed: {self._error}") from self._error
                return 0

            written = 0
            while self._chunks and written < len(view):
                chunk = self._chunks[0]
                size = min(len(chunk), len(view) - written)
                view[written:written + size] = chunk[:size]
                written += size
                if size == len(chunk):
                    self._chunks.popleft()
                else:
                    self._chunks[0] = chunk[size:]
            return written

    def close(self) -> None:
        self.end()
        super().close()
