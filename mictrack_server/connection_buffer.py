"""
Per-connection frame reassembly

TCP hands us arbitrary slices of the byte stream: one read may hold part of
a message, exactly one, or several queued messages back-to-back.
"""
from typing import Iterator
import logging

from .protocols.mictrack import FRAME_TERMINATOR, LINE_ENDING

logger = logging.getLogger(__name__)

MAX_BUFFER_SIZE = 8192  # Maximum bytes retained per connection without a terminator

_BLANK_LINE = LINE_ENDING.encode("ascii")


class BufferOverflowError(Exception):
    """Raised when a connection sends more than the buffer limit without completing a frame"""

    def __init__(self, remote_address: str, size: int, max_size: int):
        super().__init__(
            f"Message from {remote_address} exceeds {max_size} byte limit ({size} bytes buffered without a terminator)."
        )
        self.remote_address = remote_address
        self.size = size
        self.max_size = max_size


class ConnectionBuffer:
    """
    Accumulates received bytes for a single connection and extracts
    complete frames. Owned by exactly one connection; not thread-safe.
    """

    def __init__(self, remote_address: str, max_size: int = MAX_BUFFER_SIZE,
                 terminator: bytes = FRAME_TERMINATOR):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, not {max_size}")
        # Captured at accept time, the socket may not be able to tell us later
        self.remote_address = remote_address
        self.max_size = max_size
        self.terminator = terminator
        self.buffer = b""
        self.frames_extracted = 0

    @property
    def pending(self) -> int:
        """Number of bytes held that are not yet part of a complete frame"""
        return len(self.buffer)

    def feed(self, data: bytes) -> Iterator[bytes]:
        """
        Append newly received bytes and yield every complete frame now available.

        Frames are yielded lazily, in arrival order, each including its
        terminator. Raises BufferOverflowError once all complete frames
        have been yielded if the remainder still exceeds the limit.
        """
        self.buffer += data

        while True:
            self._skip_blank_lines()
            pos = self.buffer.find(self.terminator)
            if pos == -1:
                break

            end = pos + len(self.terminator)
            frame = self.buffer[:end]
            self.buffer = self.buffer[end:]
            self.frames_extracted += 1
            yield frame

        if len(self.buffer) > self.max_size:
            raise BufferOverflowError(self.remote_address, len(self.buffer), self.max_size)

    def _skip_blank_lines(self):
        # The wire grammar closes each frame with an empty line after the terminator
        while self.buffer.startswith(_BLANK_LINE):
            self.buffer = self.buffer[len(_BLANK_LINE):]

    def clear(self) -> bytes:
        """Discard and return whatever partial frame is held"""
        self._skip_blank_lines()
        remainder, self.buffer = self.buffer, b""
        return remainder
