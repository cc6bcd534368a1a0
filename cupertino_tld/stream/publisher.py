"""
Latest-Frame Publisher
======================

Single-slot, overwrite-on-write buffer holding the most recent JPEG.

One writer (the classification loop), any number of readers (one per stream
client). The lock guards only the slot swap: the writer never waits for a
reader to finish sending, and a reader always gets one whole frame.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Union

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class PublishedFrame:
    """Encoded frame plus its position in the publish sequence"""

    data: bytes
    version: int

    def __len__(self) -> int:
        return len(self.data)


class LatestFramePublisher:
    """
    Thread-safe latest-frame slot.

    publish() copies the payload into an immutable bytes object and swaps it
    in; read_copy() hands out that immutable object. Since nobody can mutate
    a published frame, readers keep a consistent frame even after the slot
    has been overwritten many times.

    Example:
        >>> publisher = LatestFramePublisher()
        >>> publisher.read_copy() is None
        True
        >>> publisher.publish(b"\\xff\\xd8...")
        1
        >>> publisher.read_copy().version
        1
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._frame: Optional[PublishedFrame] = None
        self._version = 0

    def publish(self, data: BytesLike) -> int:
        """
        Replace the held frame.

        Returns:
            Version number assigned to this frame
        """
        # Copy outside the lock: it's the only O(n) step
        payload = bytes(data)
        with self._lock:
            self._version += 1
            self._frame = PublishedFrame(data=payload, version=self._version)
            return self._version

    def read_copy(self) -> Optional[PublishedFrame]:
        """
        Current frame, or None if nothing has been published yet.
        """
        with self._lock:
            return self._frame

    @property
    def version(self) -> int:
        """Version of the latest frame (0 = nothing published)."""
        with self._lock:
            return self._version
