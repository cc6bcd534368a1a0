"""
Frame Provider
==============

OpenCV VideoCapture-backed implementation of the FrameProvider protocol.

Works with camera indices (/dev/videoN), RTSP URIs and video files. A file
or stream that runs out of frames ends the stream; a device that cannot be
opened is a fatal FrameProviderError.
"""

import threading
from typing import Optional, Union

import cv2
import numpy as np

from cupertino_tld.logging_utils import get_component_logger

logger = get_component_logger(__name__, "frame_provider")

SourceSpec = Union[int, str]


class FrameProviderError(RuntimeError):
    """Unrecoverable frame source failure."""
    pass


def parse_source(value: Union[int, str]) -> SourceSpec:
    """
    Normalise a CLI source argument.

    Examples:
        >>> parse_source("0")
        0
        >>> parse_source("rtsp://camera/stream")
        'rtsp://camera/stream'
    """
    if isinstance(value, int):
        return value
    candidate = value.strip()
    if not candidate:
        raise ValueError("source cannot be empty")
    if candidate.isdigit():
        return int(candidate)
    return candidate


class VideoCaptureFrameProvider:
    """
    Blocking frame source backed by cv2.VideoCapture.

    Args:
        source: Camera index, device path, RTSP URI or video file
        width: Requested capture width (cameras only, best effort)
        height: Requested capture height (cameras only, best effort)

    Example:
        >>> provider = VideoCaptureFrameProvider(0, width=1280, height=720)
        >>> provider.open()
        >>> frame = provider.next_frame()
        >>> provider.release(frame)
        >>> provider.close()
    """

    def __init__(self, source: SourceSpec, width: Optional[int] = None, height: Optional[int] = None):
        self.source = source
        self.width = width
        self.height = height
        self._capture = None
        self._outstanding = 0
        self._lock = threading.Lock()

    def open(self) -> None:
        """
        Open the capture device.

        Raises:
            FrameProviderError: If the source cannot be opened
        """
        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            capture.release()
            raise FrameProviderError(f"Unable to open video source {self.source!r}")

        if isinstance(self.source, int):
            if self.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            if self.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(
            f"Video source opened at {actual_width}x{actual_height}",
            extra={
                "event": "source_opened",
                "source": str(self.source),
                "requested_size": [self.width, self.height],
                "actual_size": [actual_width, actual_height],
            },
        )
        self._capture = capture

    def next_frame(self) -> Optional[np.ndarray]:
        """
        Block until the next frame.

        Returns:
            BGR frame, or None when the source is exhausted

        Raises:
            FrameProviderError: If the provider was never opened or was closed
        """
        if self._capture is None:
            raise FrameProviderError("Frame provider is not open")

        ok, frame = self._capture.read()
        if not ok or frame is None:
            logger.info(
                "Video source returned no frame (end of stream)",
                extra={"event": "source_exhausted", "source": str(self.source)},
            )
            return None

        with self._lock:
            self._outstanding += 1
        return frame

    def release(self, frame: np.ndarray) -> None:
        # VideoCapture allocates a fresh array per read; only the accounting matters here
        with self._lock:
            if self._outstanding == 0:
                logger.warning(
                    "release() called with no outstanding frame",
                    extra={"event": "release_unbalanced"},
                )
                return
            self._outstanding -= 1

    @property
    def outstanding_frames(self) -> int:
        with self._lock:
            return self._outstanding

    def close(self) -> None:
        if self._capture is None:
            return
        outstanding = self.outstanding_frames
        if outstanding:
            logger.warning(
                f"Closing video source with {outstanding} frames not released",
                extra={"event": "release_missing", "outstanding_frames": outstanding},
            )
        self._capture.release()
        self._capture = None
        logger.info("Video source closed", extra={"event": "source_closed"})
