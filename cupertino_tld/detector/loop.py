"""
Classification Loop
===================

The driving loop. One dedicated thread runs it; it suspends only while
waiting for the next frame from the provider.

Cycle:
    reload.consume() -> store.snapshot() -> provider.next_frame()
    -> classify -> encode_jpeg -> publisher.publish -> state_sink(result)
    -> provider.release(frame)

The snapshot is taken every cycle, whether or not a reload was signalled,
so one cycle always works from a single consistent LampConfig.
A frame the classifier rejects is released and skipped; only end of stream
or a FrameProviderError ends the loop.
"""

import threading
import time
from typing import Callable, Optional

from cupertino_tld.detector.classifier import (
    ClassificationError,
    ClassificationResult,
    FrameClassifier,
    FrameEncodingError,
    encode_jpeg,
)
from cupertino_tld.detector.lamp_config import ConfigStore
from cupertino_tld.detector.reload_signal import ReloadSignal
from cupertino_tld.interfaces import FrameProvider
from cupertino_tld.logging_utils import get_component_logger
from cupertino_tld.stream.publisher import LatestFramePublisher

logger = get_component_logger(__name__, "classification_loop")

StateSink = Callable[[ClassificationResult], None]


class ClassificationLoop:
    """
    Pulls frames, classifies them and publishes the annotated JPEG.

    Args:
        provider: Blocking frame source (release() is called exactly once per frame)
        store: ConfigStore read once per cycle
        reload_signal: Flag consumed at the top of every cycle
        publisher: Latest-frame slot for the stream server
        classifier: FrameClassifier (default: FrameClassifier())
        jpeg_quality: Encoder quality 1..100
        state_sink: Optional callable receiving every ClassificationResult

    Example:
        >>> loop = ClassificationLoop(provider, store, signal, publisher)
        >>> loop.run()          # returns at end of stream or after stop()
        >>> loop.frames_processed
        1500
    """

    def __init__(
        self,
        provider: FrameProvider,
        store: ConfigStore,
        reload_signal: ReloadSignal,
        publisher: LatestFramePublisher,
        classifier: Optional[FrameClassifier] = None,
        jpeg_quality: int = 75,
        state_sink: Optional[StateSink] = None,
    ):
        self.provider = provider
        self.store = store
        self.reload_signal = reload_signal
        self.publisher = publisher
        self.classifier = classifier or FrameClassifier()
        self.jpeg_quality = jpeg_quality
        self.state_sink = state_sink

        self.frames_processed = 0
        self.reloads_applied = 0
        self.encode_failures = 0
        self.classify_failures = 0
        self.last_result: Optional[ClassificationResult] = None

        self._stop_requested = threading.Event()

    def stop(self):
        """Request termination after the current cycle."""
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def run(self) -> int:
        """
        Run until end of stream or stop().

        Returns:
            Number of frames processed

        Raises:
            FrameProviderError: Unrecoverable frame source failure
        """
        started = time.monotonic()
        logger.info("Classification loop started", extra={"event": "loop_started"})

        while not self._stop_requested.is_set():
            if not self.run_once():
                break

        elapsed = time.monotonic() - started
        logger.info(
            f"Classification loop finished after {self.frames_processed} frames",
            extra={
                "event": "loop_finished",
                "frames_processed": self.frames_processed,
                "reloads_applied": self.reloads_applied,
                "classify_failures": self.classify_failures,
                "encode_failures": self.encode_failures,
                "elapsed_seconds": round(elapsed, 3),
                "stop_requested": self.stop_requested,
            },
        )
        return self.frames_processed

    def run_once(self) -> bool:
        """
        One cycle.

        Returns:
            False when the provider signalled end of stream, True otherwise
        """
        if self.reload_signal.consume():
            self.reloads_applied += 1
            logger.info(
                "Configuration reloaded",
                extra={"event": "config_reloaded", "config": self.store.snapshot().to_document()},
            )

        config = self.store.snapshot()

        frame = self.provider.next_frame()
        if frame is None:
            logger.info("End of stream", extra={"event": "end_of_stream"})
            return False

        try:
            outcome = self._classify(frame, config)
            if outcome is not None:
                result, annotated = outcome
                self._publish(annotated)
                self.last_result = result
                self.frames_processed += 1
                if self.state_sink is not None:
                    self.state_sink(result)
        finally:
            self.provider.release(frame)

        return True

    def _classify(self, frame, config):
        try:
            return self.classifier.classify(frame, config)
        except ClassificationError as e:
            # Stream clients keep the previous frame
            self.classify_failures += 1
            logger.error(
                f"Skipping frame: {e}",
                extra={"event": "classify_failed", "classify_failures": self.classify_failures},
            )
            return None

    def _publish(self, annotated):
        try:
            payload = encode_jpeg(annotated, self.jpeg_quality)
        except FrameEncodingError as e:
            # Stream clients keep the previous frame
            self.encode_failures += 1
            logger.error(
                f"Dropping frame: {e}",
                extra={"event": "encode_failed", "encode_failures": self.encode_failures},
            )
            return
        self.publisher.publish(payload)
