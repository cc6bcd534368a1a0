"""
Interfaces for Dependency Injection
====================================

Protocols (interfaces) for the collaborators the detector consumes.

This allows:
- Testing with fake implementations (no camera, no MQTT broker needed)
- Swapping implementations (VideoCapture today, a vendor SDK tomorrow)
- Clear contracts (documented interface methods)
"""

from typing import Any, Optional, Protocol

import numpy as np


class FrameProvider(Protocol):
    """
    Protocol for the raw frame source.

    Concrete implementation: VideoCaptureFrameProvider (OpenCV)
    Test implementation: FakeFrameProvider (see tests/unit/test_classification_loop.py)

    Contract:
        Every frame obtained from next_frame() must be handed back through
        release() exactly once, after its data is no longer needed. Providers
        backed by a fixed buffer pool stall when frames are not released.
    """

    def next_frame(self) -> Optional[np.ndarray]:
        """
        Block until the next frame is available.

        Returns:
            Frame as numpy array (HxWx3 BGR or HxW luminance),
            or None when the source has no more frames (end of stream).

        Raises:
            FrameProviderError: Unrecoverable device failure
        """
        ...

    def release(self, frame: np.ndarray) -> None:
        """Return a frame to the provider so its buffer can be reused."""
        ...

    def close(self) -> None:
        """Release the underlying device."""
        ...


class MessageBroker(Protocol):
    """
    Protocol for MQTT-like message broker.

    Concrete implementation: paho.mqtt.Client
    Test implementation: FakeMessageBroker (see tests/unit/test_state_sink.py)
    """

    def publish(
        self, topic: str, payload: str, qos: int = 0, retain: bool = False
    ) -> Any:
        """
        Publish message to topic.

        Returns:
            MQTTMessageInfo or equivalent (result.rc == 0 for success)
        """
        ...

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        """Connect to broker."""
        ...

    def disconnect(self) -> None:
        """Disconnect from broker."""
        ...

    def loop_start(self) -> None:
        """Start background network loop (threaded)."""
        ...

    def loop_stop(self) -> None:
        """Stop background network loop."""
        ...
