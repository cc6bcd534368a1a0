"""
Detector - Lamp State Classification
====================================

Config store, classifier, classification loop and process orchestrator.
"""

from cupertino_tld.detector.classifier import (
    ClassificationError,
    ClassificationResult,
    FrameClassifier,
    FrameEncodingError,
    LampState,
    encode_jpeg,
)
from cupertino_tld.detector.config import ConfigValidationError, DetectorConfig
from cupertino_tld.detector.frame_provider import FrameProviderError, VideoCaptureFrameProvider
from cupertino_tld.detector.lamp_config import (
    DEFAULT_LAMP_CONFIG,
    ConfigStore,
    LampConfig,
    LampPosition,
)
from cupertino_tld.detector.loop import ClassificationLoop
from cupertino_tld.detector.reload_signal import ReloadSignal
from cupertino_tld.detector.state_sink import MQTTStateSink
from cupertino_tld.detector.validators import InvalidConfig


# The processor imports the stream package, which imports back into this one
def __getattr__(name):
    if name == "TrafficLightProcessor":
        from cupertino_tld.detector.processor import TrafficLightProcessor
        return TrafficLightProcessor
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "ClassificationError",
    "ClassificationLoop",
    "ClassificationResult",
    "ConfigStore",
    "ConfigValidationError",
    "DEFAULT_LAMP_CONFIG",
    "DetectorConfig",
    "FrameClassifier",
    "FrameEncodingError",
    "FrameProviderError",
    "InvalidConfig",
    "LampConfig",
    "LampPosition",
    "LampState",
    "MQTTStateSink",
    "ReloadSignal",
    "TrafficLightProcessor",
    "VideoCaptureFrameProvider",
    "encode_jpeg",
]
