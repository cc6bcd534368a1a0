"""
Cupertino TLD - Traffic Light Detector
======================================

Classifies the lamp state of a traffic light in a live video feed and
serves the annotated video as an MJPEG stream.

Usage:
    from cupertino_tld.detector import DetectorConfig, TrafficLightProcessor

    config = DetectorConfig(source="rtsp://camera/stream", port=8080)
    processor = TrafficLightProcessor(config)
    exit_code = processor.run()

    # Stream:  GET  http://127.0.0.1:8080/local/tld/api/stream
    # Upload:  POST http://127.0.0.1:8080/local/tld/api/save_config
"""

__version__ = "0.1.0"
__author__ = "Visiona Team"


# Lazy imports: keeps `import cupertino_tld` free of OpenCV and paho
def __getattr__(name):
    if name in ("DetectorConfig", "TrafficLightProcessor"):
        from cupertino_tld import detector
        return getattr(detector, name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "DetectorConfig",
    "TrafficLightProcessor",
]
