"""
Detector Configuration
======================

Runtime settings for the traffic light detector process.

Lamp geometry (master region, lamp offsets, threshold) is NOT here: it lives
in the persisted LampConfig document and can change at runtime through the
control endpoint. This dataclass holds what is fixed for the process
lifetime: source, server binding, encoder and marker settings, MQTT.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from cupertino_tld.stream.routes import normalize_prefix


class ConfigValidationError(ValueError):
    """Error in configuration validation."""
    pass


DEFAULT_CONFIG_PATH = "/usr/local/packages/tld/html/config.json"


@dataclass
class DetectorConfig:
    """Configuration for the traffic light detector process"""

    # Frame source
    source: Union[int, str] = 0
    """Camera index, device path, RTSP URI or video file"""

    frame_width: int = 1280
    """Requested capture width (cameras only)"""

    frame_height: int = 720
    """Requested capture height (cameras only)"""

    # Lamp configuration document
    config_path: Optional[str] = DEFAULT_CONFIG_PATH
    """Persisted lamp configuration (None = in-memory only)"""

    # HTTP server
    host: str = "127.0.0.1"
    """Bind address (loopback; a reverse proxy exposes it)"""

    port: int = 8080
    """Bind port"""

    api_prefix: str = "/local/tld/api"
    """Path prefix of every route"""

    # Stream
    jpeg_quality: int = 75
    """JPEG encoder quality (1..100)"""

    frame_interval: float = 0.033
    """Pause between frames on one stream connection (seconds)"""

    no_frame_retry_interval: float = 0.01
    """Pause before retrying when no frame is published yet (seconds)"""

    drain_timeout: float = 2.0
    """Seconds to let open connections finish on shutdown before force-closing"""

    # Annotation
    marker_center: Tuple[int, int] = (30, 30)
    """State marker position in frame pixels"""

    marker_radius: int = 20
    """State marker radius in pixels"""

    annotate_regions: bool = True
    """Outline master region and lamp disks on the stream (calibration aid)"""

    # MQTT lamp-state publishing (optional)
    enable_state_publishing: bool = False
    """Publish lamp state changes to MQTT"""

    mqtt_host: str = "localhost"
    """MQTT broker hostname"""

    mqtt_port: int = 1883
    """MQTT broker port"""

    mqtt_username: Optional[str] = None
    """MQTT broker username (optional)"""

    mqtt_password: Optional[str] = None
    """MQTT broker password (optional)"""

    state_topic: str = "tld/state"
    """Topic prefix for lamp state events ({state_topic}/{instance_id})"""

    # Instance Identification
    instance_id: str = field(default_factory=lambda: f"tld-{uuid.uuid4().hex[:8]}")
    """Unique instance identifier (default: auto-generated tld-{random})"""

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate configuration values.

        Raises:
            ConfigValidationError: If any validation fails
        """
        if isinstance(self.source, str) and not self.source.strip():
            raise ConfigValidationError("source cannot be empty")

        if self.frame_width <= 0 or self.frame_height <= 0:
            raise ConfigValidationError(
                f"frame size must be > 0, got {self.frame_width}x{self.frame_height}"
            )

        if not (0 <= self.port <= 65535):
            raise ConfigValidationError(f"Invalid port: {self.port}")

        if not (1 <= self.mqtt_port <= 65535):
            raise ConfigValidationError(f"Invalid MQTT port: {self.mqtt_port}")

        if not (1 <= self.jpeg_quality <= 100):
            raise ConfigValidationError(
                f"jpeg_quality must be between 1 and 100, got {self.jpeg_quality}"
            )

        if self.frame_interval < 0:
            raise ConfigValidationError(f"frame_interval cannot be negative, got {self.frame_interval}")

        if self.no_frame_retry_interval <= 0:
            raise ConfigValidationError(
                f"no_frame_retry_interval must be > 0, got {self.no_frame_retry_interval}"
            )

        if self.drain_timeout < 0:
            raise ConfigValidationError(f"drain_timeout cannot be negative, got {self.drain_timeout}")

        if self.marker_radius <= 0:
            raise ConfigValidationError(f"marker_radius must be > 0, got {self.marker_radius}")

        if len(self.marker_center) != 2:
            raise ConfigValidationError(f"marker_center must be (x, y), got {self.marker_center}")

        if not self.api_prefix.startswith("/"):
            raise ConfigValidationError(f"api_prefix must start with '/', got {self.api_prefix!r}")

        if not self.instance_id:
            raise ConfigValidationError("instance_id cannot be empty")

    # ========================================================================
    # Behavior
    # ========================================================================

    @property
    def stream_path(self) -> str:
        """
        Example:
            >>> DetectorConfig().stream_path
            '/local/tld/api/stream'
        """
        return f"{normalize_prefix(self.api_prefix)}/stream"

    def to_status_dict(self) -> dict:
        """
        Serialize config for status output.

        Omits sensitive data (MQTT credentials).
        """
        return {
            "instance_id": self.instance_id,
            "source": self.source,
            "frame_size": [self.frame_width, self.frame_height],
            "config_path": self.config_path,
            "host": self.host,
            "port": self.port,
            "api_prefix": self.api_prefix,
            "jpeg_quality": self.jpeg_quality,
            "frame_interval": self.frame_interval,
            "annotate_regions": self.annotate_regions,
            "enable_state_publishing": self.enable_state_publishing,
            "state_topic": self.state_topic,
        }
