"""
Traffic Light Processor - Main Orchestrator
===========================================

Wires the detector together and owns the process lifecycle.

Startup order:
1. Config store (persisted document merged over the defaults)
2. Frame provider (open failure is fatal)
3. Optional MQTT client + state sink
4. Stream server (background thread)
5. Classification loop (calling thread, blocks)

Shutdown (end of stream, device error, SIGINT/SIGTERM):
loop stops -> server stops accepting and drains -> MQTT disconnect -> provider closed
"""

import signal
import threading
import time
from typing import Optional

import paho.mqtt.client as mqtt

from cupertino_tld.detector.classifier import FrameClassifier
from cupertino_tld.detector.config import DetectorConfig
from cupertino_tld.detector.frame_provider import (
    FrameProviderError,
    VideoCaptureFrameProvider,
    parse_source,
)
from cupertino_tld.detector.lamp_config import ConfigStore
from cupertino_tld.detector.loop import ClassificationLoop
from cupertino_tld.detector.reload_signal import ReloadSignal
from cupertino_tld.detector.state_sink import MQTTStateSink
from cupertino_tld.interfaces import FrameProvider, MessageBroker
from cupertino_tld.logging_utils import get_component_logger
from cupertino_tld.stream.control import ControlEndpoint
from cupertino_tld.stream.publisher import LatestFramePublisher
from cupertino_tld.stream.server import StreamServer

logger = get_component_logger(__name__, "processor")

EXIT_OK = 0
EXIT_DEVICE_ERROR = 1


class TrafficLightProcessor:
    """
    Main orchestrator for the traffic light detector.

    Args:
        config: DetectorConfig instance
        provider: Frame source (default: VideoCaptureFrameProvider on config.source)
        mqtt_client: MQTT client for state publishing (default: paho client
            created when config.enable_state_publishing is set)
        install_signal_handlers: Register SIGINT/SIGTERM -> terminate()

    Example:
        >>> config = DetectorConfig(source=0, port=8080)
        >>> processor = TrafficLightProcessor(config)
        >>> exit_code = processor.run()   # blocks until end of stream or signal
    """

    def __init__(
        self,
        config: DetectorConfig,
        provider: Optional[FrameProvider] = None,
        mqtt_client: Optional[MessageBroker] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config

        self.provider = provider
        self.mqtt_client = mqtt_client

        # Components (created in start())
        self.store: Optional[ConfigStore] = None
        self.reload_signal = ReloadSignal()
        self.publisher = LatestFramePublisher()
        self.control: Optional[ControlEndpoint] = None
        self.server: Optional[StreamServer] = None
        self.state_sink: Optional[MQTTStateSink] = None
        self.loop: Optional[ClassificationLoop] = None

        self.is_running = False
        self._start_time: Optional[float] = None
        self._cleanup_lock = threading.Lock()
        self._cleaned_up = False

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

    def start(self):
        """
        Build components and start the stream server.

        Raises:
            FrameProviderError: If the frame source cannot be opened
            OSError: If the server cannot bind
        """
        self._start_time = time.time()

        logger.info(
            f"Starting TrafficLightProcessor on source {self.config.source!r}",
            extra={
                "event": "processor_start",
                "instance_id": self.config.instance_id,
                "config": self.config.to_status_dict(),
            },
        )

        # =====================================================================
        # Step 1: Config store
        # =====================================================================
        if self.config.config_path:
            self.store = ConfigStore.from_file(self.config.config_path)
        else:
            self.store = ConfigStore()

        # =====================================================================
        # Step 2: Frame provider
        # =====================================================================
        if self.provider is None:
            provider = VideoCaptureFrameProvider(
                parse_source(self.config.source),
                width=self.config.frame_width,
                height=self.config.frame_height,
            )
            provider.open()
            self.provider = provider

        # =====================================================================
        # Step 3: Optional MQTT state publishing
        # =====================================================================
        if self.config.enable_state_publishing:
            if self.mqtt_client is None:
                self.mqtt_client = self._init_mqtt_client()
            self.state_sink = MQTTStateSink(
                self.mqtt_client,
                instance_id=self.config.instance_id,
                topic_prefix=self.config.state_topic,
            )
            logger.info(
                f"Lamp state publishing to {self.state_sink.topic}",
                extra={"event": "state_sink_created", "topic": self.state_sink.topic},
            )

        # =====================================================================
        # Step 4: Stream server
        # =====================================================================
        self.control = ControlEndpoint(
            self.store, self.reload_signal, config_path=self.config.config_path
        )
        self.server = StreamServer(
            self.publisher,
            self.control,
            host=self.config.host,
            port=self.config.port,
            api_prefix=self.config.api_prefix,
            frame_interval=self.config.frame_interval,
            no_frame_retry_interval=self.config.no_frame_retry_interval,
            drain_timeout=self.config.drain_timeout,
        )
        self.server.start()

        # =====================================================================
        # Step 5: Classification loop (run() drives it)
        # =====================================================================
        self.loop = ClassificationLoop(
            provider=self.provider,
            store=self.store,
            reload_signal=self.reload_signal,
            publisher=self.publisher,
            classifier=FrameClassifier(
                marker_center=self.config.marker_center,
                marker_radius=self.config.marker_radius,
                annotate_regions=self.config.annotate_regions,
            ),
            jpeg_quality=self.config.jpeg_quality,
            state_sink=self.state_sink,
        )

        self.is_running = True
        logger.info("✅ TrafficLightProcessor running", extra={"event": "processor_running"})

    def run(self) -> int:
        """
        Start (if needed) and run the classification loop until it ends.

        Returns:
            EXIT_OK on end of stream or signal, EXIT_DEVICE_ERROR on a fatal
            frame source failure
        """
        exit_code = EXIT_OK
        try:
            if self.loop is None:
                self.start()
            self.loop.run()
        except FrameProviderError as e:
            logger.error(
                f"❌ Frame source failed: {e}",
                extra={"event": "device_error", "error_type": type(e).__name__},
                exc_info=True,
            )
            exit_code = EXIT_DEVICE_ERROR
        finally:
            self._cleanup()

        return exit_code

    def terminate(self):
        """Stop the classification loop after the current cycle."""
        if self.loop is not None:
            self.loop.stop()
        self.is_running = False

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    # ========================================================================
    # Private
    # ========================================================================

    def _init_mqtt_client(self) -> mqtt.Client:
        """Initialize and connect MQTT client"""
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{self.config.instance_id}-state",
        )

        if self.config.mqtt_username:
            client.username_pw_set(self.config.mqtt_username, self.config.mqtt_password)

        logger.info(
            f"Connecting to MQTT broker at {self.config.mqtt_host}:{self.config.mqtt_port}",
            extra={
                "event": "mqtt_connection_start",
                "mqtt_host": self.config.mqtt_host,
                "mqtt_port": self.config.mqtt_port,
            },
        )
        client.connect(self.config.mqtt_host, self.config.mqtt_port)
        client.loop_start()
        return client

    def _cleanup(self):
        """Orderly shutdown; safe to call more than once."""
        with self._cleanup_lock:
            if self._cleaned_up:
                return
            self._cleaned_up = True

        logger.info("Performing shutdown cleanup", extra={"event": "shutdown_cleanup_start"})
        self.is_running = False

        if self.server is not None:
            self.server.stop()

        if self.mqtt_client is not None and self.state_sink is not None:
            self.mqtt_client.disconnect()
            self.mqtt_client.loop_stop()

        if self.provider is not None:
            self.provider.close()

        logger.info(
            "TrafficLightProcessor stopped",
            extra={
                "event": "processor_stopped",
                "frames_processed": self.loop.frames_processed if self.loop else 0,
                "uptime_seconds": round(self.uptime_seconds, 1),
            },
        )

    def _signal_handler(self, signum, frame):
        """Handle termination signals"""
        logger.info(
            f"Received signal {signum}, shutting down...",
            extra={"event": "signal_received", "signal": signum},
        )
        self.terminate()
