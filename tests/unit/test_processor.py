"""
Unit tests for TrafficLightProcessor lifecycle

Runs the whole detector (store, loop, publisher, HTTP server) against a
fake frame provider and a fake MQTT broker. The server binds an ephemeral
port on loopback.
"""

import json
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pytest

from cupertino_tld.detector.config import DetectorConfig
from cupertino_tld.detector.frame_provider import FrameProviderError
from cupertino_tld.detector.lamp_config import DEFAULT_LAMP_CONFIG
from cupertino_tld.detector.processor import EXIT_DEVICE_ERROR, EXIT_OK, TrafficLightProcessor


class FakeFrameProvider:
    def __init__(self, count: int, fail_after: Optional[int] = None):
        self.remaining = count
        self.fail_after = fail_after
        self.handed_out = 0
        self.released = 0
        self.closed = False

    def next_frame(self) -> Optional[np.ndarray]:
        if self.fail_after is not None and self.handed_out >= self.fail_after:
            raise FrameProviderError("device unplugged")
        if self.remaining == 0:
            return None
        self.remaining -= 1
        self.handed_out += 1
        return np.zeros((720, 1280, 3), dtype=np.uint8)

    def release(self, frame: np.ndarray) -> None:
        self.released += 1

    def close(self) -> None:
        self.closed = True


@dataclass
class FakePublishResult:
    rc: int


class FakeMessageBroker:
    def __init__(self):
        self.published: List[tuple] = []
        self.connected = True
        self.loop_running = True

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return FakePublishResult(rc=0)

    def connect(self, host, port, keepalive=60):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def loop_start(self):
        self.loop_running = True

    def loop_stop(self):
        self.loop_running = False


@pytest.fixture
def config(tmp_path):
    return DetectorConfig(
        port=0,
        config_path=str(tmp_path / "config.json"),
        drain_timeout=0.5,
        instance_id="tld-test",
    )


class TestTrafficLightProcessor:
    def test_end_of_stream_exits_cleanly(self, config):
        provider = FakeFrameProvider(count=3)
        processor = TrafficLightProcessor(config, provider=provider, install_signal_handlers=False)

        assert processor.run() == EXIT_OK

        assert processor.loop.frames_processed == 3
        assert processor.publisher.version == 3
        assert provider.released == 3
        assert provider.closed
        assert processor.server.open_connections == 0
        assert not processor.is_running

    def test_device_error_exits_with_error_code(self, config):
        provider = FakeFrameProvider(count=5, fail_after=1)
        processor = TrafficLightProcessor(config, provider=provider, install_signal_handlers=False)

        assert processor.run() == EXIT_DEVICE_ERROR
        assert provider.released == 1
        assert provider.closed

    def test_loads_persisted_config(self, config, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"min_brightness_threshold": 150}))
        processor = TrafficLightProcessor(
            config, provider=FakeFrameProvider(count=0), install_signal_handlers=False
        )

        processor.run()

        assert processor.store.snapshot().min_brightness_threshold == 150
        assert processor.store.snapshot().lamp_radius == DEFAULT_LAMP_CONFIG.lamp_radius

    def test_memory_only_config(self, tmp_path):
        config = DetectorConfig(port=0, config_path=None, drain_timeout=0.5)
        processor = TrafficLightProcessor(
            config, provider=FakeFrameProvider(count=1), install_signal_handlers=False
        )

        assert processor.run() == EXIT_OK
        assert processor.control.config_path is None

    def test_state_publishing(self, tmp_path):
        config = DetectorConfig(
            port=0,
            config_path=None,
            drain_timeout=0.5,
            instance_id="tld-test",
            enable_state_publishing=True,
        )
        broker = FakeMessageBroker()
        processor = TrafficLightProcessor(
            config,
            provider=FakeFrameProvider(count=4),
            mqtt_client=broker,
            install_signal_handlers=False,
        )

        processor.run()

        # Dark frames: one UNKNOWN transition, then steady
        assert len(broker.published) == 1
        topic, payload, _, _ = broker.published[0]
        assert topic == "tld/state/tld-test"
        assert json.loads(payload)["state"] == "UNKNOWN"
        assert not broker.connected
        assert not broker.loop_running

    def test_terminate_stops_loop(self, config):
        processor = TrafficLightProcessor(
            config, provider=FakeFrameProvider(count=1000), install_signal_handlers=False
        )
        processor.start()
        processor.terminate()

        assert processor.run() == EXIT_OK
        assert processor.loop.frames_processed == 0

    def test_signal_handler_terminates(self, config):
        processor = TrafficLightProcessor(
            config, provider=FakeFrameProvider(count=1000), install_signal_handlers=False
        )
        processor.start()
        processor._signal_handler(15, None)

        assert processor.loop.stop_requested
        processor.run()

    def test_cleanup_is_idempotent(self, config):
        provider = FakeFrameProvider(count=1)
        processor = TrafficLightProcessor(config, provider=provider, install_signal_handlers=False)
        processor.run()

        processor._cleanup()

        assert provider.closed
