"""
MQTT Lamp-State Sink
====================

Publishes a LampStateEvent whenever the classified label changes.
Compatible with ClassificationLoop's state_sink signature.
"""

import threading
from datetime import datetime, timezone
from typing import Optional

import paho.mqtt.client as mqtt

from cupertino_tld.detector.classifier import ClassificationResult, LampState
from cupertino_tld.events.protocol import topic_for_instance
from cupertino_tld.events.schema import LampStateEvent
from cupertino_tld.interfaces import MessageBroker
from cupertino_tld.logging_utils import get_component_logger

logger = get_component_logger(__name__, "state_sink")


class MQTTStateSink:
    """
    Sink that publishes lamp state transitions to MQTT.

    Only label changes are published: a steady RED light produces one
    message, not one per frame. Publish failures are logged and the
    label is retried on the next frame; nothing is ever raised into the
    classification loop.

    Args:
        mqtt_client: Connected MQTT client (MessageBroker protocol)
        instance_id: Detector instance identifier
        topic_prefix: Topic prefix (final topic: {prefix}/{instance_id})
        qos: MQTT QoS level
        retain: Retain the last state on the broker for late subscribers

    Example:
        >>> client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        >>> client.connect("localhost", 1883)
        >>> client.loop_start()
        >>> sink = MQTTStateSink(client, "tld-1a2b3c4d")
        >>> loop = ClassificationLoop(..., state_sink=sink)
    """

    def __init__(
        self,
        mqtt_client: MessageBroker,
        instance_id: str,
        topic_prefix: str = "tld/state",
        qos: int = 0,
        retain: bool = True,
    ):
        self.client = mqtt_client
        self.instance_id = instance_id
        self.topic = topic_for_instance(instance_id, topic_prefix)
        self.qos = qos
        self.retain = retain

        self._last_published: Optional[LampState] = None
        self._lock = threading.Lock()
        self.published_count = 0

    def __call__(self, result: ClassificationResult) -> None:
        with self._lock:
            if result.label == self._last_published:
                return

            event = LampStateEvent(
                instance_id=self.instance_id,
                state=result.label.value,
                brightness=list(result.brightness),
                threshold=result.threshold,
                in_bounds=result.in_bounds,
                timestamp=datetime.now(timezone.utc),
            )

            try:
                outcome = self.client.publish(
                    self.topic, event.model_dump_json(), qos=self.qos, retain=self.retain
                )
            except Exception as e:
                logger.error(
                    f"Error publishing lamp state to {self.topic}: {e}",
                    extra={"event": "state_publish_error", "error_type": type(e).__name__},
                )
                return

            if outcome.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning(
                    f"Failed to publish to {self.topic}: {mqtt.error_string(outcome.rc)}",
                    extra={"event": "state_publish_failed", "rc": outcome.rc},
                )
                return

            previous = self._last_published
            self._last_published = result.label
            self.published_count += 1

        logger.info(
            f"Lamp state {previous.value if previous else 'none'} -> {result.label.value}",
            extra={
                "event": "state_changed",
                "state": result.label.value,
                "previous_state": previous.value if previous else None,
            },
        )

    @property
    def last_published(self) -> Optional[LampState]:
        with self._lock:
            return self._last_published
