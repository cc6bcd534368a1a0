"""
Wire Schemas for the Traffic Light Detector
============================================

HTTP control documents, MQTT lamp-state events and topic utilities.
"""

from cupertino_tld.events.protocol import parse_instance_id_from_topic, topic_for_instance
from cupertino_tld.events.schema import ConfigDocument, LampStateEvent, StatusResponse

__all__ = [
    "ConfigDocument",
    "LampStateEvent",
    "StatusResponse",
    "topic_for_instance",
    "parse_instance_id_from_topic",
]
