"""
MQTT Protocol Utilities
========================

Topic naming conventions for lamp-state events.
"""

from typing import Optional


def topic_for_instance(instance_id: str, prefix: str = "tld/state") -> str:
    """
    Generate the MQTT topic a detector instance publishes its lamp state to.

    Examples:
        >>> topic_for_instance("tld-1a2b3c4d")
        'tld/state/tld-1a2b3c4d'
        >>> topic_for_instance("crossing-4", prefix="city/lights")
        'city/lights/crossing-4'
    """
    return f"{prefix.rstrip('/')}/{instance_id}"


def parse_instance_id_from_topic(topic: str, prefix: str = "tld/state") -> Optional[str]:
    """
    Extract the instance_id from a lamp-state topic.

    Examples:
        >>> parse_instance_id_from_topic("tld/state/crossing-4")
        'crossing-4'
        >>> parse_instance_id_from_topic("other/topic/x")
        None
    """
    head = prefix.rstrip("/") + "/"
    if not topic.startswith(head):
        return None
    instance_id = topic[len(head):]
    if not instance_id or "/" in instance_id:
        return None
    return instance_id
