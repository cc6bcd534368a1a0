"""
Unit tests for event schemas and protocol
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from cupertino_tld.events import (
    ConfigDocument,
    LampStateEvent,
    StatusResponse,
    parse_instance_id_from_topic,
    topic_for_instance,
)


class TestConfigDocument:
    def test_full_document(self):
        example = ConfigDocument.model_config["json_schema_extra"]["example"]
        document = ConfigDocument.model_validate(example)
        assert document.provided_fields() == example

    def test_partial_document_reports_only_provided_fields(self):
        document = ConfigDocument.model_validate_json('{"lamp_radius": 20}')
        assert document.provided_fields() == {"lamp_radius": 20}

    def test_empty_object_is_valid(self):
        assert ConfigDocument.model_validate_json("{}").provided_fields() == {}

    def test_unknown_keys_ignored(self):
        document = ConfigDocument.model_validate_json('{"red_x": 1, "comment": "hi"}')
        assert document.provided_fields() == {"red_x": 1}

    def test_negative_values_pass_schema(self):
        """Range checks happen on the merged LampConfig, not here."""
        document = ConfigDocument.model_validate_json('{"master_roi_x": -3}')
        assert document.master_roi_x == -3

    @pytest.mark.parametrize(
        "payload",
        [
            '{"lamp_radius": "20"}',
            '{"lamp_radius": 20.0}',
            '{"lamp_radius": true}',
            '{"lamp_radius": null}',
            '{"lamp_radius": [20]}',
            "[]",
            "42",
            "{",
        ],
    )
    def test_malformed_rejected(self, payload):
        with pytest.raises(ValidationError):
            ConfigDocument.model_validate_json(payload)


class TestStatusResponse:
    def test_success_omits_message(self):
        assert StatusResponse(status="success").to_json_bytes() == b'{"status":"success"}'

    def test_error_includes_message(self):
        body = StatusResponse(status="error", message="Empty body").to_json_bytes()
        assert body == b'{"status":"error","message":"Empty body"}'

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            StatusResponse(status="maybe")


class TestLampStateEvent:
    def test_serialization(self):
        event = LampStateEvent(
            instance_id="tld-1a2b3c4d",
            state="GREEN",
            brightness=[10.0, 12.5, 230.0],
            threshold=80,
            in_bounds=True,
            timestamp=datetime(2025, 10, 25, 10, 30, tzinfo=timezone.utc),
        )
        parsed = LampStateEvent.model_validate_json(event.model_dump_json())
        assert parsed == event

    def test_invalid_state_rejected(self):
        with pytest.raises(ValidationError):
            LampStateEvent(
                instance_id="tld-1",
                state="BLUE",
                brightness=[],
                threshold=80,
                in_bounds=True,
                timestamp=datetime.now(timezone.utc),
            )


class TestProtocol:
    def test_topic_for_instance(self):
        assert topic_for_instance("tld-1a2b3c4d") == "tld/state/tld-1a2b3c4d"
        assert topic_for_instance("crossing-4", prefix="city/lights") == "city/lights/crossing-4"

    def test_parse_instance_id(self):
        assert parse_instance_id_from_topic("tld/state/crossing-4") == "crossing-4"
        assert parse_instance_id_from_topic("city/lights/x", prefix="city/lights/") == "x"

    @pytest.mark.parametrize("topic", ["other/topic/x", "tld/state/", "tld/state/a/b", "tld/statex/a"])
    def test_parse_invalid_topics(self, topic):
        assert parse_instance_id_from_topic(topic) is None
