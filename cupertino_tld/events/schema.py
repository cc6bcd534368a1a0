"""
Event Schema for the Traffic Light Detector
============================================

Pydantic models for the HTTP control documents and MQTT lamp-state events.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class ConfigDocument(BaseModel):
    """
    Lamp configuration document (upload body and persisted file).

    Every field is optional: omitted fields keep their previous value.
    Unknown keys are ignored so older web UIs keep working.
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "master_roi_x": 385,
                "master_roi_y": 207,
                "master_roi_width": 82,
                "master_roi_height": 315,
                "red_x": 42,
                "red_y": 33,
                "yellow_x": 40,
                "yellow_y": 154,
                "green_x": 40,
                "green_y": 251,
                "lamp_radius": 37,
                "min_brightness_threshold": 80,
            }
        },
    )

    # Master region (the whole signal head)
    master_roi_x: Optional[StrictInt] = Field(default=None, description="Region origin X")
    master_roi_y: Optional[StrictInt] = Field(default=None, description="Region origin Y")
    master_roi_width: Optional[StrictInt] = Field(default=None, description="Region width")
    master_roi_height: Optional[StrictInt] = Field(default=None, description="Region height")

    # Lamp centers, relative to the master region
    red_x: Optional[StrictInt] = Field(default=None, description="Red lamp offset X")
    red_y: Optional[StrictInt] = Field(default=None, description="Red lamp offset Y")
    yellow_x: Optional[StrictInt] = Field(default=None, description="Yellow lamp offset X")
    yellow_y: Optional[StrictInt] = Field(default=None, description="Yellow lamp offset Y")
    green_x: Optional[StrictInt] = Field(default=None, description="Green lamp offset X")
    green_y: Optional[StrictInt] = Field(default=None, description="Green lamp offset Y")

    lamp_radius: Optional[StrictInt] = Field(default=None, description="Shared lamp disk radius")
    min_brightness_threshold: Optional[StrictInt] = Field(
        default=None, description="Mean luminance a lamp must exceed to count as lit"
    )

    @field_validator("*", mode="before")
    @classmethod
    def _reject_null(cls, value):
        # Explicit nulls are malformed; omit the key to keep the previous value
        if value is None:
            raise ValueError("must be an integer, got null")
        return value

    def provided_fields(self) -> Dict[str, int]:
        """Fields present in the document (the ones an upload overrides)."""
        return self.model_dump(exclude_unset=True)


class StatusResponse(BaseModel):
    """Small status document returned by the control endpoint."""

    status: Literal["success", "error"]
    message: Optional[str] = None

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


class LampStateEvent(BaseModel):
    """Lamp state published to MQTT when the classified label changes"""

    instance_id: str = Field(description="Detector instance identifier")
    state: Literal["RED", "YELLOW", "GREEN", "UNKNOWN"] = Field(description="Classified lamp state")
    brightness: List[float] = Field(description="Mean luminance per lamp (red, yellow, green)")
    threshold: int = Field(description="Threshold the brightest lamp had to exceed")
    in_bounds: bool = Field(description="False when the master region fell outside the frame")
    timestamp: datetime = Field(description="Classification time")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "instance_id": "tld-1a2b3c4d",
                "state": "RED",
                "brightness": [212.4, 31.0, 28.7],
                "threshold": 80,
                "in_bounds": True,
                "timestamp": "2025-10-25T10:30:00.123Z",
            }
        }
    )
