"""
Lamp Configuration Validators
==============================

Bounded context: structural validation of lamp configurations.

Separated from the Config Store so the rules can be tested in isolation and
reused by the store, the control endpoint and the CLI. A configuration is
either fully valid or rejected outright; nothing here mutates state.
"""

from typing import Any

# Largest master region side accepted, in pixels (8K frame width)
MAX_REGION_SIZE = 8192


class InvalidConfig(ValueError):
    """
    Lamp configuration failed structural validation.

    The message is descriptive enough to send back to the HTTP client.
    """
    pass


class LampConfigValidators:
    """
    Validators for lamp configuration fields.

    All validators follow the same pattern:
    1. Accept ANY type
    2. Validate type and geometric rules
    3. Return the validated value
    4. Raise InvalidConfig with a descriptive message on failure

    Usage:
        >>> LampConfigValidators.validate_int("lamp_radius", 37)
        37
        >>> LampConfigValidators.validate_offset("red", 42, 33, width=82, height=315)
        (42, 33)
    """

    @staticmethod
    def validate_int(name: str, value: Any) -> int:
        """
        Field must be a plain integer.

        bool is rejected even though it subclasses int: `"lamp_radius": true`
        is a malformed document, not a radius of 1.

        Examples:
            >>> LampConfigValidators.validate_int("master_roi_x", 385)
            385
            >>> LampConfigValidators.validate_int("master_roi_x", "385")
            InvalidConfig: Invalid master_roi_x: must be integer, got str
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfig(
                f"Invalid {name}: must be integer, got {type(value).__name__}"
            )
        return value

    @staticmethod
    def validate_non_negative(name: str, value: Any) -> int:
        value = LampConfigValidators.validate_int(name, value)
        if value < 0:
            raise InvalidConfig(f"Invalid {name}: cannot be negative, got {value}")
        return value

    @staticmethod
    def validate_dimension(name: str, value: Any, limit: int = MAX_REGION_SIZE) -> int:
        """
        Region side length must be within 1..limit pixels.

        Examples:
            >>> LampConfigValidators.validate_dimension("master_roi_width", 82)
            82
            >>> LampConfigValidators.validate_dimension("master_roi_width", 100000)
            InvalidConfig: Invalid master_roi_width: must be within 1..8192, got 100000
        """
        value = LampConfigValidators.validate_int(name, value)
        if not 1 <= value <= limit:
            raise InvalidConfig(f"Invalid {name}: must be within 1..{limit}, got {value}")
        return value

    @staticmethod
    def validate_radius(value: Any, width: int, height: int) -> int:
        """
        Lamp disk radius must be positive and no larger than the master region.

        Examples:
            >>> LampConfigValidators.validate_radius(37, width=82, height=315)
            37
            >>> LampConfigValidators.validate_radius(400, width=82, height=315)
            InvalidConfig: Invalid lamp_radius: must be within 1..315, got 400
        """
        value = LampConfigValidators.validate_int("lamp_radius", value)
        limit = max(width, height)
        if not 1 <= value <= limit:
            raise InvalidConfig(f"Invalid lamp_radius: must be within 1..{limit}, got {value}")
        return value

    @staticmethod
    def validate_offset(label: str, x: Any, y: Any, width: int, height: int) -> tuple:
        """
        Lamp center must fall inside the master region.

        Args:
            label: Lamp name used in the error message ("red", "yellow", "green")
            x, y: Offset relative to the master region origin
            width, height: Master region size

        Returns:
            Validated (x, y)

        Examples:
            >>> LampConfigValidators.validate_offset("green", 40, 251, width=82, height=315)
            (40, 251)
            >>> LampConfigValidators.validate_offset("green", 90, 251, width=82, height=315)
            InvalidConfig: Invalid green lamp offset: x=90 outside master region width 82
        """
        x = LampConfigValidators.validate_int(f"{label}_x", x)
        y = LampConfigValidators.validate_int(f"{label}_y", y)

        if not 0 <= x < width:
            raise InvalidConfig(
                f"Invalid {label} lamp offset: x={x} outside master region width {width}"
            )
        if not 0 <= y < height:
            raise InvalidConfig(
                f"Invalid {label} lamp offset: y={y} outside master region height {height}"
            )
        return x, y

    @staticmethod
    def validate_threshold(value: Any) -> int:
        """
        Threshold is compared against 8-bit mean luminance.

        Examples:
            >>> LampConfigValidators.validate_threshold(80)
            80
            >>> LampConfigValidators.validate_threshold(300)
            InvalidConfig: Invalid min_brightness_threshold: must be within 0..255, got 300
        """
        value = LampConfigValidators.validate_int("min_brightness_threshold", value)
        if not 0 <= value <= 255:
            raise InvalidConfig(
                f"Invalid min_brightness_threshold: must be within 0..255, got {value}"
            )
        return value
