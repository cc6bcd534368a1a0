"""
Lamp Configuration and Config Store
====================================

Immutable lamp configuration record plus the store that owns the current one.

- LampConfig is a frozen dataclass: a snapshot is a value, never a live
  reference a writer could mutate mid-read.
- ConfigStore validates before locking and swaps the whole record under a
  short critical section. Classification never runs while the lock is held.
- The persisted document uses the flat keys of ConfigDocument; loading merges
  it over the current value (omitted keys keep their previous value).
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from cupertino_tld.detector.validators import InvalidConfig, LampConfigValidators
from cupertino_tld.events.schema import ConfigDocument
from cupertino_tld.logging_utils import get_component_logger

logger = get_component_logger(__name__, "config_store")

# Lamp order is fixed: index 0 is RED, 1 YELLOW, 2 GREEN
LAMP_NAMES: Tuple[str, ...] = ("red", "yellow", "green")


@dataclass(frozen=True)
class LampPosition:
    """Lamp center, relative to the master region origin"""

    x: int
    y: int


@dataclass(frozen=True)
class LampConfig:
    """Master region, lamp positions and threshold used by one classification cycle"""

    master_x: int
    master_y: int
    master_width: int
    master_height: int

    lamps: Tuple[LampPosition, ...]
    """Up to three lamp centers, in RED, YELLOW, GREEN order"""

    lamp_radius: int
    min_brightness_threshold: int

    def validate(self) -> "LampConfig":
        """
        Check the structural invariants.

        Returns:
            self, so calls can be chained

        Raises:
            InvalidConfig: If any field is out of range
        """
        v = LampConfigValidators
        v.validate_non_negative("master_roi_x", self.master_x)
        v.validate_non_negative("master_roi_y", self.master_y)
        width = v.validate_dimension("master_roi_width", self.master_width)
        height = v.validate_dimension("master_roi_height", self.master_height)

        if not isinstance(self.lamps, tuple) or not 1 <= len(self.lamps) <= len(LAMP_NAMES):
            raise InvalidConfig(
                f"Invalid lamps: expected 1 to {len(LAMP_NAMES)} lamp positions"
            )
        for name, lamp in zip(LAMP_NAMES, self.lamps):
            v.validate_offset(name, lamp.x, lamp.y, width=width, height=height)

        v.validate_radius(self.lamp_radius, width=width, height=height)
        v.validate_threshold(self.min_brightness_threshold)
        return self

    def merged(self, fields: Mapping[str, Any]) -> "LampConfig":
        """
        Build a new config from this one with document fields overridden.

        The result is NOT validated; pass it to ConfigStore.replace().

        Args:
            fields: Flat document keys (see ConfigDocument), any subset

        Raises:
            InvalidConfig: If lamp coordinates cannot be assembled
                (half a lamp, or a gap in the RED, YELLOW, GREEN order)
        """
        lamps = []
        missing_from = None
        for index, name in enumerate(LAMP_NAMES):
            existing = self.lamps[index] if index < len(self.lamps) else None
            x = fields.get(f"{name}_x", existing.x if existing else None)
            y = fields.get(f"{name}_y", existing.y if existing else None)

            if x is None and y is None:
                missing_from = missing_from or name
                continue
            if x is None or y is None:
                raise InvalidConfig(f"Invalid {name} lamp: both {name}_x and {name}_y are required")
            if missing_from is not None:
                raise InvalidConfig(
                    f"Invalid {name} lamp: {missing_from} lamp must be configured first"
                )
            lamps.append(LampPosition(x=x, y=y))

        return LampConfig(
            master_x=fields.get("master_roi_x", self.master_x),
            master_y=fields.get("master_roi_y", self.master_y),
            master_width=fields.get("master_roi_width", self.master_width),
            master_height=fields.get("master_roi_height", self.master_height),
            lamps=tuple(lamps),
            lamp_radius=fields.get("lamp_radius", self.lamp_radius),
            min_brightness_threshold=fields.get(
                "min_brightness_threshold", self.min_brightness_threshold
            ),
        )

    def to_document(self) -> Dict[str, int]:
        """Flat document with every configured field (what gets persisted)."""
        document = {
            "master_roi_x": self.master_x,
            "master_roi_y": self.master_y,
            "master_roi_width": self.master_width,
            "master_roi_height": self.master_height,
        }
        for name, lamp in zip(LAMP_NAMES, self.lamps):
            document[f"{name}_x"] = lamp.x
            document[f"{name}_y"] = lamp.y
        document["lamp_radius"] = self.lamp_radius
        document["min_brightness_threshold"] = self.min_brightness_threshold
        return document


DEFAULT_LAMP_CONFIG = LampConfig(
    master_x=385,
    master_y=207,
    master_width=82,
    master_height=315,
    lamps=(
        LampPosition(x=42, y=33),
        LampPosition(x=40, y=154),
        LampPosition(x=40, y=251),
    ),
    lamp_radius=37,
    min_brightness_threshold=80,
)


class ConfigStore:
    """
    Thread-safe holder of the current LampConfig.

    Exactly one value is current at any time. Writers replace the whole
    record; readers get the record itself (immutable), so the lock only
    guards the reference swap.

    Args:
        initial: Starting configuration (default: DEFAULT_LAMP_CONFIG)

    Example:
        >>> store = ConfigStore()
        >>> config = store.snapshot()
        >>> store.replace(config.merged({"lamp_radius": 20}))
    """

    def __init__(self, initial: Optional[LampConfig] = None):
        initial = initial if initial is not None else DEFAULT_LAMP_CONFIG
        initial.validate()
        self._config = initial
        self._lock = threading.Lock()

    def snapshot(self) -> LampConfig:
        """Return the last accepted configuration."""
        with self._lock:
            return self._config

    def replace(self, candidate: LampConfig) -> LampConfig:
        """
        Replace the current configuration.

        Validation runs before the lock is taken, so a rejected candidate
        never touches the store.

        Raises:
            InvalidConfig: If candidate is not a valid LampConfig
        """
        if not isinstance(candidate, LampConfig):
            raise InvalidConfig(
                f"Invalid config: expected LampConfig, got {type(candidate).__name__}"
            )
        candidate.validate()

        with self._lock:
            self._config = candidate

        logger.debug(
            "Configuration replaced",
            extra={"event": "config_replaced", "config": candidate.to_document()},
        )
        return candidate

    @classmethod
    def from_file(
        cls, path: Union[str, Path], default: Optional[LampConfig] = None
    ) -> "ConfigStore":
        """
        Create a store from the persisted document, merged over `default`.

        A missing file keeps the default. An unreadable or invalid file is
        logged and the default kept: a bad file on disk must not stop the
        detector from starting.
        """
        base = default if default is not None else DEFAULT_LAMP_CONFIG
        config = base
        try:
            document = load_config_document(path)
            if document is not None:
                config = base.merged(document.provided_fields()).validate()
                logger.info(
                    f"Loaded lamp configuration from {path}",
                    extra={"event": "config_loaded", "path": str(path)},
                )
            else:
                logger.info(
                    f"No configuration at {path}, using defaults",
                    extra={"event": "config_defaults", "path": str(path)},
                )
        except (OSError, UnicodeDecodeError, ValidationError, InvalidConfig) as e:
            logger.error(
                f"Failed to load configuration from {path}: {e}",
                extra={
                    "event": "config_load_failed",
                    "path": str(path),
                    "error_type": type(e).__name__,
                },
            )
            config = base
        return cls(config)


def load_config_document(path: Union[str, Path]) -> Optional[ConfigDocument]:
    """
    Read and parse the persisted configuration document.

    Returns:
        ConfigDocument, or None if the file does not exist

    Raises:
        OSError: File exists but cannot be read
        pydantic.ValidationError: Malformed JSON or field types
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return ConfigDocument.model_validate_json(text)


def save_config_document(path: Union[str, Path], config: LampConfig) -> None:
    """
    Persist the full configuration document atomically.

    Written to a temporary file in the same directory and renamed over the
    target, so a reader never sees a half-written file.

    Raises:
        OSError: Directory not writable
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(config.to_document(), handle, indent=2)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
