"""
Control Endpoint
================

Applies configuration uploads from the HTTP control surface.

Upload flow (all-or-nothing):
1. Parse the body as a ConfigDocument (pydantic)        -> 400 on failure
2. Merge it over the current snapshot and validate       -> 400 on failure
3. Persist the merged document                           -> 500 on failure
4. ConfigStore.replace() and set the ReloadSignal        -> 200

Nothing in shared state changes unless every step succeeds.
"""

import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from cupertino_tld.detector.lamp_config import ConfigStore, save_config_document
from cupertino_tld.detector.reload_signal import ReloadSignal
from cupertino_tld.detector.validators import InvalidConfig
from cupertino_tld.events.schema import ConfigDocument, StatusResponse
from cupertino_tld.logging_utils import get_component_logger

logger = get_component_logger(__name__, "control")

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "600",
}


@dataclass(frozen=True)
class ControlResponse:
    """HTTP response produced by the control endpoint"""

    status: HTTPStatus
    body: bytes = b""
    content_type: Optional[str] = "application/json"
    headers: Dict[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _success(status: HTTPStatus = HTTPStatus.OK) -> ControlResponse:
    return ControlResponse(status=status, body=StatusResponse(status="success").to_json_bytes())


def _error(status: HTTPStatus, message: str) -> ControlResponse:
    return ControlResponse(
        status=status,
        body=StatusResponse(status="error", message=message).to_json_bytes(),
    )


def describe_validation_error(error: ValidationError) -> str:
    """Compact one-line summary of a pydantic ValidationError."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "body"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts) or "Invalid configuration document"


class ControlEndpoint:
    """
    Configuration upload handler.

    Uploads are serialized by an endpoint-local lock so two concurrent
    partial uploads merge on top of each other instead of racing on the
    same snapshot. The classification loop never takes this lock.

    Args:
        store: ConfigStore owning the current LampConfig
        reload_signal: Flag the classification loop consumes
        config_path: Where accepted documents are persisted (None = memory only)

    Example:
        >>> endpoint = ControlEndpoint(store, reload_signal, "/tmp/config.json")
        >>> endpoint.handle_upload(b'{"lamp_radius": 20}').status
        <HTTPStatus.OK: 200>
    """

    def __init__(
        self,
        store: ConfigStore,
        reload_signal: ReloadSignal,
        config_path: Optional[Union[str, Path]] = None,
    ):
        self.store = store
        self.reload_signal = reload_signal
        self.config_path = Path(config_path) if config_path is not None else None
        self._upload_lock = threading.Lock()

    def handle_upload(self, body: bytes) -> ControlResponse:
        """
        Apply a configuration document.

        Returns:
            200 on success, 400 for malformed/invalid documents,
            500 if the accepted document could not be persisted
        """
        if not body or not body.strip():
            logger.warning("Rejected empty configuration upload", extra={"event": "upload_empty"})
            return _error(HTTPStatus.BAD_REQUEST, "Empty body")

        try:
            document = ConfigDocument.model_validate_json(body)
        except ValidationError as e:
            message = describe_validation_error(e)
            logger.warning(
                f"Rejected malformed configuration document: {message}",
                extra={"event": "upload_malformed", "error_message": message},
            )
            return _error(HTTPStatus.BAD_REQUEST, message)

        fields = document.provided_fields()

        with self._upload_lock:
            try:
                candidate = self.store.snapshot().merged(fields).validate()
            except InvalidConfig as e:
                logger.warning(
                    f"Rejected invalid configuration: {e}",
                    extra={"event": "upload_invalid", "error_message": str(e), "fields": fields},
                )
                return _error(HTTPStatus.BAD_REQUEST, str(e))

            if self.config_path is not None:
                try:
                    save_config_document(self.config_path, candidate)
                except OSError as e:
                    logger.error(
                        f"Failed to persist configuration to {self.config_path}: {e}",
                        extra={
                            "event": "upload_persist_failed",
                            "path": str(self.config_path),
                            "error_type": type(e).__name__,
                        },
                    )
                    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to persist configuration")

            self.store.replace(candidate)
            self.reload_signal.set()

        logger.info(
            f"Configuration accepted ({len(fields)} fields)",
            extra={"event": "upload_accepted", "fields": fields},
        )
        return _success()

    def handle_preflight(self) -> ControlResponse:
        """CORS pre-flight: empty acknowledgment, no state change."""
        return ControlResponse(
            status=HTTPStatus.NO_CONTENT,
            body=b"",
            content_type=None,
            headers=dict(PREFLIGHT_HEADERS),
        )

    def handle_get_config(self) -> ControlResponse:
        """Current configuration as a full document."""
        document = ConfigDocument.model_validate(self.store.snapshot().to_document())
        return ControlResponse(
            status=HTTPStatus.OK,
            body=document.model_dump_json(exclude_unset=True).encode("utf-8"),
        )
