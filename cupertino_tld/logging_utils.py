"""
Structured Logging Utilities
=============================

Structured logging for the traffic light detector.

- setup_structured_logging: JSON (python-json-logger) or human-readable output
- trace_context: per-request trace_id propagation (HTTP handlers)
- ComponentLogger: LoggerAdapter that stamps every record with its component

Philosophy: logger.info(msg, extra={"event": ...}) directly, no wrapper helpers.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ============================================================================
# Trace Context
# ============================================================================

# ContextVar is per-thread, so each HTTP handler thread keeps its own trace_id
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)


def get_trace_id() -> Optional[str]:
    """Return the trace_id of the active context, or None."""
    return trace_id_var.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Generate a short unique trace ID.

    Args:
        prefix: Trace prefix (e.g. "req", "loop")

    Returns:
        Trace ID formatted as {prefix}-{short_uuid}
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Propagate a trace_id through everything executed inside the block.

    Usage:
        with trace_context(generate_trace_id("req")):
            handle_request()
            logger.info("Handled")  # record carries trace_id
    """
    if trace_id is None:
        trace_id = generate_trace_id()

    token = trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        trace_id_var.reset(token)


# ============================================================================
# Logger Setup
# ============================================================================

class _HumanReadableFormatter(logging.Formatter):
    """Aligned single-line format for development consoles."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(component)-16s | %(event)-22s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "component"):
            record.component = record.name.split(".")[-1]
        if not hasattr(record, "event"):
            record.event = "-"
        return super().format(record)


class _AutoFlushStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _build_json_formatter(indent: Optional[int]) -> logging.Formatter:
    try:
        from pythonjsonlogger import jsonlogger
    except ImportError:
        raise ImportError(
            "pythonjsonlogger not found. Install with: pip install python-json-logger"
        )

    class CustomJsonFormatter(jsonlogger.JsonFormatter):
        def add_fields(self, log_record, record, message_dict):
            super().add_fields(log_record, record, message_dict)

            if "levelname" in log_record:
                log_record["level"] = log_record.pop("levelname")

            if "name" in log_record:
                log_record["logger"] = log_record.pop("name")

            current_trace_id = get_trace_id()
            if current_trace_id and "trace_id" not in log_record:
                log_record["trace_id"] = current_trace_id

    return CustomJsonFormatter(
        "%(timestamp)s %(levelname)s %(name)s %(message)s",
        timestamp=True,
        json_indent=indent,
    )


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
    indent: Optional[int] = None,
    output_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON output when True, aligned text otherwise
        indent: JSON indent (None = compact)
        output_file: Log file path (None = stdout). Files are rotated.
        max_bytes: Rotation size per file
        backup_count: Number of rotated files kept

    Usage:
        # Development
        setup_structured_logging(level="DEBUG", json_format=False)

        # On camera, shipped to a log collector
        setup_structured_logging(level="INFO", output_file="/var/log/tld/tld.log")
    """
    if json_format:
        formatter = _build_json_formatter(indent)
    else:
        formatter = _HumanReadableFormatter()

    if output_file:
        log_path = Path(output_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        print(
            f"Logging to file: {output_file} "
            f"(max: {max_bytes // 1024 // 1024}MB, backups: {backup_count})",
            file=sys.stderr,
        )
    else:
        handler = _AutoFlushStreamHandler(sys.stdout)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))


# ============================================================================
# ComponentLogger
# ============================================================================

class ComponentLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds 'component' and 'trace_id' to every record.

    Precedence (highest first): caller extra, adapter extra, context trace_id.

    Usage:
        >>> logger = ComponentLogger(logging.getLogger(__name__), {"component": "loop"})
        >>> logger.info("Reloaded", extra={"event": "config_reloaded"})
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)

        trace_id = get_trace_id()
        if trace_id:
            extra["trace_id"] = trace_id

        if "extra" in kwargs:
            extra.update(kwargs["extra"])

        kwargs["extra"] = extra
        return msg, kwargs


def get_component_logger(name: str, component: str) -> ComponentLogger:
    """
    Get a logger that stamps every record with `component`.

    Args:
        name: Logger name (usually __name__)
        component: Component name (e.g. "classifier", "stream_server")
    """
    return ComponentLogger(logging.getLogger(name), {"component": component})


__all__ = [
    "setup_structured_logging",
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    "ComponentLogger",
    "get_component_logger",
]
