"""
Centralized logging configuration with structured, sanitized output.

Provides:
- JSON structured logging for production
- Human-readable text logging for development
- Mandatory secret masking on every entry (see core.sanitizer)
- Console and rotating file sinks
- A gated security audit channel
- Non-blocking emission (entries are queued, sinks run on a listener thread)

Usage:
    from governance_collector.core.logging_config import GovernanceLogger, LoggingConfig

    logger = GovernanceLogger(LoggingConfig.from_dict(config["logging"]))
    logger.info("Collection started", {"workspaces": 12})
    logger.audit("collection_completed", {"run_id": run_id})
    logger.close()
"""

import json
import logging
import queue
import sys
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Any

from governance_collector.core.sanitizer import CIRCULAR, MAX_DEPTH, sanitize_log_entry

CORE_FIELDS = ("level", "message", "timestamp")

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Output level names
LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "critical",
}

DEFAULT_EXCLUDE_HEADERS = ("authorization", "x-api-key")

UNSERIALIZABLE = "<unserializable>"


def _section(data: Any, key: str) -> Mapping[str, Any]:
    value = data.get(key) if isinstance(data, Mapping) else None
    return value if isinstance(value, Mapping) else {}


@dataclass
class LoggingConfig:
    """
    Validated view of the ``logging`` configuration section.

    Attributes:
        level: Minimum level name (DEBUG, INFO, WARN, ERROR)
        format: "json" or "text"
        console: Emit to stdout
        file: Emit to a rotating file
        file_path: Log file location (required when file is True)
        max_size_mb: Rotation size per file
        max_files: Number of rotated files kept
        mask_api_keys: Apply secret masking and header redaction
        exclude_headers: Header names whose values are always redacted
        audit_enabled: Emit audit() events
    """

    level: str = "INFO"
    format: str = "json"
    console: bool = True
    file: bool = False
    file_path: str | None = None
    max_size_mb: float = 100
    max_files: int = 10
    mask_api_keys: bool = True
    exclude_headers: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_HEADERS))
    audit_enabled: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, security: Mapping[str, Any] | None = None) -> "LoggingConfig":
        """
        Build a LoggingConfig from the raw ``logging`` section.

        Missing or malformed sub-sections fall back to defaults. The audit flag
        is read from ``logging.security.audit.enabled`` and, when that is
        absent, from the top-level ``security.audit.enabled`` passed in
        ``security``.

        Args:
            data: The ``logging`` mapping from the loaded configuration
            security: Optional top-level ``security`` mapping

        Returns:
            LoggingConfig instance
        """
        data = data if isinstance(data, Mapping) else {}
        destinations = _section(data, "destinations")
        rotation = _section(data, "rotation")
        log_security = _section(data, "security")

        exclude_headers = log_security.get("exclude_headers", list(DEFAULT_EXCLUDE_HEADERS))
        if not isinstance(exclude_headers, (list, tuple)):
            exclude_headers = []

        audit = _section(log_security, "audit")
        if "enabled" not in audit:
            audit = _section(security, "audit")

        return cls(
            level=str(data.get("level", "INFO")),
            format=str(data.get("format", "json")).lower(),
            console=bool(destinations.get("console", True)),
            file=bool(destinations.get("file", False)),
            file_path=destinations.get("file_path"),
            max_size_mb=rotation.get("max_size_mb", 100),
            max_files=rotation.get("max_files", 10),
            mask_api_keys=bool(log_security.get("mask_api_keys", True)),
            exclude_headers=[h for h in exclude_headers if isinstance(h, str)],
            audit_enabled=bool(audit.get("enabled", False)),
        )

    @property
    def log_level(self) -> int:
        """Numeric logging level (unknown names map to INFO)"""
        return LEVELS.get(self.level.upper(), logging.INFO)


def _capture_errors(value: Any, depth: int = 0, seen: set[int] | None = None) -> Any:
    """Expand exceptions anywhere in a metadata value into {type, message, stack}"""
    if isinstance(value, BaseException):
        return {
            "type": type(value).__name__,
            "message": _safe_str(value),
            "stack": "".join(traceback.format_exception(type(value), value, value.__traceback__)),
        }

    if depth >= MAX_DEPTH or not isinstance(value, (Mapping, list, tuple, set)):
        return value

    seen = set() if seen is None else seen
    marker = id(value)
    if marker in seen:
        return CIRCULAR
    seen.add(marker)

    try:
        if isinstance(value, Mapping):
            return {key: _capture_errors(item, depth + 1, seen) for key, item in value.items()}
        return [_capture_errors(item, depth + 1, seen) for item in value]
    except Exception:
        return UNSERIALIZABLE
    finally:
        seen.discard(marker)


def _safe_str(value: Any) -> str:
    """str(), falling back to repr() and then a placeholder"""
    for convert in (str, repr):
        try:
            return convert(value)
        except Exception:
            continue
    return UNSERIALIZABLE


def _copy_fields(meta: Mapping[str, Any]) -> dict[str, Any]:
    try:
        return dict(meta)
    except Exception:
        return {"meta": UNSERIALIZABLE}


class SanitizingFormatter(logging.Formatter):
    """
    Format log records as sanitized JSON or text lines.

    The entry is assembled from the record (level, message, metadata passed as
    ``extra={"extra_fields": {...}}``, timestamp), sanitized, then serialized.
    Nothing unsanitized is returned.
    """

    def __init__(self, config: LoggingConfig):
        super().__init__()
        self.config = config

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        """Timestamp with millisecond precision: 2026-01-15 08:30:00.123"""
        created = datetime.fromtimestamp(record.created)
        return f"{created:%Y-%m-%d %H:%M:%S}.{int(record.msecs):03d}"

    def build_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        """Assemble the unsanitized entry for a record"""
        entry: dict[str, Any] = {
            "level": LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "message": record.getMessage(),
        }

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, Mapping):
            for key, value in extra_fields.items():
                if key in CORE_FIELDS:
                    continue
                entry[_safe_str(key)] = _capture_errors(value)

        if record.exc_info:
            entry["stack"] = self.formatException(record.exc_info)

        entry["timestamp"] = self.formatTime(record)
        return entry

    def render_text(self, entry: Mapping[str, Any]) -> str:
        """Render ``<timestamp> [<level>] <message> <metadata-json>``"""
        line = f"{entry.get('timestamp')} [{entry.get('level')}] {entry.get('message')}"
        if len(entry) > len(CORE_FIELDS):
            meta = {key: value for key, value in entry.items() if key not in CORE_FIELDS}
            line = f"{line} {json.dumps(meta, default=_safe_str)}"
        return line

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a sanitized string"""
        entry = sanitize_log_entry(
            self.build_entry(record),
            mask_api_keys=self.config.mask_api_keys,
            exclude_headers=self.config.exclude_headers,
        )

        if self.config.format == "json":
            return json.dumps(entry, default=_safe_str)
        return self.render_text(entry)


def _report_handler_error(handler: logging.Handler, record: logging.LogRecord) -> None:
    # Replaces logging's default report, which echoes the raw message and args
    error = sys.exc_info()[1]
    try:
        sys.stderr.write(
            f"governance_collector: {type(handler).__name__} dropped a {record.levelname} entry "
            f"({type(error).__name__ if error else 'unknown error'})\n"
        )
    except (OSError, ValueError):
        pass


def _report_logging_error(logger_name: str, error: BaseException) -> None:
    try:
        sys.stderr.write(f"governance_collector: {logger_name} dropped an entry ({type(error).__name__})\n")
    except (OSError, ValueError):
        pass


class _SafeQueueHandler(QueueHandler):
    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        _report_handler_error(self, record)


class _SafeStreamHandler(logging.StreamHandler):
    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        _report_handler_error(self, record)


class _SafeRotatingFileHandler(RotatingFileHandler):
    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        _report_handler_error(self, record)


class GovernanceLogger:
    """
    Leveled logger with sanitization and an audit channel.

    Records are formatted (and therefore sanitized) on the calling thread and
    handed to a queue; a QueueListener thread writes them to the console and
    file sinks, so callers never wait on sink I/O. No method raises: handler
    failures are reported on stderr without the entry content.
    """

    def __init__(self, config: LoggingConfig | Mapping[str, Any] | None, name: str = "governance_collector"):
        """
        Initialize logger from configuration.

        Args:
            config: LoggingConfig or the raw ``logging`` mapping
            name: Underlying stdlib logger name
        """
        if not isinstance(config, LoggingConfig):
            config = LoggingConfig.from_dict(config)

        self.config = config
        self.formatter = SanitizingFormatter(config)

        self._logger = logging.getLogger(name)
        self._logger.setLevel(config.log_level)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)

        self.sinks = self._create_sinks()

        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._queue_handler = _SafeQueueHandler(self._queue)
        self._queue_handler.setFormatter(self.formatter)
        self._logger.addHandler(self._queue_handler)

        self._listener = QueueListener(self._queue, *self.sinks)
        self._listener.start()
        self._closed = False

    def _create_sinks(self) -> list[logging.Handler]:
        sinks: list[logging.Handler] = []

        if self.config.console:
            sinks.append(_SafeStreamHandler(sys.stdout))

        if self.config.file:
            file_handler = self._create_file_handler()
            if file_handler is not None:
                sinks.append(file_handler)

        return sinks

    def _create_file_handler(self) -> logging.Handler | None:
        if not self.config.file_path:
            sys.stderr.write("governance_collector: file logging enabled without file_path, skipping file sink\n")
            return None

        log_file = Path(self.config.file_path)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            return _SafeRotatingFileHandler(
                log_file,
                maxBytes=int(float(self.config.max_size_mb) * 1024 * 1024),
                backupCount=int(self.config.max_files),
                encoding="utf-8",
                delay=True,
            )
        except (OSError, TypeError, ValueError) as e:
            sys.stderr.write(f"governance_collector: cannot open log file {log_file}: {e}\n")
            return None

    def _log(self, level: int, message: Any, meta: Any = None, exc_info: Any = None) -> None:
        if isinstance(meta, Mapping):
            fields = _copy_fields(meta)
        elif meta is None:
            fields = {}
        else:
            fields = {"meta": meta}

        try:
            self._logger.log(level, message, exc_info=exc_info, extra={"extra_fields": fields})
        except Exception as e:
            _report_logging_error(self._logger.name, e)

    def debug(self, message: Any, meta: Mapping[str, Any] | None = None) -> None:
        self._log(logging.DEBUG, message, meta)

    def info(self, message: Any, meta: Mapping[str, Any] | None = None) -> None:
        self._log(logging.INFO, message, meta)

    def warn(self, message: Any, meta: Mapping[str, Any] | None = None) -> None:
        self._log(logging.WARNING, message, meta)

    warning = warn

    def error(self, message: Any, meta: Mapping[str, Any] | None = None, exc_info: Any = None) -> None:
        self._log(logging.ERROR, message, meta, exc_info=exc_info)

    def audit(self, event: str, details: Mapping[str, Any] | None = None) -> None:
        """
        Emit a security audit event (only when audit logging is enabled).

        The entry has the shape
        ``{level: info, message: AUDIT, event, details, type: security_audit, timestamp}``
        and goes through the same sanitization as every other entry.

        Args:
            event: Event name (e.g., "collection_completed")
            details: Event details
        """
        if not self.config.audit_enabled:
            return

        self._log(
            logging.INFO,
            "AUDIT",
            {
                "event": event,
                "details": _copy_fields(details) if isinstance(details, Mapping) else details,
                "type": "security_audit",
            },
        )

    def close(self) -> None:
        """Flush queued entries and release sinks"""
        if self._closed:
            return
        self._closed = True

        self._listener.stop()
        self._logger.removeHandler(self._queue_handler)
        for sink in self.sinks:
            sink.close()

    def __enter__(self) -> "GovernanceLogger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def create_logger(config: Mapping[str, Any], name: str = "governance_collector") -> GovernanceLogger:
    """
    Build a GovernanceLogger from a fully loaded configuration.

    Args:
        config: Loaded configuration (uses the ``logging`` and ``security`` sections)
        name: Underlying stdlib logger name

    Returns:
        Started GovernanceLogger
    """
    logging_config = LoggingConfig.from_dict(config.get("logging"), security=config.get("security"))
    return GovernanceLogger(logging_config, name=name)
