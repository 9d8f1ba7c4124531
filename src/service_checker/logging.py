"""
Structured Logging for the Service Checker

JSON-per-line logging with request IDs, check-cycle event types and
Cloud Logging severities, so every probe attempt and transition can be
traced back to the run that produced it.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

# Context variable for tracking request ID across async operations
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EventType(Enum):
    """Event types attached to structured log lines."""

    # Trigger requests
    REQUEST_START = "request_start"
    REQUEST_END = "request_end"

    # Check cycle
    RUN_START = "run_start"
    RUN_END = "run_end"
    RUN_ERROR = "run_error"

    # Probes
    PROBE_START = "probe_start"
    PROBE_ATTEMPT_FAILED = "probe_attempt_failed"
    PROBE_RETRY = "probe_retry"
    PROBE_RESULT = "probe_result"

    # Service state
    SERVICE_DISABLED = "service_disabled"
    SERVICE_FAILED = "service_failed"
    SERVICE_RECOVERED = "service_recovered"

    # Collaborators
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_ERROR = "notification_error"
    REGISTRY_LOADED = "registry_loaded"
    REGISTRY_SAVED = "registry_saved"
    REGISTRY_ERROR = "registry_error"

    # Process
    CHECKER_START = "checker_start"


# Cloud Logging severities, https://cloud.google.com/logging/docs/reference/v2/rest/v2/LogEntry#LogSeverity
_CLOUD_SEVERITIES = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Level for loggers created after configure_logging()
_default_level = LogLevel.INFO


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "severity": (
                record.levelname if record.levelname in _CLOUD_SEVERITIES else "DEFAULT"
            ),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        for field in (
            "event_type",
            "service_id",
            "duration_ms",
            "status_code",
            "method",
            "path",
            "metadata",
        ):
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(getattr(record, "extra_fields"))

        return json.dumps(log_entry, default=str)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that gracefully handles closed streams during shutdown."""

    def emit(self, record):
        try:
            if hasattr(self.stream, "closed") and self.stream.closed:
                return
            super().emit(record)
        except (ValueError, OSError) as e:
            error_msg = str(e).lower()
            if any(
                phrase in error_msg
                for phrase in ["closed file", "bad file descriptor", "i/o operation on closed file"]
            ):
                return
            raise


class CheckerLogger:
    """Structured logger for the service checker."""

    def __init__(self, name: str = "service_checker", level: Optional[LogLevel] = None):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, (level or _default_level).value))

        # Remove existing handlers to avoid duplicates
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        handler = SafeStreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)

        self.logger.propagate = False

    def _log(self, level: LogLevel, message: str, exc_info: bool = False, **kwargs):
        extra = {}

        if "event_type" in kwargs:
            event_type = kwargs.pop("event_type")
            extra["event_type"] = (
                event_type.value if isinstance(event_type, EventType) else event_type
            )

        for field in [
            "service_id",
            "duration_ms",
            "status_code",
            "method",
            "path",
            "metadata",
        ]:
            if field in kwargs:
                extra[field] = kwargs.pop(field)

        if kwargs:
            extra["extra_fields"] = kwargs

        getattr(self.logger, level.value.lower())(message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs):
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(LogLevel.CRITICAL, message, **kwargs)

    def log_event(self, event_type: EventType, message: str, **kwargs):
        """Log a structured event at info level."""
        self.info(message, event_type=event_type, **kwargs)

    def log_request_start(self, method: str, path: str, **kwargs):
        """Log request start event."""
        self.log_event(
            EventType.REQUEST_START,
            f"{method} {path}",
            method=method,
            path=path,
            **kwargs,
        )

    def log_request_end(
        self, method: str, path: str, status_code: int, duration_ms: float, **kwargs
    ):
        """Log request end event."""
        self.log_event(
            EventType.REQUEST_END,
            f"{method} {path} - {status_code} ({duration_ms:.1f}ms)",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs,
        )

    def log_run_start(self, service_count: int, **kwargs):
        self.log_event(
            EventType.RUN_START,
            f"Check run starting for {service_count} service(s)",
            metadata={"service_count": service_count},
            **kwargs,
        )

    def log_run_end(
        self,
        duration_ms: float,
        checked: int,
        failed: List[str],
        recovered: List[str],
        **kwargs,
    ):
        self.log_event(
            EventType.RUN_END,
            f"Check run finished: {checked} checked, {len(failed)} failed, "
            f"{len(recovered)} recovered ({duration_ms:.1f}ms)",
            duration_ms=duration_ms,
            metadata={"checked": checked, "failed": failed, "recovered": recovered},
            **kwargs,
        )

    def log_probe_start(self, service_id: str, action: str, target: str, **kwargs):
        self.log_event(
            EventType.PROBE_START,
            f"{action} probe: {target}",
            service_id=service_id,
            metadata={"action": action, "target": target},
            **kwargs,
        )

    def log_probe_attempt_failed(
        self, label: str, attempt: int, max_attempts: int, error: Union[str, Exception], **kwargs
    ):
        """Log a single failed probe attempt."""
        self.warning(
            f"Probe attempt {attempt}/{max_attempts} failed for {label}: {error}",
            event_type=EventType.PROBE_ATTEMPT_FAILED,
            attempt=attempt,
            max_attempts=max_attempts,
            error=str(error),
            **kwargs,
        )

    def log_probe_retry(self, label: str, next_attempt: int, delay_ms: int, **kwargs):
        self.debug(
            f"Retrying {label} in {delay_ms}ms (attempt {next_attempt})",
            event_type=EventType.PROBE_RETRY,
            next_attempt=next_attempt,
            delay_ms=delay_ms,
            **kwargs,
        )

    def log_probe_result(
        self, service_id: str, failed: bool, duration_ms: Optional[float] = None, **kwargs
    ):
        status = "failed" if failed else "healthy"
        message = f"Probe result: {service_id} - {status}"
        if duration_ms is not None:
            message += f" ({duration_ms:.1f}ms)"

        self.log_event(
            EventType.PROBE_RESULT,
            message,
            service_id=service_id,
            duration_ms=duration_ms,
            metadata={"failed": failed},
            **kwargs,
        )

    def log_service_disabled(self, service_id: str, action: Optional[str], **kwargs):
        self.warning(
            f"Disabling service {service_id}: unrecognized action {action!r}",
            event_type=EventType.SERVICE_DISABLED,
            service_id=service_id,
            metadata={"action": action},
            **kwargs,
        )

    def log_transition(self, service_id: str, name: str, recovered: bool, **kwargs):
        """Log a failure or recovery transition for one service."""
        if recovered:
            event_type = EventType.SERVICE_RECOVERED
            message = f"Service recovered: {name}"
        else:
            event_type = EventType.SERVICE_FAILED
            message = f"Service failed: {name}"

        self.log_event(event_type, message, service_id=service_id, **kwargs)

    def log_notification(self, kind: str, names: List[str], **kwargs):
        self.log_event(
            EventType.NOTIFICATION_SENT,
            f"Sent {kind} notification for {', '.join(names)}",
            metadata={"kind": kind, "services": names},
            **kwargs,
        )

    def log_notification_error(self, kind: str, error: Union[str, Exception, None], **kwargs):
        self.error(
            f"Failed to send {kind} notification: {error}",
            event_type=EventType.NOTIFICATION_ERROR,
            metadata={"kind": kind, "error": str(error)},
            **kwargs,
        )

    def log_registry_error(self, operation: str, error: Union[str, Exception, None], **kwargs):
        self.error(
            f"Service registry {operation} failed: {error}",
            event_type=EventType.REGISTRY_ERROR,
            metadata={"operation": operation, "error": str(error)},
            **kwargs,
        )


# Global logger instance
logger = CheckerLogger()


def get_logger(name: str = "service_checker") -> CheckerLogger:
    """Get a logger instance."""
    if name == "service_checker":
        return logger
    return CheckerLogger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context. If not provided, generates a new one."""
    if request_id is None:
        request_id = f"req_{uuid.uuid4().hex[:12]}"

    request_id_context.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_context.get()


def clear_request_id():
    """Clear request ID from context."""
    request_id_context.set(None)


def configure_logging(level: Union[LogLevel, str] = LogLevel.INFO):
    """Set verbosity for every checker logger, existing and future."""
    global _default_level
    if isinstance(level, str):
        level = LogLevel(level.upper())
    _default_level = level

    for name in list(logging.root.manager.loggerDict):
        if name == "service_checker" or name.startswith("service_checker."):
            logging.getLogger(name).setLevel(getattr(logging, level.value))

    logger.info(
        "Logging configured",
        event_type=EventType.CHECKER_START,
        metadata={"log_level": level.value},
    )
