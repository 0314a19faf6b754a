"""
Structured logging with correlation IDs and secret redaction.

Features:
- One immutable LogRecord per call, filtered by a minimum level
- Context keys that look sensitive are redacted before emission, recursively
- Child loggers bound to a correlation ID
- Pluggable sink; the default forwards records to loguru (stderr)
- Logging never raises into the caller
"""

import json
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from loguru import logger as loguru_logger

REDACTED = "[REDACTED]"

DEFAULT_SENSITIVE_FIELDS = (
    "apiKey",
    "token",
    "password",
    "secret",
    "authorization",
    "credential",
    "jwt",
    "key",
    "private",
)


class LogLevel(str, Enum):
    """Log levels, lowest first."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"

    @property
    def severity(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def parse(cls, value: "str | LogLevel") -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        name = value.strip().upper()
        return cls(_LEVEL_ALIASES.get(name, name))


_LEVEL_ORDER = list(LogLevel)
_LEVEL_ALIASES = {"WARNING": "WARN", "CRITICAL": "FATAL"}

# loguru level names
_LOGURU_LEVELS = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARN: "WARNING",
    LogLevel.ERROR: "ERROR",
    LogLevel.FATAL: "CRITICAL",
}


@dataclass(frozen=True)
class ErrorInfo:
    name: str
    message: str
    stack: str | None = None


@dataclass(frozen=True)
class LogRecord:
    """A single emitted log entry."""

    timestamp: str
    level: LogLevel
    message: str
    service: str
    correlation_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    error: ErrorInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "service": self.service,
        }
        if self.correlation_id:
            data["correlation_id"] = self.correlation_id
        if self.context:
            data["context"] = self.context
        if self.error:
            data["error"] = {"name": self.error.name, "message": self.error.message}
            if self.error.stack:
                data["error"]["stack"] = self.error.stack
        return data


LogSink = Callable[[LogRecord], None]


def loguru_sink(record: LogRecord) -> None:
    """Forward a record to loguru, which writes to stderr by default."""
    prefix = f"[{record.service}] "
    if record.correlation_id:
        prefix += f"({record.correlation_id}) "
    text = prefix + record.message
    if record.context:
        text += " " + json.dumps(record.context, default=str)
    if record.error:
        text += f" | {record.error.name}: {record.error.message}"
        if record.error.stack:
            text += "\n" + record.error.stack
    loguru_logger.bind(
        service=record.service, correlation_id=record.correlation_id
    ).log(_LOGURU_LEVELS[record.level], text)


@dataclass
class LoggerConfig:
    """Configuration for the structured logger."""

    min_level: LogLevel = LogLevel.INFO
    service: str = "ai-service"
    include_stack_trace: bool = True
    sensitive_fields: tuple[str, ...] = DEFAULT_SENSITIVE_FIELDS
    sink: LogSink | None = None


class Logger:
    """
    Structured, level-filtered, secret-redacting logger.

    Usage:
        log = Logger(LoggerConfig(service="deepseek-ai"))
        log.info("Generating response", {"prompt_length": 120})

        request_log = log.with_correlation_id(generate_correlation_id())
        request_log.warn("Retrying", {"attempt": 1})
    """

    def __init__(self, config: LoggerConfig | None = None):
        self.config = config or LoggerConfig()
        self._sensitive = tuple(name.lower() for name in self.config.sensitive_fields)

    def log(
        self,
        level: "LogLevel | str",
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Emit one record unless `level` is below the configured minimum.

        `level` may be a LogLevel or its name ("warn", "WARNING", ...).
        Unknown levels are dropped.
        """
        try:
            level = LogLevel.parse(level)
        except (ValueError, AttributeError):
            return
        if level.severity < self.config.min_level.severity:
            return

        try:
            record = LogRecord(
                timestamp=datetime.now(timezone.utc).isoformat(),
                level=level,
                message=message,
                service=self.config.service,
                correlation_id=correlation_id,
                context=self.redact(context or {}),
                error=self._error_info(error) if error is not None else None,
            )
            (self.config.sink or loguru_sink)(record)
        except Exception:
            # A broken sink must never fail the request being logged.
            return

    def debug(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.log(LogLevel.DEBUG, message, context, correlation_id)

    def info(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.log(LogLevel.INFO, message, context, correlation_id)

    def warn(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.log(LogLevel.WARN, message, context, correlation_id, error)

    def error(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.log(LogLevel.ERROR, message, context, correlation_id, error)

    def fatal(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.log(LogLevel.FATAL, message, context, correlation_id, error)

    def with_correlation_id(self, correlation_id: str) -> "CorrelatedLogger":
        """Return a child logger that tags every record with `correlation_id`."""
        return CorrelatedLogger(self, correlation_id)

    def redact(self, value: Any) -> Any:
        """Return a copy of `value` with sensitive string fields replaced."""
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                if isinstance(item, str) and self._is_sensitive(str(key)):
                    result[key] = REDACTED
                else:
                    result[key] = self.redact(item)
            return result
        if isinstance(value, (list, tuple)):
            return [self.redact(item) for item in value]
        return value

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(name in lowered for name in self._sensitive)

    def _error_info(self, error: BaseException) -> ErrorInfo:
        stack = None
        if self.config.include_stack_trace and error.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return ErrorInfo(name=type(error).__name__, message=str(error), stack=stack)


class CorrelatedLogger:
    """Logger view with a fixed correlation ID."""

    def __init__(self, logger: Logger, correlation_id: str):
        self.logger = logger
        self.correlation_id = correlation_id

    def debug(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.logger.debug(message, context, self.correlation_id)

    def info(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.logger.info(message, context, self.correlation_id)

    def warn(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.logger.warn(message, context, self.correlation_id, error)

    def error(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.logger.error(message, context, self.correlation_id, error)

    def fatal(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.logger.fatal(message, context, self.correlation_id, error)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID."""
    return f"ai-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def create_logger(settings=None) -> Logger:
    """Build a logger from application settings."""
    if settings is None:
        from aiguard.settings import global_settings as settings

    return Logger(
        LoggerConfig(
            min_level=LogLevel.parse(settings.log_level),
            service=settings.log_service,
            include_stack_trace=settings.log_include_stack_trace,
        )
    )


ai_logger = create_logger()
