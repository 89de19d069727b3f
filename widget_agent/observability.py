"""
Observability
=============
Structured logging for build loop operations.

Every module logs through a ``widget_agent.<module>`` logger; this module
wires handlers onto the ``widget_agent`` root logger and offers a
:class:`StructuredLogger` that attaches event fields for the JSON formatter.
"""

import logging
import json
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict
from datetime import datetime


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logs."""

    _RESERVED = frozenset((
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName",
        "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_file_logging(
    log_dir: str = "./logs",
    log_name: str = "widget_agent.log",
    max_bytes: int = 10_000_000,  # 10 MB
    backup_count: int = 5,
) -> Path:
    """Attach a rotating file handler to the ``widget_agent`` logger.

    Args:
        log_dir: Directory to store logs (created if it doesn't exist).
        log_name: Name of the log file.
        max_bytes: Max size before rotation (default 10 MB).
        backup_count: Number of backup files to keep (default 5).

    Returns:
        Path to the log file.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    log_file = log_path / log_name
    root_logger = logging.getLogger("widget_agent")
    for existing in root_logger.handlers:
        if getattr(existing, "baseFilename", None) == str(log_file.absolute()):
            return log_file

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    return log_file


class StructuredLogger:
    """Structured logging for build loop events."""

    def __init__(self, name: str = "widget_agent", config=None):
        """Initialize structured logger.

        Args:
            name: Logger name.
            config: ObservabilityConfig instance (optional).
        """
        log_level = "INFO"
        log_format = "text"

        if config is not None:
            log_level = config.log_level
            log_format = config.log_format

        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level))

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)

            if log_format == "json":
                handler.setFormatter(JsonFormatter())
            else:
                handler.setFormatter(
                    logging.Formatter(
                        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                    )
                )

            self.logger.addHandler(handler)
            self.logger.propagate = False

    def log_build_attempt(
        self, widget: str, attempt: int, max_attempts: int, success: bool
    ):
        """Log the outcome of one generate + package attempt."""
        self.logger.info(
            "Build attempt %d/%d for %s: %s",
            attempt, max_attempts, widget, "ok" if success else "failed",
            extra={
                "event": "build_attempt",
                "widget": widget,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "success": success,
            },
        )

    def log_fix_applied(self, strategy: str, description: str, pattern_id: Optional[str] = None):
        """Log a fix applied by a strategy."""
        self.logger.info(
            "Fix applied by %s: %s", strategy, description,
            extra={
                "event": "fix_applied",
                "strategy": strategy,
                "description": description,
                "pattern_id": pattern_id,
            },
        )

    def log_pattern_learned(self, pattern_id: str, error_pattern: str):
        """Log a pattern promoted into the nucleus."""
        self.logger.info(
            "Pattern learned: %s", pattern_id,
            extra={
                "event": "pattern_learned",
                "pattern_id": pattern_id,
                "error_pattern": error_pattern[:120],
            },
        )

    def log_error(self, error: Exception, context: Optional[Dict] = None):
        """Log an error with context."""
        self.logger.error(
            "%s: %s", type(error).__name__, error,
            extra={
                "event": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "context": context or {},
            },
            exc_info=True,
        )


_logger_instance: Optional[StructuredLogger] = None


def get_logger(config=None) -> StructuredLogger:
    """Return the global StructuredLogger singleton.

    Args:
        config: ObservabilityConfig (used only on first call).
    """
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = StructuredLogger("widget_agent.events", config)
    return _logger_instance


def initialize_observability(config=None) -> StructuredLogger:
    """Set up logging from an :class:`AgentConfig`.

    Args:
        config: AgentConfig instance (optional, uses defaults if None).

    Returns:
        The shared StructuredLogger.
    """
    if config is None:
        from widget_agent.config import get_config
        config = get_config()

    obs = config.observability
    logging.getLogger("widget_agent").setLevel(getattr(logging, obs.log_level))
    if obs.file_logging:
        setup_file_logging(log_dir=obs.logs_dir)
    return get_logger(obs)
