"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Identifier of the phase run a log record belongs to. Set by the
# orchestrator so that interleaved logs from concurrent phases can be told
# apart.
run_id_context: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


class RunContextFilter(logging.Filter):
    """Attach the current run id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_context.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for production logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run_id = run_id_context.get()
        if run_id:
            log_entry["run_id"] = run_id

        for attr in ("phase", "iteration", "state", "score"):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Level name for the quizgen loggers
        log_file: Optional path for a rotating file handler
        json_format: Emit JSON lines instead of the human-readable format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers = ["console"]

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "run_context": {"()": RunContextFilter},
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if json_format else "default",
                "filters": ["run_context"],
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": logging.WARNING,
            "handlers": ["console"],
        },
        "loggers": {
            "quizgen": {
                "level": level,
                "handlers": handlers,
                "propagate": False,
            },
            # Quiet down noisy client libraries
            "httpx": {"level": logging.WARNING},
            "sqlalchemy.engine": {"level": logging.WARNING},
        },
    }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "json",
            "filters": ["run_context"],
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        handlers.append("file")

    logging.config.dictConfig(logging_config)
