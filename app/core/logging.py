"""
Logging configuration for the Student Leave Service.

Every module obtains its logger through get_logger(__name__). Output is
plain text by default; set LOG_FORMAT=json to emit one JSON object per line
for log shippers.
"""

import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from app.core.config import settings

_configured = False


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with service metadata."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = settings.APP_NAME


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "text": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        },
        "json": {
            "()": ServiceJsonFormatter,
            "format": "%(timestamp)s %(level)s %(logger)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "text",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "app": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}


def setup_logging() -> None:
    """Apply the logging configuration once per process."""
    global _configured
    if _configured:
        return

    config = dict(LOGGING_CONFIG)
    config["handlers"] = {
        "console": {
            **LOGGING_CONFIG["handlers"]["console"],
            "formatter": "json" if settings.LOG_FORMAT == "json" else "text",
        }
    }
    config["loggers"] = {
        "app": {
            **LOGGING_CONFIG["loggers"]["app"],
            "level": settings.LOG_LEVEL.upper(),
        }
    }
    logging.config.dictConfig(config)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the given module name."""
    setup_logging()
    return logging.getLogger(name)
