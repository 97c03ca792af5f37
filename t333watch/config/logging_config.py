"""
Logging configuration.

Configures the stdlib root logger with a console handler. Development gets a
plain human-readable format, every other environment gets one JSON object
per line so the hosting platform can index fields. Each record is stamped
with the request ID of the request being served.
"""

import json
import logging
import sys

from t333watch.config.config import Config
from t333watch.middleware.request_id_middleware import current_request_id

logger = logging.getLogger(__name__)


class RequestContextFilter(logging.Filter):
    """Logging filter that adds the current request ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = current_request_id()
        if request_id:
            record.request_id = request_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Formats log records as JSON with request context and additional metadata.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "request_id"):
            log_data["request_id"] = record.request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed via logger.info(..., extra={"extra": {...}})
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_data.update(record.extra)

        return json.dumps(log_data, default=str)


def configure_logging() -> None:
    """
    Configure application logging.

    Sets up:
    - Console handler (plain text in development, JSON elsewhere)
    - Request context filter for log-to-request correlation
    - Quieter log levels for chatty third-party libraries
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(RequestContextFilter())

    if Config.IS_DEVELOPMENT:
        console_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        console_formatter = StructuredFormatter()

    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # Set log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    logger.info("Console logging configured")
