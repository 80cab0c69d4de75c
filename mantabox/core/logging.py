from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from mantabox.config import DriverConfig

ROOT_LOGGER_NAME = "mantabox"
CONTEXT_FIELDS = ("account_id", "app_id", "operation", "path")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, self.datefmt),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [record.levelname, record.name, record.getMessage()]
        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                parts.append(f"{field}={getattr(record, field)}")
        return " | ".join(parts)


def setup_logger(name: str, config: "DriverConfig") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(config.log_level)
    logger.propagate = False

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    formatter: logging.Formatter
    if config.log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.log_file_path:
        file_handler = RotatingFileHandler(
            config.log_file_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=3,
        )
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def get_logger(category: str | None = None) -> logging.Logger:
    """Return the main logger, or a category child of it."""
    if not category:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{category}")


@contextmanager
def log_context(logger: logging.Logger, **context) -> Iterator[logging.Logger]:
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        for key, value in context.items():
            setattr(record, key, value)
        return record

    logging.setLogRecordFactory(record_factory)
    try:
        yield logger
    finally:
        logging.setLogRecordFactory(old_factory)
