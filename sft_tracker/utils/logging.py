import logging
import os
from typing import Optional

from pythonjsonlogger.json import JsonFormatter


class _DefaultFields(logging.Filter):
    """Ensure optional structured fields exist so the formatter never raises KeyError."""

    _fields = ("component", "user", "operation")

    def filter(self, record: logging.LogRecord) -> bool:
        for attr in self._fields:
            if not hasattr(record, attr):
                setattr(record, attr, "")
        return True


def _make_formatter() -> logging.Formatter:
    """JSON when LOG_FORMAT=json, key=value otherwise."""
    timefmt = os.getenv("LOG_TIMEFMT", "%Y-%m-%dT%H:%M:%S%z")
    if os.getenv("LOG_FORMAT", "structured").lower() == "json":
        return JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(component)s %(user)s %(operation)s",
            datefmt=timefmt,
        )
    return logging.Formatter(
        fmt=("time=%(asctime)s level=%(levelname)s logger=%(name)s "
             "msg=%(message)s component=%(component)s user=%(user)s operation=%(operation)s"),
        datefmt=timefmt,
    )


_LOGGERS = {}


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if name in _LOGGERS:
        return _LOGGERS[name]
    logger = logging.getLogger(name or "sft_tracker")
    if not logger.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
        handler = logging.StreamHandler()
        handler.addFilter(_DefaultFields())
        handler.setFormatter(_make_formatter())
        logger.addHandler(handler)
        logger.propagate = False
    _LOGGERS[name] = logger
    return logger


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach the structured handler to the package root logger.

    Module loggers created with ``logging.getLogger(__name__)`` below
    ``sft_tracker`` propagate into it.
    """
    root = get_logger("sft_tracker")
    if level:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return root
