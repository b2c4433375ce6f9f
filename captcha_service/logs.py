"""Logging setup shared by the service modules."""

from __future__ import annotations

import logging
from typing import Optional

from captcha_service import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] [trace=%(trace_id)s] %(message)s"

logger = logging.getLogger("captcha_service")


class TraceFilter(logging.Filter):
    """Make sure every record has a ``trace_id`` for the formatter."""

    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "-"
        return True


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TraceFilter())
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def get_trace_logger(trace_id: Optional[str]) -> logging.LoggerAdapter:
    """Logger that tags each message with a captcha session id."""
    return logging.LoggerAdapter(logger, {"trace_id": trace_id or "-"})
