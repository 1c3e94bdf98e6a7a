from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] | %(message)s"


class RequestIdFilter(logging.Filter):
    """Stamp the active request identifier onto every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        from ..middleware.request_context import get_request_id

        if not getattr(record, "request_id", None):
            record.request_id = get_request_id("-")
        return True


def configure_logging(default_level: str = "INFO") -> logging.Logger:
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("checklist_relay")
    logger.setLevel(level)
    if not any(isinstance(f, RequestIdFilter) for f in logger.filters):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        logger.addHandler(handler)
        logger.addFilter(RequestIdFilter())
    return logger


__all__ = ["LOG_FORMAT", "RequestIdFilter", "configure_logging"]
