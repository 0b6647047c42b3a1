"""Logging setup: human-readable in debug mode, JSON lines otherwise."""

import json
import logging
import sys
from typing import Optional

from hotel_pms.core.config import settings


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: Optional[str] = None, debug: Optional[bool] = None) -> None:
    """Install a single root handler. Safe to call more than once."""
    debug = settings.debug if debug is None else debug
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level or settings.log_level))
    root_logger.handlers.clear()

    if debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())

    root_logger.addHandler(handler)
