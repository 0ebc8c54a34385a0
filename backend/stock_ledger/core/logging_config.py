"""Logging setup - JSON lines in production, human-readable in debug."""

import json
import logging
import sys
from typing import Optional

from stock_ledger.core.config import Settings, get_settings


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


def configure_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Configure the root logger once for the host process.

    The engine itself only ever calls ``logging.getLogger(__name__)``; hosts
    (the order/billing backend, scripts) call this at startup.
    """
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.handlers.clear()

    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())

    root_logger.addHandler(handler)
    return root_logger
