from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import Settings

APP_LOGGER = "notes_website"


class EnsureClientFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "client"):
            record.client = "-"
        return True


def setup_logging(settings: Settings) -> logging.Logger:
    """Attach console and rotating-file handlers to the package logger once."""
    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(settings.LOG_LEVEL.upper())
    logger.propagate = False

    if logger.handlers:
        return logger

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s | client=%(client)s"
    )
    client_filter = EnsureClientFilter()

    ch = logging.StreamHandler(sys.stdout or sys.stderr)
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    ch.addFilter(client_filter)
    logger.addHandler(ch)

    try:
        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_path = settings.LOG_DIR / "notes-website.log"
        fh = RotatingFileHandler(
            log_path, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        fh.addFilter(client_filter)
        logger.addHandler(fh)
        logger.info("Logging initialized. log_file=%s", log_path)
    except OSError:
        logger.warning("File logging disabled, cannot write to %s", settings.LOG_DIR)

    return logger
