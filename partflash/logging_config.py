"""Logging bootstrap for the partflash CLI."""

import logging
from logging.config import dictConfig


def configure_logging(level: str = "INFO") -> None:
    """Send partflash logs to stderr with a timestamped format.

    Args:
        level: Root log level name (e.g. 'INFO', 'DEBUG').
    """
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                    "stream": "ext://sys.stderr",
                }
            },
            "root": {"level": level, "handlers": ["console"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", level)


__all__ = ["configure_logging"]
