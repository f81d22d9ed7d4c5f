import logging
import sys

from core.config import settings

_NOISY_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "apscheduler",
    "httpx",
    "httpcore",
)


def configure_logging(level: str | None = None) -> None:
    """Console logging for the API process. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    if not any(getattr(h, "_inventory_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        handler._inventory_handler = True
        root.addHandler(handler)

    # Disable noisy loggers unless SQL echo was asked for explicitly
    if not settings.database_echo:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
