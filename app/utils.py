"""
Shared helpers.
"""
import logging
from datetime import datetime, timezone

from app.core import config


_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a named logger, configuring the root handler on first use."""
    global _configured
    if not _configured:
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
        _configured = True
    return logging.getLogger(name)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalize a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on DateTime(timezone=True) columns, so naive values
    are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
