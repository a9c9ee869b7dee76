"""Logging setup."""

import hashlib
import logging

from app.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    """Configure root logging once from settings.log_level."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def fingerprint(token: str) -> str:
    """Non-reversible label for a secret token in log lines."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:10]
