"""
Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; this only wires the
root handler once and quiets chatty HTTP client loggers.
"""
import logging

from cineshelf.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


def mask_token(token: str, keep: int = 20) -> str:
    """Shorten a push token for log lines."""
    if len(token) <= keep:
        return token
    return f"{token[:keep]}..."
