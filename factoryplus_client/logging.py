"""Logging configuration helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional, Tuple

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
REDACTED = "***"

# Loggers that are chatty at DEBUG and only useful when chasing wire problems
NETWORK_LOGGERS = (
    "aiohttp.access",
    "aiohttp.client",
    "paho",
    "factoryplus_client.adapters.mqtt.paho",
)


class SecretFilter(logging.Filter):
    """Replaces known secrets in log messages before any handler formats them."""

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        self.secrets: Tuple[str, ...] = tuple(s for s in secrets if s)
        self._formatter = logging.Formatter()

    def _redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = self._redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        # Formatters reuse a cached exc_text, so render the traceback here
        if record.exc_info and not record.exc_text:
            record.exc_text = self._formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._redact(record.exc_text)
        if record.stack_info:
            record.stack_info = self._redact(record.stack_info)
        return True


def configure_logging(
    level: str = "INFO",
    *,
    log_path: Optional[Path] = None,
    log_network: bool = False,
    secrets: Iterable[str] = (),
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO".
    log_path:
        Optional path for a size-rotated log file. When absent, only console logging is configured.
    log_network:
        When true, keep the MQTT and HTTP libraries at the requested level instead of WARNING.
    secrets:
        Strings that must never reach a log handler, typically the credential secret.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    secret_filter = SecretFilter(secrets)
    for handler in root.handlers:
        handler.addFilter(secret_filter)

    if not log_network:
        for name in NETWORK_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
