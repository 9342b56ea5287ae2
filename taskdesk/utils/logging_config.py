"""Root logging setup, driven by environment variables."""

import os
import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

# record store client chatter
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest")


def _env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


class LoggingConfig:
    """Logging switches, read once at import."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_NOTE_CONTENT = _env_flag("LOG_NOTE_CONTENT")
    LOG_MASK_SENSITIVE = _env_flag("LOG_MASK_SENSITIVE")
    LOG_CORRELATION_ID_HEADER = os.environ.get("LOG_CORRELATION_ID_HEADER", "X-Correlation-ID")
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "1000"))

    @classmethod
    def formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(
                "%(levelname)s %(name)s %(message)s",
                rename_fields={"levelname": "level", "name": "logger"},
                timestamp=True,
            )
        return logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    @classmethod
    def setup_logging(cls, level: Optional[str] = None) -> None:
        """Send all records to stdout (the serverless log stream) in the configured format."""
        resolved = getattr(logging, (level or cls.LOG_LEVEL).upper(), logging.INFO)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(cls.formatter())

        root = logging.getLogger()
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(resolved)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
