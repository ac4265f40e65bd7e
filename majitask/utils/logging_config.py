"""Logging setup for the sync services, driven by environment variables."""

import os
import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

# Chatty client libraries used by the adapters and the storage tier
QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest", "gotrue")


class LoggingConfig:
    """Centralized logging configuration."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_MASK_SENSITIVE = os.environ.get("LOG_MASK_SENSITIVE", "true").lower() == "true"
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "1000"))
    SERVICE_NAME = os.environ.get("MAJITASK_SERVICE_NAME", "majitask-sync")

    @classmethod
    def build_formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(service)s %(message)s",
                rename_fields={"levelname": "level", "asctime": "logged_at"},
            )
        return logging.Formatter("%(asctime)s [%(service)s] %(levelname)s %(name)s: %(message)s")

    @classmethod
    def setup_logging(cls, level: Optional[str] = None) -> None:
        """
        Install the service's stdout handler on the root logger.

        Safe to call from every handler module: an earlier handler installed
        here is replaced rather than duplicated.
        """
        level_value = getattr(logging, (level or cls.LOG_LEVEL).upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level_value)

        for existing in list(root_logger.handlers):
            if getattr(existing, "_majitask_handler", False):
                root_logger.removeHandler(existing)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level_value)
        handler.setFormatter(cls.build_formatter())
        handler.addFilter(ServiceFilter(cls.SERVICE_NAME))
        handler._majitask_handler = True
        root_logger.addHandler(handler)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


class ServiceFilter(logging.Filter):
    """Stamps the service name on every record."""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "service"):
            record.service = self.service
        return True


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
