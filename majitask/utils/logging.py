"""Structured logging for the sync services: request correlation, timing and credential masking."""

import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from majitask.utils.logging_config import LoggingConfig, get_logger

_correlation_id: ContextVar[Optional[str]] = ContextVar("majitask_correlation_id", default=None)

_MASKS = (
    (re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE), "[REDACTED_EMAIL]"),
    (re.compile(r"bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE), "Bearer [REDACTED]"),
    (
        re.compile(r"(api[_-]?key|token|secret|password|auth)[\s:=]+([A-Za-z0-9_.-]{20,})", re.IGNORECASE),
        r"\1=[REDACTED]",
    ),
)


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    """Correlation id of the request or sync pass currently executing, if any."""
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the enclosed block; nested blocks restore the outer id on exit."""
    token = _correlation_id.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


def mask_sensitive_data(text: str) -> str:
    """Redact e-mail addresses, bearer tokens and key-like secrets from free text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    for pattern, replacement in _MASKS:
        text = pattern.sub(replacement, text)
    return text


def mask_token(token: Optional[str]) -> Optional[str]:
    """Reduce an access token to a short preview safe for logs."""
    if not token:
        return None
    if not LoggingConfig.LOG_MASK_SENSITIVE:
        return token
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-2:]}"


class StructuredLogger:
    """Wraps a stdlib logger so keyword arguments become fields on the record."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _fields(self, values: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        correlation_id = get_correlation_id()
        if correlation_id:
            fields["correlation_id"] = correlation_id
        fields.update(values)
        # Storage and auth errors can echo e-mails or credentials
        if isinstance(fields.get("error"), str):
            fields["error"] = mask_sensitive_data(fields["error"])
        return fields

    def _log(self, level: int, message: str, exc_info: bool, values: Dict[str, Any]) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, message, exc_info=exc_info, extra=self._fields(values))

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, False, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, False, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, False, fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info, fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, True, fields)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any) -> Iterator[None]:
    """
    Log the duration of the enclosed block as ``processing_time_ms``.

    Blocks slower than LOG_SLOW_OPERATION_THRESHOLD_MS also emit a warning.
    """
    logger = logger or get_structured_logger(__name__)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"Completed {operation_name}", operation=operation_name, processing_time_ms=elapsed_ms, **context)
        threshold = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS
        if elapsed_ms > threshold:
            logger.warning(
                f"Slow operation: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=threshold,
                **context,
            )


def setup_logging() -> logging.Logger:
    """Configure root logging once per handler module and return the package logger."""
    LoggingConfig.setup_logging()
    return get_logger("majitask")
