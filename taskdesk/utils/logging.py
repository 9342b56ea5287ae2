"""Structured logging for request handling: correlation and actor ids, operation timing, masking."""

import hashlib
import inspect
import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from taskdesk.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_actor_id_var: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

# applied in order; emails before the generic key pattern
_MASKS = [
    (re.compile(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', re.IGNORECASE), '[REDACTED_EMAIL]'),
    (re.compile(r'\b\+?\d[\d\s().-]{7,}\b'), '[REDACTED_PHONE]'),
    (re.compile(r'(?i)(api[_-]?key|token|secret|password|session)[\s:=]+[A-Za-z0-9_.-]{16,}'), r'\1=[REDACTED]'),
    # Supabase service-role keys are JWTs
    (re.compile(r'eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+'), '[REDACTED_JWT]'),
]


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id_var.set(correlation_id)


def get_actor_id() -> Optional[str]:
    return _actor_id_var.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None, actor_id: Optional[str] = None):
    """Bind a request id (generated when missing) and the acting staff id for the block."""
    correlation_id = correlation_id or generate_correlation_id()
    tokens = (_correlation_id_var.set(correlation_id), _actor_id_var.set(actor_id))
    try:
        yield correlation_id
    finally:
        _actor_id_var.reset(tokens[1])
        _correlation_id_var.reset(tokens[0])


def mask_sensitive_data(text: str) -> str:
    """Redact emails, phone numbers, credentials and JWTs."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    for pattern, replacement in _MASKS:
        text = pattern.sub(replacement, text)
    return text


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    """Shorten a staff record id to a stable, non-reversible tag."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id or len(user_id) <= 12:
        return user_id
    digest = hashlib.sha256(user_id.encode()).hexdigest()[:8]
    return f"{user_id[:4]}...{digest}"


def sanitize_note_text(text: Optional[str], max_length: int = 200) -> Optional[str]:
    """Flag reason or resolution note as it may appear in logs, or None when note logging is off."""
    if not LoggingConfig.LOG_NOTE_CONTENT or not text:
        return None
    if len(text) > max_length:
        text = f"{text[:max_length]}..."
    return mask_sensitive_data(text)


class StructuredLogger:
    """Turns keyword arguments into record attributes and adds request context."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _context_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        extra: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        correlation_id = get_correlation_id()
        if correlation_id:
            extra["correlation_id"] = correlation_id
        actor_id = get_actor_id()
        if actor_id:
            extra["actor_id"] = mask_user_id(actor_id)
        extra.update(fields)
        return extra

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, message, extra=self._context_fields(fields), exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **fields)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Time a block; the outcome is "ok" or the name of the exception that left it."""
    log = logger or get_structured_logger(__name__)
    started = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except BaseException as e:
        outcome = type(e).__name__
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log.debug(
            f"Finished {operation_name}",
            operation=operation_name,
            outcome=outcome,
            processing_time_ms=elapsed_ms,
            **context
        )
        threshold = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS
        if elapsed_ms > threshold:
            log.warning(
                f"Slow operation detected: {operation_name}",
                operation=operation_name,
                outcome=outcome,
                processing_time_ms=elapsed_ms,
                threshold_ms=threshold,
                **context
            )


def timed(operation_name: Optional[str] = None, logger: Optional[StructuredLogger] = None):
    """Wrap a sync or async callable in ``log_timing``."""
    def decorator(func: Callable) -> Callable:
        op_name = operation_name or f"{func.__module__}.{func.__name__}"
        log = logger or get_structured_logger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with log_timing(op_name, logger=log):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with log_timing(op_name, logger=log):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator
