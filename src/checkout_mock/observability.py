"""Correlation ids and API call capture helpers."""

import json
import logging
import os
import re
import uuid
from contextvars import ContextVar

from checkout_mock.validators import mask_card

CORRELATION_ID_HEADER = "X-Correlation-Id"

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="-")

_PAYMENT_ID_RE = re.compile(r"/payments/([0-9a-fA-F-]{36})")
_NON_DIGIT_RE = re.compile(r"\D")

MASKED = "***"

EXCLUDED_PATHS = ("/healthz", "/docs", "/openapi.json", "/favicon.ico")


def get_correlation_id() -> str:
    return _correlation_id.get()


def bind_correlation_id(value: str | None):
    """Set the id for the current context; returns the token for ``reset_correlation_id``."""
    return _correlation_id.set(value or str(uuid.uuid4()))


def reset_correlation_id(token) -> None:
    _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()
        return True


def extract_payment_id(endpoint: str) -> str | None:
    match = _PAYMENT_ID_RE.search(endpoint)
    if match:
        try:
            return str(uuid.UUID(match.group(1)))
        except ValueError:
            return None
    return None


def mask_sensitive_data(body: str | None) -> str | None:
    """Mask ``cardNumber`` and ``cvv`` wherever they appear in a JSON body.

    A body that is not JSON cannot be inspected, so it is replaced whole.
    """
    if body is None:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return MASKED
    return json.dumps(mask_fields(data), ensure_ascii=False, separators=(",", ":"))


def mask_fields(value):
    if isinstance(value, list):
        return [mask_fields(item) for item in value]
    if not isinstance(value, dict):
        return value
    masked = {}
    for key, item in value.items():
        if key == "cardNumber":
            digits = _NON_DIGIT_RE.sub("", str(item)) if item is not None else ""
            masked[key] = mask_card(digits) if len(digits) >= 10 else MASKED
        elif key == "cvv":
            masked[key] = MASKED
        else:
            masked[key] = mask_fields(item)
    return masked


def truncate(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None
    return value[:max_length] + "..." if len(value) > max_length else value


def should_capture(path: str) -> bool:
    return not path.startswith(EXCLUDED_PATHS)


def ensure_file_logger(logger: logging.Logger, log_path: str, fmt: str) -> None:
    """Attach a FileHandler for ``log_path`` once, however many apps get built."""
    logger.setLevel(logging.INFO)
    existing = [
        handler
        for handler in logger.handlers
        if isinstance(handler, logging.FileHandler)
        and os.path.basename(getattr(handler, "baseFilename", "")) == os.path.basename(log_path)
    ]
    if existing:
        return

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.addFilter(CorrelationIdFilter())
    file_handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(file_handler)
