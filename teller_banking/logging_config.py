"""
Structured Logging Module

Teller operations, account lifecycle changes and authorization failures are
logged as structured records: who acted (user_id), what they did (action)
and on what (resource), plus free-form extra data. Credentials never reach
the output; any extra key naming one is redacted.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


STRUCTURED_FIELDS = ("user_id", "action", "resource")

SECRET_KEYS = frozenset({
    "password", "new_password", "password_hash", "password_salt",
    "token", "reset_token", "authorization", "jwt_secret",
})

REDACTED = "[REDACTED]"


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `data` with credential values masked, nested dicts included"""
    result = {}
    for key, value in data.items():
        if key.lower() in SECRET_KEYS:
            result[key] = REDACTED
        elif isinstance(value, dict):
            result[key] = redact(value)
        else:
            result[key] = value
    return result


def _structured(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {name: getattr(record, name, None) for name in STRUCTURED_FIELDS}
    fields = {k: v for k, v in fields.items() if v is not None}
    extra = getattr(record, "extra", None)
    if extra:
        fields["extra"] = redact(extra)
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_structured(record))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Plain line with the structured fields appended as key=value pairs"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        fields = _structured(record)
        extra = fields.pop("extra", {})
        pairs = [f"{key}={value}" for key, value in fields.items()]
        pairs += [f"{key}={json.dumps(value, default=str)}" for key, value in extra.items()]
        if pairs:
            line = f"{line} [{' '.join(pairs)}]"
        return line


def setup_logging(level: str = "INFO", logger_name: str = "teller",
                  fmt: str = "json") -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        fmt: "json" for structured output, "text" for key=value lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(KeyValueFormatter() if fmt == "text" else JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "teller") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an action taken by (or refused to) a principal.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: ID of the principal performing the action
        action: Action being performed, e.g. "account_debit"
        resource: Account, transaction or user id acted upon
        extra: Additional structured data; credential keys are redacted
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )
    for name, value in (("user_id", user_id), ("action", action),
                        ("resource", resource), ("extra", extra)):
        if value:
            setattr(record, name, value)

    logger.handle(record)
