"""Logging setup for s3signer: text or single-line JSON output on stderr."""

import json
import logging
import re
import sys
from datetime import datetime, timezone

# Attributes passed via ``extra=`` by the client and copied into JSON output.
CONTEXT_FIELDS = (
    "operation",
    "method",
    "url",
    "status",
    "attempt",
    "duration_ms",
    "request_id",
)

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Signatures and session tokens that may appear inside logged URLs or headers.
_SENSITIVE = re.compile(
    r"((?:X-Amz-Signature|Signature|X-Amz-Security-Token)=)[^&,\s]+",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Mask signature and session-token values in a log message."""
    return _SENSITIVE.sub(r"\1<redacted>", text)


class RedactingFilter(logging.Filter):
    """Rewrites each record's message with signature values masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg, record.args = masked, None
        if isinstance(getattr(record, "url", None), str):
            record.url = redact(record.url)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp (ISO 8601 UTC), level, logger, message, exception when
    present, and whichever ``CONTEXT_FIELDS`` the record carries.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, object] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO", fmt: str = "text", logger_name: str = "s3signer"
) -> logging.Handler:
    """Attach a single stderr handler to the library logger.

    The root logger is left alone so host applications keep control of
    their own output; records handled here do not propagate to it.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        fmt: 'text' for human-readable lines, 'json' for JSONFormatter.
        logger_name: Logger to configure.

    Returns:
        The installed handler.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger(logger_name)
    logger.setLevel(numeric_level)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.addFilter(RedactingFilter())
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False
    return handler
