"""Timestamp formatting and injectable clock sources for SigV4 signing."""

import logging
import re
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from s3signer.errors import SigningError

logger = logging.getLogger(__name__)

# Provider constants (AWS SigV4)
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
CLOCK_SKEW_TOLERANCE = 900  # 15 minutes in seconds

# strptime accepts short digit fields, so the exact shape is checked first.
_TIMESTAMP_RE = re.compile(r"\d{8}T\d{6}Z")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current wall-clock time in UTC."""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as a SigV4 timestamp (YYYYMMDDTHHMMSSZ).

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a SigV4 timestamp into an aware UTC datetime.

    Raises:
        SigningError: If the value is not in YYYYMMDDTHHMMSSZ format.
    """
    if not isinstance(value, str) or not _TIMESTAMP_RE.fullmatch(value):
        raise SigningError(f"Unparsable timestamp: {value!r}", field="timestamp")
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise SigningError(f"Unparsable timestamp: {value!r}", field="timestamp") from None


def fixed_clock(moment: datetime | str) -> Clock:
    """Return a clock that always reports the same instant.

    Args:
        moment: A datetime or a SigV4 timestamp string.
    """
    if isinstance(moment, str):
        moment = parse_timestamp(moment)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return lambda: moment


def is_within_skew(timestamp: str, now: datetime, tolerance: int = CLOCK_SKEW_TOLERANCE) -> bool:
    """Check whether a SigV4 timestamp is within the server's skew window."""
    diff = abs((now - parse_timestamp(timestamp)).total_seconds())
    return diff <= tolerance


class SkewAdjustedClock:
    """A clock with a correction offset learned from server responses.

    The offset is a single float replaced atomically, so readers on other
    threads always observe either the old or the new correction.
    """

    def __init__(self, base: Clock = utc_now) -> None:
        self._base = base
        self._offset = 0.0
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        return self._base() + timedelta(seconds=self._offset)

    @property
    def offset(self) -> float:
        return self._offset

    def reset(self) -> None:
        with self._lock:
            self._offset = 0.0

    def adjust(self, server_date: str) -> bool:
        """Adjust the offset from a server ``Date`` header value.

        Returns:
            True if the local clock was off by more than the skew tolerance
            and the offset changed.
        """
        try:
            server_time = parsedate_to_datetime(server_date)
        except (TypeError, ValueError):
            logger.warning("Ignoring unparsable server Date header: %r", server_date)
            return False
        if server_time.tzinfo is None:
            server_time = server_time.replace(tzinfo=timezone.utc)

        skew = (server_time - self._base()).total_seconds()
        if abs(skew - self._offset) <= CLOCK_SKEW_TOLERANCE:
            return False
        with self._lock:
            self._offset = skew
        logger.warning("Local clock is skewed by %.0f seconds; correcting", skew)
        return True
