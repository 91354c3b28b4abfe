"""Zeroable in-memory holder for secret key material."""

import hashlib
import hmac
from collections.abc import Iterator
from contextlib import contextmanager

_MASK = "**********"


class Secret:
    """A secret value kept in a mutable buffer that can be wiped.

    The value never appears in ``repr()``/``str()`` output.  ``clear()``
    overwrites the buffer with zeros; a cleared secret is falsy.
    """

    __slots__ = ("_buf",)

    def __init__(self, value: str | bytes | bytearray) -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._buf = bytearray(value)

    def __bool__(self) -> bool:
        return len(self._buf) > 0

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"Secret('{_MASK}')"

    __str__ = __repr__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return hmac.compare_digest(self._buf, other._buf)

    # Mutable (see clear), so unhashable.
    __hash__ = None  # type: ignore[assignment]

    def __del__(self) -> None:
        self.clear()

    def clear(self) -> None:
        """Overwrite the buffer with zeros and empty it."""
        buf = getattr(self, "_buf", None)
        if buf is None:
            return
        wipe(buf)
        del buf[:]

    def fingerprint(self, salt: bytes) -> bytes:
        """HMAC-SHA256 of the value under ``salt``; identifies a secret without revealing it."""
        return hmac.new(salt, self._buf, hashlib.sha256).digest()

    @contextmanager
    def prefixed(self, prefix: bytes) -> Iterator[bytearray]:
        """Yield ``prefix + value`` as a temporary buffer, wiped on exit."""
        key = bytearray(prefix)
        key += self._buf
        try:
            yield key
        finally:
            wipe(key)


def wipe(buf: bytearray) -> None:
    """Zero a bytearray in place."""
    for i in range(len(buf)):
        buf[i] = 0
