"""SigV4 signature computation: credential scope, string to sign, HMAC key chain."""

import hashlib
import hmac
import logging
import os
import re
import threading
from dataclasses import dataclass

from s3signer.canonical import CanonicalRequest
from s3signer.clock import parse_timestamp
from s3signer.credentials import Credentials
from s3signer.errors import SigningError
from s3signer.secret import Secret, wipe

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"

_DATE_RE = re.compile(r"^\d{8}$")


@dataclass(frozen=True)
class CredentialScope:
    """The (date, region, service) triple a signature is bound to."""

    date: str
    region: str
    service: str
    terminator: str = SCOPE_TERMINATOR

    def __post_init__(self) -> None:
        if not _DATE_RE.match(self.date):
            raise SigningError(f"Scope date must be YYYYMMDD, got {self.date!r}", field="date")
        if not self.region:
            raise SigningError("Scope region is empty.", field="region")
        if not self.service:
            raise SigningError("Scope service is empty.", field="service")

    @classmethod
    def for_timestamp(cls, timestamp: str, region: str, service: str) -> "CredentialScope":
        return cls(date=timestamp[:8], region=region, service=service)

    def __str__(self) -> str:
        return f"{self.date}/{self.region}/{self.service}/{self.terminator}"


def _hmac(key: bytes | bytearray, msg: str) -> bytearray:
    return bytearray(hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest())


def derive_signing_key(
    secret_key: Secret | str, date: str, region: str, service: str
) -> bytearray:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Intermediate keys are wiped once the next link is derived.  The caller
    owns the returned buffer and should ``wipe`` it after use.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: Region identifier.
        service: Signing service name.

    Returns:
        The 32-byte signing key.

    Raises:
        SigningError: If the secret key is empty.
    """
    if not isinstance(secret_key, Secret):
        secret_key = Secret(secret_key)
    if not secret_key:
        raise SigningError("Secret key is empty.", field="secret_key")

    with secret_key.prefixed(KEY_PREFIX.encode("utf-8")) as k_secret:
        key = _hmac(k_secret, date)
    for part in (region, service, SCOPE_TERMINATOR):
        next_key = _hmac(key, part)
        wipe(key)
        key = next_key
    return key


def build_string_to_sign(timestamp: str, scope: CredentialScope, canonical_request: str) -> str:
    """Build the string to sign.

    Args:
        timestamp: SigV4 timestamp (YYYYMMDDTHHMMSSZ).
        scope: The credential scope.
        canonical_request: The canonical request text.
    """
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"


class SigningKeyCache:
    """Per-day cache of derived signing keys.

    Keys are stable for a calendar day, so the four-step HMAC chain only
    needs to run once per (credentials, date, region, service).  Entries are
    keyed by the access key plus a salted fingerprint of the secret, so a
    secret rotated under the same access key gets a fresh derivation.
    Entries are wiped when evicted; ``get`` hands out copies.
    """

    def __init__(self, max_entries: int = 100) -> None:
        self._max_entries = max_entries
        self._salt = os.urandom(32)
        self._entries: dict[tuple[str, bytes, str, str, str], bytearray] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, credentials: Credentials, scope: CredentialScope) -> bytearray:
        cache_key = (
            credentials.access_key,
            credentials.secret_key.fingerprint(self._salt),
            scope.date,
            scope.region,
            scope.service,
        )
        with self._lock:
            cached = self._entries.get(cache_key)
            if cached is not None:
                return bytearray(cached)

        signing_key = derive_signing_key(
            credentials.secret_key, scope.date, scope.region, scope.service
        )
        with self._lock:
            if len(self._entries) >= self._max_entries:
                self._clear_locked()
            self._entries[cache_key] = bytearray(signing_key)
        return signing_key

    def clear(self) -> None:
        with self._lock:
            self._clear_locked()

    def _clear_locked(self) -> None:
        for key in self._entries.values():
            wipe(key)
        self._entries.clear()


class SignatureEngine:
    """Computes SigV4 signatures from canonical requests.

    Attributes:
        key_cache: Optional SigningKeyCache shared across signing calls.
    """

    def __init__(self, key_cache: SigningKeyCache | None = None) -> None:
        self.key_cache = key_cache

    def compute_signature(
        self,
        canonical_request: CanonicalRequest | str,
        credentials: Credentials,
        scope: CredentialScope,
        timestamp: str,
    ) -> str:
        """Compute the hex-encoded signature.

        Args:
            canonical_request: The canonical request (or its text).
            credentials: Credentials whose secret key roots the key chain.
            scope: Credential scope; its date must match the timestamp's.
            timestamp: SigV4 timestamp (YYYYMMDDTHHMMSSZ).

        Returns:
            64-character lowercase hex string.

        Raises:
            SigningError: If the secret key is empty, the timestamp is
                unparsable, or the scope date differs from the timestamp date.
        """
        if not credentials.secret_key:
            raise SigningError("Secret key is empty.", field="secret_key")
        parse_timestamp(timestamp)
        if timestamp[:8] != scope.date:
            raise SigningError(
                f"Scope date {scope.date} does not match timestamp {timestamp}.",
                field="scope",
            )

        string_to_sign = build_string_to_sign(timestamp, scope, str(canonical_request))
        logger.debug("StringToSign:\n%s", string_to_sign)

        if self.key_cache is not None:
            signing_key = self.key_cache.get(credentials, scope)
        else:
            signing_key = derive_signing_key(
                credentials.secret_key, scope.date, scope.region, scope.service
            )
        try:
            return hmac.new(
                signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
            ).hexdigest()
        finally:
            wipe(signing_key)
