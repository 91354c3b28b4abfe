"""Credential providers for s3signer.

A provider hands out an immutable ``Credentials`` snapshot, or ``None`` when
it has nothing to offer.  The signer turns ``None`` into
``MissingCredentialsError``; no provider ever substitutes an empty key.
"""

import logging
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from s3signer.clock import Clock, utc_now
from s3signer.errors import MissingCredentialsError
from s3signer.secret import Secret

logger = logging.getLogger(__name__)

ENV_ACCESS_KEY = "AWS_ACCESS_KEY_ID"
ENV_SECRET_KEY = "AWS_SECRET_ACCESS_KEY"
ENV_SESSION_TOKEN = "AWS_SESSION_TOKEN"

# Refresh temporary credentials this long before they expire.
REFRESH_MARGIN = timedelta(minutes=5)


@dataclass(frozen=True)
class Credentials:
    """An access key / secret key pair with optional session token.

    Attributes:
        access_key: The access key ID.
        secret_key: The secret access key (masked in repr).
        session_token: Session token for temporary credentials.
        expiration: When temporary credentials stop being valid.
    """

    access_key: str
    secret_key: Secret
    session_token: str | None = field(default=None, repr=False)
    expiration: datetime | None = None

    def __post_init__(self) -> None:
        if not self.access_key:
            raise MissingCredentialsError("Access key is empty.", field="access_key")
        if not isinstance(self.secret_key, Secret):
            object.__setattr__(self, "secret_key", Secret(self.secret_key))
        if not self.secret_key:
            raise MissingCredentialsError("Secret key is empty.", field="secret_key")

    @classmethod
    def create(
        cls,
        access_key: str,
        secret_key: str | bytes,
        session_token: str | None = None,
        expiration: datetime | None = None,
    ) -> "Credentials":
        return cls(access_key, Secret(secret_key), session_token or None, expiration)


class CredentialProvider(Protocol):
    """Anything that can supply credentials for one signing operation."""

    def get_credentials(self) -> Credentials | None: ...


class StaticCredentialProvider:
    """Returns the same credentials every time."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def get_credentials(self) -> Credentials | None:
        return self._credentials


class EnvironmentCredentialProvider:
    """Reads ``AWS_ACCESS_KEY_ID`` / ``AWS_SECRET_ACCESS_KEY`` / ``AWS_SESSION_TOKEN``.

    A partial pair (only one of the two keys set) is reported as an error
    rather than ignored.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def get_credentials(self) -> Credentials | None:
        access_key = self._environ.get(ENV_ACCESS_KEY, "")
        secret_key = self._environ.get(ENV_SECRET_KEY, "")
        if not access_key and not secret_key:
            return None
        if not access_key:
            raise MissingCredentialsError(
                f"{ENV_SECRET_KEY} is set but {ENV_ACCESS_KEY} is not.", field="access_key"
            )
        if not secret_key:
            raise MissingCredentialsError(
                f"{ENV_ACCESS_KEY} is set but {ENV_SECRET_KEY} is not.", field="secret_key"
            )
        return Credentials.create(
            access_key, secret_key, self._environ.get(ENV_SESSION_TOKEN) or None
        )


class RefreshableCredentialProvider:
    """Caches credentials from a refresh callable and renews them near expiry.

    The current credentials are an immutable snapshot swapped in a single
    assignment.  Refreshes are serialized by a lock (single writer);
    ``get_credentials`` reads the snapshot without locking unless a refresh
    is due.
    """

    def __init__(
        self,
        refresh: Callable[[], Credentials | None],
        clock: Clock = utc_now,
        margin: timedelta = REFRESH_MARGIN,
    ) -> None:
        self._refresh = refresh
        self._clock = clock
        self._margin = margin
        self._snapshot: Credentials | None = None
        self._lock = threading.Lock()

    def _needs_refresh(self, snapshot: Credentials | None) -> bool:
        if snapshot is None:
            return True
        if snapshot.expiration is None:
            return False
        return self._clock() >= snapshot.expiration - self._margin

    def get_credentials(self) -> Credentials | None:
        snapshot = self._snapshot
        if not self._needs_refresh(snapshot):
            return snapshot
        with self._lock:
            # Another thread may have refreshed while we waited.
            snapshot = self._snapshot
            if self._needs_refresh(snapshot):
                logger.debug("Refreshing credentials")
                snapshot = self._refresh()
                self._snapshot = snapshot
        return snapshot

    def invalidate(self) -> None:
        """Force the next ``get_credentials`` call to refresh."""
        with self._lock:
            self._snapshot = None


class ChainCredentialProvider:
    """Tries each provider in order and returns the first credentials found."""

    def __init__(self, *providers: CredentialProvider) -> None:
        self._providers = providers

    def get_credentials(self) -> Credentials | None:
        for provider in self._providers:
            credentials = provider.get_credentials()
            if credentials is not None:
                logger.debug("Using credentials from %s", type(provider).__name__)
                return credentials
        return None
