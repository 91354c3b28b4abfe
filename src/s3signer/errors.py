"""Error definitions for s3signer.

Every failure surfaced by the library is an ``S3SignerError`` subclass with a
stable ``kind`` (the upward error surface name) and a ``code``.  Errors never
carry secret material.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from s3signer.responses import ErrorMessage


class S3SignerError(Exception):
    """Base class for all s3signer errors.

    Attributes:
        kind: Error surface name (e.g. "unknownRegion", "errorResponse").
        code: Short error code string.
        message: Human-readable error description.
    """

    kind = "error"

    def __init__(self, code: str, message: str) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
        """
        super().__init__(message)
        self.code = code
        self.message = message


# -- Configuration errors ------------------------------------------------------


class ConfigurationError(S3SignerError):
    """Detected before any network call; never retried."""


class InvalidUrlError(ConfigurationError):
    """A request URL or endpoint could not be formed."""

    kind = "invalidUrl"

    def __init__(self, message: str = "Invalid URL") -> None:
        super().__init__(code="InvalidUrl", message=message)


class InvalidRegionError(ConfigurationError):
    """The region has no usable host mapping."""

    kind = "unknownRegion"

    def __init__(self, region: str = "", message: str = "") -> None:
        super().__init__(
            code="InvalidRegion",
            message=message or f"Region '{region}' has no registered host mapping.",
        )
        self.region = region


class UnknownRegionError(InvalidRegionError):
    """The region identifier is not registered."""

    def __init__(self, region: str = "") -> None:
        super().__init__(region=region, message=f"Unknown region: '{region}'.")
        self.code = "UnknownRegion"


class MissingCredentialsError(ConfigurationError):
    """No access key / secret key pair is available."""

    kind = "missingCredentials"

    def __init__(self, message: str = "No credentials available.", field: str = "") -> None:
        super().__init__(code="MissingCredentials", message=message)
        self.field = field


class InvalidExpiryError(ConfigurationError):
    """A pre-signed URL expiry is outside the allowed range."""

    kind = "invalidExpiry"

    def __init__(self, expires: object, maximum: int) -> None:
        super().__init__(
            code="InvalidExpiry",
            message=f"Expiry must be between 1 and {maximum} seconds, got {expires!r}.",
        )
        self.expires = expires
        self.maximum = maximum


# -- Programmer errors ---------------------------------------------------------


class CanonicalizationError(S3SignerError):
    """The request cannot be put into canonical form."""

    kind = "canonicalizationError"

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(code="CanonicalizationError", message=message)
        self.field = field


class SigningError(S3SignerError):
    """The signature cannot be computed from the given inputs."""

    kind = "signingError"

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(code="SigningError", message=message)
        self.field = field


# -- Transport errors ----------------------------------------------------------


class TransportError(S3SignerError):
    """The request could not be delivered (connection failure, timeout).

    Callers may retry with a freshly signed request.
    """

    kind = "transportError"

    def __init__(self, message: str = "Transport failure") -> None:
        super().__init__(code="TransportError", message=message)


class RequestTimeoutError(TransportError):
    """The transport timed out."""

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message)
        self.code = "RequestTimeout"


# -- Server-reported errors ----------------------------------------------------


class ResponseError(S3SignerError):
    """A non-success HTTP response.

    Attributes:
        status: The HTTP status code.
    """

    def __init__(self, code: str, message: str, status: int) -> None:
        super().__init__(code=code, message=message)
        self.status = status


class ErrorResponse(ResponseError):
    """A non-success response with a decodable structured error body."""

    kind = "errorResponse"

    def __init__(self, status: int, error: ErrorMessage) -> None:
        super().__init__(
            code=error.code,
            message=f"{status} {error.code}: {error.message}",
            status=status,
        )
        self.error = error


class MalformedErrorResponse(ResponseError):
    """A non-success response whose body could not be decoded."""

    kind = "malformedResponse"

    def __init__(self, status: int, raw_body: bytes) -> None:
        super().__init__(
            code="MalformedResponse",
            message=f"HTTP {status} with undecodable error body ({len(raw_body)} bytes)",
            status=status,
        )
        self.raw_body = raw_body


class BadStringDataError(S3SignerError):
    """A response body could not be decoded as text."""

    kind = "badStringData"

    def __init__(self, message: str = "Response body is not valid UTF-8.") -> None:
        super().__init__(code="BadStringData", message=message)


class MissingDataError(S3SignerError):
    """An operation expected a response body and received none."""

    kind = "missingData"

    def __init__(self, message: str = "Response body is empty.") -> None:
        super().__init__(code="MissingData", message=message)
