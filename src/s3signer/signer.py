"""Request signing for AWS Signature Version 4.

Produces either a header-signed request (``Authorization`` header) or a
pre-signed URL (signature carried in the query string) from an unsigned
request descriptor.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sigv4-query-string-auth.html
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from s3signer import metrics
from s3signer.canonical import (
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    Headers,
    QueryParams,
    canonical_query_string,
    canonicalize,
    hash_payload,
    normalize_headers,
    uri_encode_path,
)
from s3signer.clock import Clock, format_timestamp, parse_timestamp, utc_now
from s3signer.credentials import CredentialProvider, Credentials
from s3signer.errors import InvalidExpiryError, InvalidRegionError, MissingCredentialsError
from s3signer.regions import Endpoint, RegionConfig, parse_host_override
from s3signer.signature import ALGORITHM, CredentialScope, SignatureEngine, SigningKeyCache

logger = logging.getLogger(__name__)

DEFAULT_PRESIGNED_EXPIRES = 3600
MAX_PRESIGNED_EXPIRES = 604800  # 7 days in seconds

# Headers never included in the signature.
UNSIGNED_HEADERS = frozenset(
    {"authorization", "expect", "transfer-encoding", "user-agent", "x-amzn-trace-id"}
)
# Headers the signer owns; caller-supplied values are replaced.
_SIGNER_HEADERS = frozenset(
    {"host", "authorization", "x-amz-date", "x-amz-content-sha256", "x-amz-security-token"}
)
_AUTH_QUERY_PARAMS = frozenset(
    {
        "x-amz-algorithm",
        "x-amz-credential",
        "x-amz-date",
        "x-amz-expires",
        "x-amz-signedheaders",
        "x-amz-signature",
        "x-amz-security-token",
    }
)


def _pairs(items: Mapping | Iterable | None) -> tuple[tuple[str, object], ...]:
    if not items:
        return ()
    if isinstance(items, Mapping):
        items = items.items()
    return tuple((name, value) for name, value in items)


@dataclass(frozen=True)
class UnsignedRequest:
    """An outgoing request before signing.

    Attributes:
        method: HTTP method.
        path: Raw absolute path (e.g. '/bucket/key with spaces.txt').
        query: Query parameters; a ``None`` value renders as ``name=``.
        headers: Request headers; values may be lists for repeated headers.
        body: Request body bytes.
        payload_hash: Explicit payload hash or sentinel.  Defaults to the
            SHA-256 of ``body``.
    """

    method: str
    path: str
    query: QueryParams = ()
    headers: Headers = ()
    body: bytes = b""
    payload_hash: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "query", _pairs(self.query))
        object.__setattr__(self, "headers", _pairs(self.headers))


@dataclass(frozen=True)
class SignedRequest:
    """A request ready for dispatch.  Immutable once produced."""

    method: str
    scheme: str
    host: str
    path: str
    query: tuple[tuple[str, str | None], ...]
    headers: tuple[tuple[str, str], ...]
    body: bytes
    signature: str
    timestamp: str
    expires: int | None = None
    canonical_request: CanonicalRequest | None = field(default=None, repr=False, compare=False)

    @property
    def url(self) -> str:
        """Full URL including the encoded path and (for pre-signed URLs) the signature."""
        url = f"{self.scheme}://{self.host}{uri_encode_path(self.path)}"
        if self.query:
            url += "?" + canonical_query_string(self.query)
        return url

    def header_dict(self) -> dict[str, str]:
        """Headers as a dict; repeated headers are joined with commas."""
        result: dict[str, str] = {}
        for name, value in self.headers:
            result[name] = f"{result[name]},{value}" if name in result else value
        return result

    @property
    def authorization(self) -> str | None:
        for name, value in self.headers:
            if name.lower() == "authorization":
                return value
        return None


def validate_expiry(expires: int | timedelta | None) -> int:
    """Normalize a pre-signed URL expiry to whole seconds.

    Raises:
        InvalidExpiryError: If the expiry is not an integer number of seconds
            in 1..MAX_PRESIGNED_EXPIRES.
    """
    if expires is None:
        return DEFAULT_PRESIGNED_EXPIRES
    seconds = expires.total_seconds() if isinstance(expires, timedelta) else expires
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise InvalidExpiryError(expires, MAX_PRESIGNED_EXPIRES)
    if seconds != int(seconds) or not 1 <= seconds <= MAX_PRESIGNED_EXPIRES:
        raise InvalidExpiryError(expires, MAX_PRESIGNED_EXPIRES)
    return int(seconds)


class RequestSigner:
    """Signs requests with credentials from a provider.

    Constructed once and passed explicitly to every client that needs it.

    Attributes:
        credentials: The credential provider.
        regions: Region table used to resolve hosts and signing services.
        clock: Clock used when no explicit timestamp is given.
        engine: The SignatureEngine.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        regions: RegionConfig | None = None,
        clock: Clock = utc_now,
        key_cache: SigningKeyCache | None = None,
    ) -> None:
        self.credentials = credentials
        self.regions = regions or RegionConfig()
        self.clock = clock
        self.engine = SignatureEngine(key_cache)

    def _resolve_credentials(self, credentials: Credentials | None) -> Credentials:
        if credentials is not None:
            return credentials
        resolved = self.credentials.get_credentials()
        if resolved is None:
            raise MissingCredentialsError()
        return resolved

    def _resolve_endpoint(self, region: str | Endpoint, host_override: str | None) -> Endpoint:
        if not isinstance(region, Endpoint):
            endpoint = self.regions.resolve(region, host_override)
        elif host_override:
            scheme, host = parse_host_override(host_override)
            endpoint = replace(region, scheme=scheme, host=host)
        else:
            endpoint = region
        if not endpoint.host:
            raise InvalidRegionError(endpoint.region)
        return endpoint

    def _timestamp(self, timestamp: str | datetime | None) -> str:
        if timestamp is None:
            return format_timestamp(self.clock())
        if isinstance(timestamp, datetime):
            return format_timestamp(timestamp)
        parse_timestamp(timestamp)
        return timestamp

    def sign(
        self,
        request: UnsignedRequest,
        region: str | Endpoint,
        service: str | None = None,
        *,
        for_query: bool = False,
        expires: int | timedelta | None = None,
        credentials: Credentials | None = None,
        timestamp: str | datetime | None = None,
        host_override: str | None = None,
    ) -> SignedRequest:
        """Sign a request.

        Args:
            request: The unsigned request.
            region: Region identifier or an already-resolved Endpoint.
            service: Signing service; defaults to the region's.
            for_query: Produce a pre-signed URL instead of an Authorization header.
            expires: Pre-signed URL lifetime (query mode only).
            credentials: Use these instead of asking the provider.
            timestamp: Fixed signing time; defaults to the clock.
            host_override: Custom endpoint for S3-compatible stores; also
                replaces the host of an Endpoint passed as ``region``.

        Returns:
            The SignedRequest.

        Raises:
            MissingCredentialsError: The provider has no credentials.
            UnknownRegionError: The region is not registered.
            InvalidRegionError: The region has no host.
            InvalidExpiryError: Query-mode expiry out of range.
            CanonicalizationError: Malformed request.
            SigningError: Unparsable timestamp or unusable secret.
        """
        endpoint = self._resolve_endpoint(region, host_override)
        service = service or endpoint.signing_service
        expires_seconds = validate_expiry(expires) if for_query else None
        creds = self._resolve_credentials(credentials)
        amz_date = self._timestamp(timestamp)
        scope = CredentialScope.for_timestamp(amz_date, endpoint.region, service)

        headers = [
            (name, value)
            for name, value in request.headers
            if name.lower() not in _SIGNER_HEADERS
        ]
        headers.insert(0, ("Host", endpoint.host))

        if for_query:
            signed = self._sign_query(
                request, endpoint, creds, scope, amz_date, headers, expires_seconds
            )
        else:
            signed = self._sign_headers(request, endpoint, creds, scope, amz_date, headers)

        if metrics.signatures_total is not None:
            metrics.signatures_total.labels(mode="query" if for_query else "header").inc()
        return signed

    def presign(
        self,
        request: UnsignedRequest,
        region: str | Endpoint,
        expires: int | timedelta | None = None,
        **kwargs,
    ) -> SignedRequest:
        """Shorthand for ``sign(..., for_query=True)``."""
        return self.sign(request, region, for_query=True, expires=expires, **kwargs)

    def _sign_headers(
        self,
        request: UnsignedRequest,
        endpoint: Endpoint,
        creds: Credentials,
        scope: CredentialScope,
        amz_date: str,
        headers: list[tuple[str, object]],
    ) -> SignedRequest:
        payload_hash = request.payload_hash or _header(request.headers, "x-amz-content-sha256")
        if not payload_hash:
            payload_hash = hash_payload(request.body)

        headers.append(("X-Amz-Date", amz_date))
        if scope.service == "s3":
            headers.append(("X-Amz-Content-SHA256", payload_hash))
        if creds.session_token:
            headers.append(("X-Amz-Security-Token", creds.session_token))

        canonical = self._canonicalize(request, request.query, headers, payload_hash)
        signature = self.engine.compute_signature(canonical, creds, scope, amz_date)
        authorization = (
            f"{ALGORITHM} Credential={creds.access_key}/{scope}, "
            f"SignedHeaders={canonical.signed_headers}, Signature={signature}"
        )
        headers.append(("Authorization", authorization))

        return SignedRequest(
            method=canonical.method,
            scheme=endpoint.scheme,
            host=endpoint.host,
            path=request.path,
            query=tuple(request.query),
            headers=_flatten(headers),
            body=request.body,
            signature=signature,
            timestamp=amz_date,
            canonical_request=canonical,
        )

    def _sign_query(
        self,
        request: UnsignedRequest,
        endpoint: Endpoint,
        creds: Credentials,
        scope: CredentialScope,
        amz_date: str,
        headers: list[tuple[str, object]],
        expires: int,
    ) -> SignedRequest:
        payload_hash = request.payload_hash or UNSIGNED_PAYLOAD
        signable = [(n, v) for n, v in headers if n.lower() not in UNSIGNED_HEADERS]
        signed_headers = ";".join(sorted(normalize_headers(signable)))

        query = [
            (name, value)
            for name, value in request.query
            if name.lower() not in _AUTH_QUERY_PARAMS
        ]
        query.extend(
            [
                ("X-Amz-Algorithm", ALGORITHM),
                ("X-Amz-Credential", f"{creds.access_key}/{scope}"),
                ("X-Amz-Date", amz_date),
                ("X-Amz-Expires", str(expires)),
                ("X-Amz-SignedHeaders", signed_headers),
            ]
        )
        if creds.session_token:
            query.append(("X-Amz-Security-Token", creds.session_token))

        canonical = self._canonicalize(request, query, headers, payload_hash)
        signature = self.engine.compute_signature(canonical, creds, scope, amz_date)
        query.append(("X-Amz-Signature", signature))

        return SignedRequest(
            method=canonical.method,
            scheme=endpoint.scheme,
            host=endpoint.host,
            path=request.path,
            query=tuple(query),
            headers=_flatten(headers),
            body=request.body,
            signature=signature,
            timestamp=amz_date,
            expires=expires,
            canonical_request=canonical,
        )

    def _canonicalize(
        self,
        request: UnsignedRequest,
        query: QueryParams,
        headers: list[tuple[str, object]],
        payload_hash: str,
    ) -> CanonicalRequest:
        signable = [(n, v) for n, v in headers if n.lower() not in UNSIGNED_HEADERS]
        canonical = canonicalize(request.method, request.path, query, signable, payload_hash)
        logger.debug("CanonicalRequest:\n%s", canonical.text)
        return canonical


def _header(headers: Iterable[tuple[str, object]], name: str) -> str | None:
    for header_name, value in headers:
        if header_name.lower() == name:
            return value if isinstance(value, str) else ",".join(value)
    return None


def _flatten(headers: list[tuple[str, object]]) -> tuple[tuple[str, str], ...]:
    result: list[tuple[str, str]] = []
    for name, value in headers:
        if isinstance(value, str):
            result.append((name, value))
        else:
            result.extend((name, v) for v in value)
    return tuple(result)
