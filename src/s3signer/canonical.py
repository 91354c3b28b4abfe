"""Canonical request construction for AWS Signature Version 4.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
    - https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
"""

import hashlib
import re
import urllib.parse
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from s3signer.errors import CanonicalizationError

# Payload hash sentinels
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

# RFC 7230 token characters (header names and methods)
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_SPACES_RE = re.compile(r" +")
_ESCAPE_RE = re.compile(r"(%[0-9A-Fa-f]{2})")

QueryParams = Mapping[str, str | None] | Iterable[tuple[str, str | None]]
HeaderValue = str | Sequence[str]
Headers = Mapping[str, HeaderValue] | Iterable[tuple[str, HeaderValue]]


@dataclass(frozen=True)
class CanonicalRequest:
    """The canonical form of one HTTP request.

    Attributes:
        method: HTTP method (uppercase).
        canonical_uri: URI-encoded absolute path.
        canonical_query_string: Sorted, encoded query string.
        canonical_headers: ``name:value\\n`` lines for every signed header.
        signed_headers: Semicolon-separated signed header names.
        payload_hash: Hex SHA-256 of the body or a payload sentinel.
    """

    method: str
    canonical_uri: str
    canonical_query_string: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    @property
    def text(self) -> str:
        """The canonical request string that gets hashed into the string to sign."""
        return "\n".join(
            [
                self.method,
                self.canonical_uri,
                self.canonical_query_string,
                self.canonical_headers,
                self.signed_headers,
                self.payload_hash,
            ]
        )

    def __str__(self) -> str:
        return self.text


def canonicalize(
    method: str,
    path: str,
    query: QueryParams | None,
    headers: Headers,
    payload_hash: str,
    signed_headers: Iterable[str] | None = None,
) -> CanonicalRequest:
    """Build the canonical request.

    Args:
        method: HTTP method.
        path: Raw (not yet encoded) absolute request path.
        query: Query parameters as a mapping or sequence of pairs.
        headers: Request headers as a mapping or sequence of pairs; values may
            be lists for repeated headers.
        payload_hash: Hex SHA-256 of the body, or UNSIGNED-PAYLOAD / streaming
            sentinel.
        signed_headers: Restrict signing to these header names.  ``host`` is
            always signed.  Defaults to every header given.

    Returns:
        The CanonicalRequest.

    Raises:
        CanonicalizationError: On an empty/invalid method, relative path,
            invalid header name or value, missing host header, or empty
            payload hash.
    """
    if not method:
        raise CanonicalizationError("HTTP method is empty.", field="method")
    if not _TOKEN_RE.match(method):
        raise CanonicalizationError(f"Invalid HTTP method: {method!r}", field="method")
    if not path.startswith("/"):
        raise CanonicalizationError(f"Path is not absolute: {path!r}", field="path")
    if not payload_hash:
        raise CanonicalizationError("Payload hash is empty.", field="payload_hash")

    normalized = normalize_headers(headers)
    if "host" not in normalized:
        raise CanonicalizationError("The host header is required.", field="headers")

    if signed_headers is None:
        names = sorted(normalized)
    else:
        wanted = {name.lower() for name in signed_headers} | {"host"}
        missing = wanted - normalized.keys()
        if missing:
            raise CanonicalizationError(
                f"Signed headers not present on request: {', '.join(sorted(missing))}",
                field="headers",
            )
        names = sorted(wanted)

    canonical_headers = "".join(f"{name}:{normalized[name]}\n" for name in names)

    return CanonicalRequest(
        method=method.upper(),
        canonical_uri=uri_encode_path(path),
        canonical_query_string=canonical_query_string(query),
        canonical_headers=canonical_headers,
        signed_headers=";".join(names),
        payload_hash=payload_hash,
    )


def hash_payload(body: bytes | None) -> str:
    """Return the hex SHA-256 of a request body."""
    if not body:
        return EMPTY_SHA256
    return hashlib.sha256(body).hexdigest()


def uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).

    Args:
        s: The string to encode.
        encode_slash: If True (default), '/' is encoded as %2F.

    Returns:
        The URI-encoded string.
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def _encode_path_segment(segment: str) -> str:
    # Existing %XX escapes (e.g. an encoded '/' inside a key) pass through
    # with uppercase hex; everything between them is encoded.
    parts = _ESCAPE_RE.split(segment)
    return "".join(
        part.upper() if i % 2 else uri_encode(part) for i, part in enumerate(parts)
    )


def uri_encode_path(path: str) -> str:
    """URI-encode a path segment by segment, preserving forward slashes.

    Percent escapes already present in a segment are kept as they are, so
    ``/bucket/a%2Fb`` stays a single encoded segment.
    """
    if not path:
        return "/"
    result = "/".join(_encode_path_segment(seg) for seg in path.split("/"))
    if not result.startswith("/"):
        result = "/" + result
    return result


def _query_pairs(query: QueryParams | None) -> list[tuple[str, str]]:
    if not query:
        return []
    items = query.items() if isinstance(query, Mapping) else query
    return [(str(name), "" if value is None else str(value)) for name, value in items]


def canonical_query_string(query: QueryParams | None) -> str:
    """Build the canonical query string.

    Names and values are URI-encoded, then sorted by encoded name and, for
    repeated names, by encoded value.  Parameters with no value render as
    ``name=``.
    """
    encoded = sorted(
        (uri_encode(name), uri_encode(value)) for name, value in _query_pairs(query)
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def trim_header_value(value: str) -> str:
    """Strip a header value and collapse sequential spaces to one."""
    return _SPACES_RE.sub(" ", value.strip())


def normalize_headers(headers: Headers) -> dict[str, str]:
    """Lower-case header names, trim values, and join repeated headers with commas.

    Raises:
        CanonicalizationError: If a name is not an RFC 7230 token, a value is
            not a string (or sequence of strings), or a value contains CR/LF.
    """
    items = headers.items() if isinstance(headers, Mapping) else headers
    result: dict[str, str] = {}
    for name, value in items:
        if not isinstance(name, str) or not _TOKEN_RE.match(name):
            raise CanonicalizationError(f"Invalid header name: {name!r}", field="headers")
        if isinstance(value, str):
            values = [value]
        elif isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
            values = list(value)
        else:
            values = None
        if values is None or not all(isinstance(v, str) for v in values):
            raise CanonicalizationError(
                f"Header {name!r} value must be a string, got {type(value).__name__}",
                field="headers",
            )
        for v in values:
            if "\r" in v or "\n" in v:
                raise CanonicalizationError(
                    f"Header {name!r} contains a line break.", field="headers"
                )
        lower_name = name.lower()
        joined = ",".join(trim_header_value(v) for v in values)
        if lower_name in result:
            result[lower_name] += "," + joined
        else:
            result[lower_name] = joined
    return result
