"""Result types returned by the S3 client.

These dataclasses are decoded from S3 XML response bodies and headers by
``s3signer.xml_utils`` and ``s3signer.client``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


class Location(Protocol):
    """Anything that resolves to a bucket and a path inside it.

    ``bucket`` may be None, in which case the client's default bucket is used.
    """

    @property
    def bucket(self) -> str | None: ...

    @property
    def path(self) -> str: ...


@dataclass(frozen=True)
class File:
    """A file location: object key within an (optional) bucket.

    Attributes:
        path: The object key, without a leading slash.
        bucket: Bucket name; None means the client's default bucket.
    """

    path: str
    bucket: str | None = None


@dataclass
class BucketInfo:
    """A bucket entry from ListAllMyBuckets.

    Attributes:
        name: The bucket name.
        created_at: ISO 8601 creation timestamp.
    """

    name: str
    created_at: str = ""


@dataclass
class ObjectInfo:
    """An object entry from ListObjectsV2.

    Attributes:
        key: The object key.
        size: Size in bytes.
        etag: Quoted ETag as returned by the server.
        last_modified: ISO 8601 last-modified timestamp.
        storage_class: S3 storage class.
    """

    key: str
    size: int = 0
    etag: str = ""
    last_modified: str = ""
    storage_class: str = "STANDARD"


@dataclass
class ListObjectsResult:
    """One page of a ListObjectsV2 response."""

    bucket: str
    prefix: str = ""
    objects: list[ObjectInfo] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: str | None = None
    key_count: int = 0


@dataclass
class ObjectHead:
    """Headers describing an object (HEAD / GET responses).

    Attributes:
        size: Content-Length.
        content_type: MIME type.
        etag: Quoted ETag.
        last_modified: Last-Modified header (RFC 7231 date).
        metadata: User metadata (``x-amz-meta-*`` headers, prefix stripped).
    """

    size: int = 0
    content_type: str = ""
    etag: str = ""
    last_modified: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectData:
    """A downloaded object."""

    body: bytes
    head: ObjectHead


@dataclass
class CompletedPart:
    """A part reference for CompleteMultipartUpload."""

    part_number: int
    etag: str


@dataclass
class Grant:
    """One ACL grant.

    Attributes:
        grantee_type: 'CanonicalUser' or 'Group'.
        grantee: Canonical user ID or group URI.
        permission: e.g. 'READ', 'FULL_CONTROL'.
        display_name: Grantee display name, if any.
    """

    grantee_type: str
    grantee: str
    permission: str
    display_name: str = ""


@dataclass
class AccessControlPolicy:
    """An object or bucket ACL."""

    owner_id: str = ""
    owner_display_name: str = ""
    grants: list[Grant] = field(default_factory=list)
