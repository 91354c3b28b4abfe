"""S3 XML request rendering and response parsing helpers."""

from xml.etree import ElementTree
from xml.sax.saxutils import escape as _sax_escape

from s3signer.models import (
    AccessControlPolicy,
    BucketInfo,
    CompletedPart,
    Grant,
    ListObjectsResult,
    ObjectInfo,
)

# S3 XML namespace
S3_XMLNS = "http://s3.amazonaws.com/doc/2006-03-01/"
XSI_XMLNS = "http://www.w3.org/2001/XMLSchema-instance"

_NS = "{" + S3_XMLNS + "}"


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value."""
    return _sax_escape(str(value))


# -- Rendering -----------------------------------------------------------------


def render_create_bucket_configuration(region: str) -> str:
    """Render a CreateBucketConfiguration request body.

    The us-east-1 quirk: buckets in us-east-1 are created with no body at
    all, so an empty string is returned.

    Args:
        region: The region to create the bucket in.

    Returns:
        The XML body, or "" for us-east-1.
    """
    if region == "us-east-1" or not region:
        return ""
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            f'<CreateBucketConfiguration xmlns="{S3_XMLNS}">',
            f"<LocationConstraint>{_escape_xml(region)}</LocationConstraint>",
            "</CreateBucketConfiguration>",
        ]
    )


def render_complete_multipart_upload(parts: list[CompletedPart]) -> str:
    """Render a CompleteMultipartUpload request body.

    Parts are emitted in ascending part-number order, as S3 requires.

    Args:
        parts: The uploaded parts.

    Returns:
        The XML body.
    """
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CompleteMultipartUpload xmlns="{S3_XMLNS}">',
    ]
    for part in sorted(parts, key=lambda p: p.part_number):
        lines.append("<Part>")
        lines.append(f"<PartNumber>{part.part_number}</PartNumber>")
        lines.append(f"<ETag>{_escape_xml(part.etag)}</ETag>")
        lines.append("</Part>")
    lines.append("</CompleteMultipartUpload>")
    return "\n".join(lines)


# -- Parsing -------------------------------------------------------------------


def parse_xml(body: bytes | str) -> ElementTree.Element:
    """Parse an XML document.

    Raises:
        ElementTree.ParseError: If the body is not well-formed XML.
    """
    return ElementTree.fromstring(body)


def _find_elem(parent: ElementTree.Element, name: str) -> ElementTree.Element | None:
    """Find a child element, trying the S3-namespaced name first, then the bare name.

    Uses explicit ``is not None`` checks to avoid ElementTree's deprecated
    truth-value testing of elements.
    """
    elem = parent.find(_NS + name)
    if elem is not None:
        return elem
    return parent.find(name)


def _findall(parent: ElementTree.Element, name: str) -> list[ElementTree.Element]:
    return parent.findall(_NS + name) + parent.findall(name)


def _text(parent: ElementTree.Element, name: str, default: str = "") -> str:
    elem = _find_elem(parent, name)
    if elem is None or elem.text is None:
        return default
    return elem.text


def local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def parse_error(body: bytes | str) -> dict[str, str] | None:
    """Parse an S3 ``<Error>`` document into a flat dict of its child elements.

    Returns:
        The fields keyed by element name, or None if the body is not an
        Error document.
    """
    try:
        root = parse_xml(body)
    except ElementTree.ParseError:
        return None
    if local_name(root.tag) != "Error":
        return None
    return {local_name(child.tag): (child.text or "") for child in root}


def parse_list_buckets(body: bytes | str) -> list[BucketInfo]:
    """Parse a ListAllMyBucketsResult document."""
    root = parse_xml(body)
    buckets_elem = _find_elem(root, "Buckets")
    if buckets_elem is None:
        return []
    return [
        BucketInfo(name=_text(b, "Name"), created_at=_text(b, "CreationDate"))
        for b in _findall(buckets_elem, "Bucket")
    ]


def parse_list_objects_v2(body: bytes | str) -> ListObjectsResult:
    """Parse a ListBucketResult (list-type=2) document."""
    root = parse_xml(body)
    objects = [
        ObjectInfo(
            key=_text(c, "Key"),
            size=int(_text(c, "Size", "0")),
            etag=_text(c, "ETag"),
            last_modified=_text(c, "LastModified"),
            storage_class=_text(c, "StorageClass", "STANDARD"),
        )
        for c in _findall(root, "Contents")
    ]
    prefixes = [_text(p, "Prefix") for p in _findall(root, "CommonPrefixes")]
    return ListObjectsResult(
        bucket=_text(root, "Name"),
        prefix=_text(root, "Prefix"),
        objects=objects,
        common_prefixes=prefixes,
        is_truncated=_text(root, "IsTruncated", "false").lower() == "true",
        next_continuation_token=_text(root, "NextContinuationToken") or None,
        key_count=int(_text(root, "KeyCount", str(len(objects)))),
    )


def parse_initiate_multipart_upload(body: bytes | str) -> str:
    """Return the UploadId from an InitiateMultipartUploadResult document."""
    return _text(parse_xml(body), "UploadId")


def parse_complete_multipart_upload(body: bytes | str) -> str:
    """Return the ETag from a CompleteMultipartUploadResult document."""
    return _text(parse_xml(body), "ETag")


def parse_copy_object_result(body: bytes | str) -> tuple[str, str]:
    """Return (etag, last_modified) from a CopyObjectResult document."""
    root = parse_xml(body)
    return _text(root, "ETag"), _text(root, "LastModified")


def parse_access_control_policy(body: bytes | str) -> AccessControlPolicy:
    """Parse an AccessControlPolicy document."""
    root = parse_xml(body)
    policy = AccessControlPolicy()

    owner_elem = _find_elem(root, "Owner")
    if owner_elem is not None:
        policy.owner_id = _text(owner_elem, "ID")
        policy.owner_display_name = _text(owner_elem, "DisplayName")

    acl_elem = _find_elem(root, "AccessControlList")
    if acl_elem is None:
        return policy
    for grant_elem in _findall(acl_elem, "Grant"):
        grantee_elem = _find_elem(grant_elem, "Grantee")
        if grantee_elem is None:
            continue
        permission = _text(grant_elem, "Permission")
        xsi_type = grantee_elem.get("{" + XSI_XMLNS + "}type", "")
        if xsi_type == "Group" or _find_elem(grantee_elem, "URI") is not None:
            policy.grants.append(Grant("Group", _text(grantee_elem, "URI"), permission))
        else:
            policy.grants.append(
                Grant(
                    "CanonicalUser",
                    _text(grantee_elem, "ID"),
                    permission,
                    display_name=_text(grantee_elem, "DisplayName"),
                )
            )
    return policy
