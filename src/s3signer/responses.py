"""Response classification: map HTTP status and body to success or a typed error."""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from s3signer.errors import ErrorResponse, MalformedErrorResponse
from s3signer.xml_utils import parse_error

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 204)

_KNOWN_FIELDS = {"code", "message", "resource", "requestid", "hostid"}


@dataclass(frozen=True)
class ErrorMessage:
    """A structured error decoded from a non-success response body.

    Attributes:
        code: Error code (e.g. "AccessDenied").
        message: Human-readable description.
        resource: The bucket or object the error refers to.
        request_id: Server request ID, for support.
        host_id: Server host ID, for support.
        extra: Any other fields (e.g. BucketName, ServerTime).
    """

    code: str
    message: str = ""
    resource: str = ""
    request_id: str = ""
    host_id: str = ""
    extra: dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_fields(cls, fields: dict[str, object]) -> "ErrorMessage | None":
        """Build from a flat field dict; keys are matched case-insensitively."""
        lowered = {str(k).lower(): v for k, v in fields.items()}
        code = lowered.get("code")
        if not isinstance(code, str) or not code:
            return None
        return cls(
            code=code,
            message=str(lowered.get("message") or ""),
            resource=str(lowered.get("resource") or ""),
            request_id=str(lowered.get("requestid") or ""),
            host_id=str(lowered.get("hostid") or ""),
            extra={
                str(k): str(v)
                for k, v in fields.items()
                if str(k).lower() not in _KNOWN_FIELDS and isinstance(v, (str, int, float))
            },
        )


def _decode_json(body: bytes) -> ErrorMessage | None:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    nested = data.get("Error")
    if isinstance(nested, dict):
        data = nested
    return ErrorMessage.from_fields(data)


def decode_error_message(body: bytes | str | None) -> ErrorMessage | None:
    """Decode an ErrorMessage from an XML or JSON error body.

    Returns:
        The ErrorMessage, or None if the body carries no error code.
    """
    if not body:
        return None
    if isinstance(body, str):
        body = body.encode("utf-8")
    stripped = body.lstrip()
    if stripped.startswith(b"<"):
        fields = parse_error(stripped)
        return ErrorMessage.from_fields(fields) if fields is not None else None
    if stripped.startswith((b"{", b"[")):
        return _decode_json(stripped)
    return None


def classify(
    status: int,
    body: bytes | str | None,
    success: Iterable[int] = SUCCESS_STATUSES,
) -> None:
    """Classify a response.

    Success statuses pass regardless of body content.

    Args:
        status: HTTP status code.
        body: Raw response body.
        success: Statuses treated as success (default 200 and 204).

    Raises:
        ErrorResponse: Non-success status with a decodable error body.
        MalformedErrorResponse: Non-success status with an undecodable body.
    """
    if status in tuple(success):
        return

    raw = body.encode("utf-8") if isinstance(body, str) else (body or b"")
    error = decode_error_message(raw)
    if error is None:
        logger.debug("HTTP %d with undecodable body (%d bytes)", status, len(raw))
        raise MalformedErrorResponse(status, raw)
    raise ErrorResponse(status, error)
