"""Async S3 client facade.

Builds requests for individual S3 operations, signs every attempt with the
injected RequestSigner, sends them with httpx, and classifies responses.
"""

import dataclasses
import logging
import mimetypes
import time
from collections.abc import Iterable
from pathlib import Path

import httpx

from s3signer import metrics
from s3signer.canonical import uri_encode
from s3signer.clock import SkewAdjustedClock
from s3signer.config import S3SignerConfig, build_credential_provider
from s3signer.errors import (
    BadStringDataError,
    ErrorResponse,
    InvalidUrlError,
    MissingDataError,
    RequestTimeoutError,
    ResponseError,
    TransportError,
)
from s3signer.models import (
    AccessControlPolicy,
    BucketInfo,
    CompletedPart,
    File,
    ListObjectsResult,
    Location,
    ObjectData,
    ObjectHead,
)
from s3signer.regions import DEFAULT_REGION, Endpoint, RegionConfig
from s3signer.responses import SUCCESS_STATUSES, classify, decode_error_message
from s3signer.signer import RequestSigner, UnsignedRequest
from s3signer.xml_utils import (
    parse_access_control_policy,
    parse_complete_multipart_upload,
    parse_copy_object_result,
    parse_initiate_multipart_upload,
    parse_list_buckets,
    parse_list_objects_v2,
    render_complete_multipart_upload,
    render_create_bucket_configuration,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
CLOCK_SKEW_ERROR = "RequestTimeTooSkewed"
_META_PREFIX = "x-amz-meta-"


def _as_location(location: Location | str) -> Location:
    return File(location) if isinstance(location, str) else location


class S3Client:
    """Async client for an S3-compatible service.

    Attributes:
        signer: The RequestSigner used for every request.
        region: Default region identifier.
        default_bucket: Bucket used when a call or location names none.
        endpoint: Custom endpoint for S3-compatible stores.
        addressing_style: 'path' (``host/bucket/key``) or 'virtual'
            (``bucket.host/key``).
        service: Signing service name.
        max_attempts: Attempts per request on transport failures.
        presign_expires: Default pre-signed URL lifetime in seconds.
    """

    def __init__(
        self,
        signer: RequestSigner,
        region: str = DEFAULT_REGION,
        *,
        default_bucket: str = "",
        endpoint: str | None = None,
        addressing_style: str = "path",
        service: str = "s3",
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int = 3,
        timeout: float = 30.0,
        presign_expires: int = 3600,
    ) -> None:
        if addressing_style not in ("path", "virtual"):
            raise ValueError(f"Unknown addressing style: {addressing_style!r}")
        self.signer = signer
        self.region = region
        self.default_bucket = default_bucket
        self.endpoint = endpoint or None
        self.addressing_style = addressing_style
        self.service = service
        self.max_attempts = max(1, max_attempts)
        self.presign_expires = presign_expires
        self._owns_http = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "S3Client":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying httpx client if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    # -- URL helpers -----------------------------------------------------------

    def _resolve(self, region: str | None = None) -> Endpoint:
        return self.signer.regions.resolve(region or self.region, self.endpoint)

    def _bucket(self, bucket: str | None) -> str:
        name = bucket or self.default_bucket
        if not name:
            raise InvalidUrlError("No bucket given and no default bucket configured.")
        return name

    def _target(
        self, bucket: str | None, key: str = "", region: str | None = None
    ) -> tuple[Endpoint, str]:
        """Return the endpoint and raw request path for a bucket/key."""
        endpoint = self._resolve(region)
        key = key.lstrip("/")
        if bucket is None:
            return endpoint, "/"
        if self.addressing_style == "virtual":
            endpoint = dataclasses.replace(endpoint, host=f"{bucket}.{endpoint.host}")
            return endpoint, "/" + key
        return endpoint, f"/{bucket}/{key}" if key else f"/{bucket}"

    def url(self, bucket: str | None = None, region: str | None = None) -> str:
        """Base URL for a region, or for a bucket in it (with trailing slash)."""
        endpoint, path = self._target(bucket, region=region)
        if bucket is not None and not path.endswith("/"):
            path += "/"
        return _checked_url(f"{endpoint.base_url}{path}")

    def file_url(self, location: Location | str) -> str:
        """URL of an object; the default bucket is used if the location has none."""
        location = _as_location(location)
        endpoint, path = self._target(self._bucket(location.bucket), location.path)
        encoded = "/".join(uri_encode(seg) for seg in path.split("/"))
        return _checked_url(f"{endpoint.base_url}{encoded}")

    @staticmethod
    def mime_type(path: str | Path) -> str:
        """Guess the content type of a file from its name."""
        guessed, _ = mimetypes.guess_type(str(path))
        return guessed or DEFAULT_CONTENT_TYPE

    # -- Dispatch --------------------------------------------------------------

    def _record(self, operation: str, status: str, start: float) -> None:
        if metrics.requests_total is not None:
            metrics.requests_total.labels(operation=operation, status=status).inc()
        if metrics.request_duration_seconds is not None:
            metrics.request_duration_seconds.labels(operation=operation).observe(
                time.monotonic() - start
            )

    def _retry_metric(self, reason: str) -> None:
        if metrics.retries_total is not None:
            metrics.retries_total.labels(reason=reason).inc()

    def _correct_clock(self, response: httpx.Response) -> bool:
        clock = self.signer.clock
        server_date = response.headers.get("date")
        if not isinstance(clock, SkewAdjustedClock) or not server_date:
            return False
        return clock.adjust(server_date)

    async def _send(
        self,
        operation: str,
        method: str,
        bucket: str | None,
        key: str = "",
        *,
        query: Iterable[tuple[str, str | None]] = (),
        headers: Iterable[tuple[str, str]] = (),
        body: bytes = b"",
        success: Iterable[int] = SUCCESS_STATUSES,
        region: str | None = None,
    ) -> httpx.Response:
        """Sign, send and classify one operation, retrying transport failures.

        Each attempt is signed with a fresh timestamp.

        Raises:
            TransportError: All attempts failed to reach the server.
            ErrorResponse: Server-reported error.
            MalformedErrorResponse: Error response with an undecodable body.
        """
        endpoint, path = self._target(bucket, key, region)
        request = UnsignedRequest(method, path, tuple(query), tuple(headers), body)
        success = tuple(success)
        start = time.monotonic()
        skew_corrected = False
        attempt = 0

        while True:
            attempt += 1
            signed = self.signer.sign(request, endpoint, self.service)
            logger.debug(
                "%s %s (attempt %d)",
                signed.method,
                signed.url,
                attempt,
                extra={"operation": operation, "attempt": attempt},
            )
            try:
                response = await self._http.request(
                    signed.method,
                    signed.url,
                    headers=list(signed.headers),
                    content=signed.body,
                )
            except httpx.TransportError as exc:
                if isinstance(exc, httpx.TimeoutException):
                    wrapped: TransportError = RequestTimeoutError(str(exc) or "Request timed out")
                else:
                    wrapped = TransportError(str(exc) or type(exc).__name__)
                if attempt >= self.max_attempts:
                    self._record(operation, "transport_error", start)
                    raise wrapped from exc
                logger.warning(
                    "%s attempt %d failed: %s; retrying",
                    operation,
                    attempt,
                    wrapped.message,
                    extra={"operation": operation, "attempt": attempt},
                )
                self._retry_metric("transport")
                continue

            try:
                classify(response.status_code, response.content, success)
            except ErrorResponse as exc:
                if (
                    exc.error.code == CLOCK_SKEW_ERROR
                    and not skew_corrected
                    and self._correct_clock(response)
                ):
                    skew_corrected = True
                    self._retry_metric("clock_skew")
                    continue
                self._record(operation, str(response.status_code), start)
                logger.info(
                    "%s failed: %s",
                    operation,
                    exc.message,
                    extra={
                        "operation": operation,
                        "status": response.status_code,
                        "request_id": exc.error.request_id or None,
                    },
                )
                raise
            except ResponseError:
                self._record(operation, str(response.status_code), start)
                raise

            self._record(operation, str(response.status_code), start)
            return response

    # -- Buckets ---------------------------------------------------------------

    async def list_buckets(self) -> list[BucketInfo]:
        """List all buckets owned by the caller."""
        response = await self._send("ListBuckets", "GET", None)
        return parse_list_buckets(_require_body(response))

    async def create_bucket(
        self, bucket: str | None = None, region: str | None = None, acl: str | None = None
    ) -> None:
        """Create a bucket; a LocationConstraint is sent for non us-east-1 regions."""
        region = region or self.region
        headers = [("x-amz-acl", acl)] if acl else []
        body = render_create_bucket_configuration(region).encode("utf-8")
        if body:
            headers.append(("Content-Type", "application/xml"))
        await self._send(
            "CreateBucket", "PUT", self._bucket(bucket), headers=headers, body=body, region=region
        )

    async def delete_bucket(self, bucket: str | None = None) -> None:
        await self._send("DeleteBucket", "DELETE", self._bucket(bucket))

    async def list_objects(
        self,
        bucket: str | None = None,
        prefix: str = "",
        delimiter: str | None = None,
        max_keys: int | None = None,
        continuation_token: str | None = None,
    ) -> ListObjectsResult:
        """List one page of objects (ListObjectsV2)."""
        query: list[tuple[str, str | None]] = [("list-type", "2")]
        if prefix:
            query.append(("prefix", prefix))
        if delimiter:
            query.append(("delimiter", delimiter))
        if max_keys is not None:
            query.append(("max-keys", str(max_keys)))
        if continuation_token:
            query.append(("continuation-token", continuation_token))
        response = await self._send("ListObjectsV2", "GET", self._bucket(bucket), query=query)
        return parse_list_objects_v2(_require_body(response))

    # -- Objects ---------------------------------------------------------------

    async def put_object(
        self,
        location: Location | str,
        data: bytes,
        content_type: str | None = None,
        acl: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Upload an object.

        Returns:
            The ETag of the stored object.
        """
        location = _as_location(location)
        headers = [("Content-Type", content_type or self.mime_type(location.path))]
        if acl:
            headers.append(("x-amz-acl", acl))
        for name, value in (metadata or {}).items():
            headers.append((_META_PREFIX + name.lower(), value))
        response = await self._send(
            "PutObject",
            "PUT",
            self._bucket(location.bucket),
            location.path,
            headers=headers,
            body=data,
        )
        return response.headers.get("etag", "")

    async def upload_file(
        self, path: str | Path, location: Location | str | None = None, acl: str | None = None
    ) -> str:
        """Upload a local file; the object key defaults to the file name."""
        path = Path(path)
        target = _as_location(location) if location is not None else File(path.name)
        return await self.put_object(
            target, path.read_bytes(), content_type=self.mime_type(path), acl=acl
        )

    async def get_object(
        self, location: Location | str, byte_range: tuple[int, int] | None = None
    ) -> ObjectData:
        """Download an object, optionally a byte range (inclusive bounds)."""
        location = _as_location(location)
        headers = []
        if byte_range is not None:
            headers.append(("Range", f"bytes={byte_range[0]}-{byte_range[1]}"))
        response = await self._send(
            "GetObject",
            "GET",
            self._bucket(location.bucket),
            location.path,
            headers=headers,
            success=(200, 206),
        )
        return ObjectData(body=response.content, head=_object_head(response))

    async def get_string(self, location: Location | str, encoding: str = "utf-8") -> str:
        """Download an object and decode it as text."""
        data = await self.get_object(location)
        try:
            return data.body.decode(encoding)
        except UnicodeDecodeError:
            raise BadStringDataError(f"Object body is not valid {encoding}.") from None

    async def head_object(self, location: Location | str) -> ObjectHead:
        location = _as_location(location)
        response = await self._send(
            "HeadObject", "HEAD", self._bucket(location.bucket), location.path
        )
        return _object_head(response)

    async def object_exists(self, location: Location | str) -> bool:
        """Return False for a 404 on HEAD; other errors propagate."""
        try:
            await self.head_object(location)
        except ResponseError as exc:
            if exc.status == 404:
                return False
            raise
        return True

    async def delete_object(self, location: Location | str) -> None:
        location = _as_location(location)
        await self._send("DeleteObject", "DELETE", self._bucket(location.bucket), location.path)

    async def copy_object(
        self, source: Location | str, destination: Location | str
    ) -> tuple[str, str]:
        """Server-side copy.

        Returns:
            (etag, last_modified) of the new object.
        """
        source = _as_location(source)
        destination = _as_location(destination)
        copy_source = "/" + uri_encode(
            f"{self._bucket(source.bucket)}/{source.path.lstrip('/')}", encode_slash=False
        )
        response = await self._send(
            "CopyObject",
            "PUT",
            self._bucket(destination.bucket),
            destination.path,
            headers=[("x-amz-copy-source", copy_source)],
        )
        body = _require_body(response)
        _raise_embedded_error(response, body)
        return parse_copy_object_result(body)

    # -- ACLs ------------------------------------------------------------------

    async def get_object_acl(self, location: Location | str) -> AccessControlPolicy:
        location = _as_location(location)
        response = await self._send(
            "GetObjectAcl",
            "GET",
            self._bucket(location.bucket),
            location.path,
            query=[("acl", None)],
        )
        return parse_access_control_policy(_require_body(response))

    async def put_object_acl(self, location: Location | str, acl: str) -> None:
        """Apply a canned ACL (e.g. 'private', 'public-read') to an object."""
        location = _as_location(location)
        await self._send(
            "PutObjectAcl",
            "PUT",
            self._bucket(location.bucket),
            location.path,
            query=[("acl", None)],
            headers=[("x-amz-acl", acl)],
        )

    # -- Multipart upload ------------------------------------------------------

    async def create_multipart_upload(
        self, location: Location | str, content_type: str | None = None
    ) -> str:
        """Start a multipart upload and return its upload ID."""
        location = _as_location(location)
        response = await self._send(
            "CreateMultipartUpload",
            "POST",
            self._bucket(location.bucket),
            location.path,
            query=[("uploads", None)],
            headers=[("Content-Type", content_type or self.mime_type(location.path))],
        )
        upload_id = parse_initiate_multipart_upload(_require_body(response))
        if not upload_id:
            raise MissingDataError("InitiateMultipartUploadResult has no UploadId.")
        return upload_id

    async def upload_part(
        self, location: Location | str, upload_id: str, part_number: int, data: bytes
    ) -> CompletedPart:
        location = _as_location(location)
        response = await self._send(
            "UploadPart",
            "PUT",
            self._bucket(location.bucket),
            location.path,
            query=[("partNumber", str(part_number)), ("uploadId", upload_id)],
            body=data,
        )
        return CompletedPart(part_number=part_number, etag=response.headers.get("etag", ""))

    async def complete_multipart_upload(
        self, location: Location | str, upload_id: str, parts: list[CompletedPart]
    ) -> str:
        """Assemble uploaded parts; returns the final ETag.

        S3 may report a failure with status 200 and an Error body; that is
        raised as ErrorResponse.
        """
        location = _as_location(location)
        response = await self._send(
            "CompleteMultipartUpload",
            "POST",
            self._bucket(location.bucket),
            location.path,
            query=[("uploadId", upload_id)],
            headers=[("Content-Type", "application/xml")],
            body=render_complete_multipart_upload(parts).encode("utf-8"),
        )
        body = _require_body(response)
        _raise_embedded_error(response, body)
        return parse_complete_multipart_upload(body)

    async def abort_multipart_upload(self, location: Location | str, upload_id: str) -> None:
        location = _as_location(location)
        await self._send(
            "AbortMultipartUpload",
            "DELETE",
            self._bucket(location.bucket),
            location.path,
            query=[("uploadId", upload_id)],
        )

    # -- Pre-signed URLs -------------------------------------------------------

    def presign_url(
        self, location: Location | str, method: str = "GET", expires: int | None = None
    ) -> str:
        """Return a pre-signed URL granting time-limited access to an object."""
        location = _as_location(location)
        endpoint, path = self._target(self._bucket(location.bucket), location.path)
        signed = self.signer.presign(
            UnsignedRequest(method, path),
            endpoint,
            expires=expires if expires is not None else self.presign_expires,
            service=self.service,
        )
        return signed.url


def _checked_url(url: str) -> str:
    try:
        httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise InvalidUrlError(f"Invalid URL {url!r}: {exc}") from None
    return url


def _require_body(response: httpx.Response) -> bytes:
    if not response.content:
        raise MissingDataError()
    return response.content


def _raise_embedded_error(response: httpx.Response, body: bytes) -> None:
    error = decode_error_message(body)
    if error is not None:
        raise ErrorResponse(response.status_code, error)


def _object_head(response: httpx.Response) -> ObjectHead:
    headers = response.headers
    return ObjectHead(
        size=int(headers.get("content-length", "0") or 0),
        content_type=headers.get("content-type", ""),
        etag=headers.get("etag", ""),
        last_modified=headers.get("last-modified", ""),
        metadata={
            name[len(_META_PREFIX):]: value
            for name, value in headers.items()
            if name.lower().startswith(_META_PREFIX)
        },
    )


def build_client(config: S3SignerConfig, http_client: httpx.AsyncClient | None = None) -> S3Client:
    """Wire a client from configuration: provider, regions, clock, signer.

    Every collaborator is created here and handed down explicitly.
    """
    regions = RegionConfig(host_override=config.s3.endpoint or None)
    signer = RequestSigner(
        build_credential_provider(config.credentials),
        regions,
        clock=SkewAdjustedClock(),
    )
    return S3Client(
        signer,
        config.s3.region,
        default_bucket=config.s3.default_bucket,
        endpoint=config.s3.endpoint or None,
        addressing_style=config.s3.addressing_style,
        service=config.s3.service,
        http_client=http_client,
        max_attempts=config.client.max_attempts,
        timeout=config.client.timeout,
        presign_expires=config.client.presign_expires,
    )
