"""Tests for the async S3 client facade, using httpx.MockTransport as the server."""

import hashlib
import json
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotoCredentials
from prometheus_client import REGISTRY

from s3signer import metrics
from s3signer.client import S3Client, build_client
from s3signer.clock import SkewAdjustedClock, fixed_clock, format_timestamp
from s3signer.config import S3SignerConfig
from s3signer.credentials import Credentials, StaticCredentialProvider
from s3signer.errors import (
    BadStringDataError,
    ErrorResponse,
    InvalidExpiryError,
    InvalidUrlError,
    MalformedErrorResponse,
    MissingDataError,
    RequestTimeoutError,
    TransportError,
)
from s3signer.models import CompletedPart, File
from s3signer.regions import RegionConfig
from s3signer.signer import RequestSigner

from .conftest import ACCESS_KEY, SECRET_KEY

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TickingClock:
    """Advances one second every time it is read."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def _verify_signature(request: httpx.Request, region: str = "us-east-1") -> None:
    """Recompute the signature of a received request with botocore."""
    authorization = request.headers["authorization"]
    signed_names = authorization.split("SignedHeaders=")[1].split(",")[0].split(";")
    headers = {name: request.headers[name] for name in signed_names}
    aws_request = AWSRequest(method=request.method, url=str(request.url), headers=headers)
    aws_request.context["timestamp"] = request.headers["x-amz-date"]
    auth = S3SigV4Auth(BotoCredentials(ACCESS_KEY, SECRET_KEY), "s3", region)
    canonical = auth.canonical_request(aws_request)
    expected = auth.signature(auth.string_to_sign(aws_request, canonical), aws_request)
    assert authorization.endswith(f"Signature={expected}")


def _make_client(handler, clock=None, **kwargs) -> S3Client:
    signer = RequestSigner(
        StaticCredentialProvider(Credentials.create(ACCESS_KEY, SECRET_KEY)),
        RegionConfig(),
        clock=clock or fixed_clock(NOW),
    )
    kwargs.setdefault("default_bucket", "demo")
    return S3Client(
        signer,
        "us-east-1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


def _error_xml(code: str, message: str = "") -> bytes:
    return (
        f"<Error><Code>{code}</Code><Message>{message}</Message>"
        f"<RequestId>req-1</RequestId></Error>"
    ).encode()


# ---- URL helpers -----------------------------------------------------------


class TestUrls:
    """Tests for url(), file_url() and mime_type()."""

    def test_region_url(self):
        client = _make_client(lambda r: httpx.Response(200))
        assert client.url() == "https://s3.amazonaws.com/"
        assert client.url(region="eu-west-1") == "https://s3.eu-west-1.amazonaws.com/"

    def test_bucket_url(self):
        client = _make_client(lambda r: httpx.Response(200))
        assert client.url("demo") == "https://s3.amazonaws.com/demo/"

    def test_file_url_default_bucket(self):
        client = _make_client(lambda r: httpx.Response(200))
        assert client.file_url("photos/a b.jpg") == "https://s3.amazonaws.com/demo/photos/a%20b.jpg"
        assert client.file_url(File("/k.txt", bucket="other")) == "https://s3.amazonaws.com/other/k.txt"

    def test_virtual_addressing(self):
        client = _make_client(lambda r: httpx.Response(200), addressing_style="virtual")
        assert client.file_url("k.txt") == "https://demo.s3.amazonaws.com/k.txt"
        assert client.url("demo") == "https://demo.s3.amazonaws.com/"

    def test_custom_endpoint(self):
        client = _make_client(lambda r: httpx.Response(200), endpoint="http://localhost:9000")
        assert client.file_url("k.txt") == "http://localhost:9000/demo/k.txt"

    def test_no_bucket(self):
        client = _make_client(lambda r: httpx.Response(200), default_bucket="")
        with pytest.raises(InvalidUrlError):
            client.file_url("k.txt")

    def test_invalid_endpoint(self):
        client = _make_client(lambda r: httpx.Response(200), endpoint="ftp://nowhere")
        with pytest.raises(InvalidUrlError):
            client.url()

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("notes.txt", "text/plain"),
            ("photo.jpg", "image/jpeg"),
            ("index.html", "text/html"),
            ("blob.unknownext", "application/octet-stream"),
            ("noextension", "application/octet-stream"),
        ],
    )
    def test_mime_type(self, name, expected):
        assert S3Client.mime_type(name) == expected

    def test_bad_addressing_style(self):
        with pytest.raises(ValueError):
            _make_client(lambda r: httpx.Response(200), addressing_style="dns")


# ---- Objects ---------------------------------------------------------------


class TestObjects:
    """Object operations against a mock server."""

    async def test_put_object(self):
        seen = []

        def handler(request):
            seen.append(request)
            _verify_signature(request)
            return httpx.Response(200, headers={"ETag": '"abc"'})

        async with _make_client(handler) as client:
            etag = await client.put_object(
                "notes/hello.txt", b"hello", metadata={"Owner": "jane"}, acl="private"
            )
        assert etag == '"abc"'
        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path == "/demo/notes/hello.txt"
        assert request.content == b"hello"
        assert request.headers["content-type"] == "text/plain"
        assert request.headers["x-amz-meta-owner"] == "jane"
        assert request.headers["x-amz-acl"] == "private"
        assert request.headers["x-amz-content-sha256"] == hashlib.sha256(b"hello").hexdigest()
        assert request.headers["x-amz-date"] == "20240101T000000Z"

    async def test_upload_file(self, tmp_path):
        path = tmp_path / "report.html"
        path.write_bytes(b"<html></html>")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, headers={"ETag": '"e"'})

        async with _make_client(handler) as client:
            await client.upload_file(path)
        assert seen[0].url.path == "/demo/report.html"
        assert seen[0].headers["content-type"] == "text/html"

    async def test_get_object_range(self):
        def handler(request):
            _verify_signature(request)
            assert request.headers["range"] == "bytes=0-9"
            return httpx.Response(
                206,
                content=b"0123456789",
                headers={
                    "Content-Length": "10",
                    "Content-Type": "text/plain",
                    "ETag": '"e"',
                    "x-amz-meta-color": "blue",
                },
            )

        async with _make_client(handler) as client:
            data = await client.get_object("digits.txt", byte_range=(0, 9))
        assert data.body == b"0123456789"
        assert data.head.size == 10
        assert data.head.etag == '"e"'
        assert data.head.metadata == {"color": "blue"}

    async def test_get_string(self):
        async with _make_client(lambda r: httpx.Response(200, content="héllo".encode())) as client:
            assert await client.get_string("k.txt") == "héllo"

    async def test_get_string_bad_data(self):
        async with _make_client(lambda r: httpx.Response(200, content=b"\xff\xfe\xfd")) as client:
            with pytest.raises(BadStringDataError):
                await client.get_string("k.bin")

    async def test_get_missing_object(self):
        handler = lambda r: httpx.Response(404, content=_error_xml("NoSuchKey", "missing"))  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(ErrorResponse) as exc_info:
                await client.get_object("missing.txt")
        assert exc_info.value.status == 404
        assert exc_info.value.error.code == "NoSuchKey"
        assert exc_info.value.error.request_id == "req-1"

    async def test_head_object(self):
        def handler(request):
            _verify_signature(request)
            return httpx.Response(
                200,
                headers={
                    "Content-Length": "1024",
                    "Content-Type": "image/png",
                    "Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT",
                    "x-amz-meta-author": "jane",
                },
            )

        async with _make_client(handler) as client:
            head = await client.head_object("logo.png")
        assert head.size == 1024
        assert head.content_type == "image/png"
        assert head.last_modified == "Mon, 01 Jan 2024 00:00:00 GMT"
        assert head.metadata == {"author": "jane"}

    async def test_object_exists(self):
        def handler(request):
            assert request.method == "HEAD"
            if request.url.path.endswith("present.txt"):
                return httpx.Response(200)
            return httpx.Response(404)

        async with _make_client(handler) as client:
            assert await client.object_exists("present.txt") is True
            assert await client.object_exists("absent.txt") is False

    async def test_object_exists_propagates_other_errors(self):
        body = json.dumps({"Code": "AccessDenied", "RequestId": "abc"}).encode()
        async with _make_client(lambda r: httpx.Response(403, content=body)) as client:
            with pytest.raises(ErrorResponse) as exc_info:
                await client.object_exists("secret.txt")
        assert exc_info.value.error.request_id == "abc"

    async def test_delete_object(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        async with _make_client(handler) as client:
            await client.delete_object(File("k.txt", bucket="other"))
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/other/k.txt"

    async def test_copy_object(self):
        def handler(request):
            _verify_signature(request)
            assert request.headers["x-amz-copy-source"] == "/src/a%20b.txt"
            return httpx.Response(
                200,
                content=b"<CopyObjectResult><ETag>\"c\"</ETag>"
                b"<LastModified>2024-01-01T00:00:00Z</LastModified></CopyObjectResult>",
            )

        async with _make_client(handler) as client:
            etag, modified = await client.copy_object(File("a b.txt", bucket="src"), "dst.txt")
        assert etag == '"c"'
        assert modified == "2024-01-01T00:00:00Z"

    async def test_copy_object_embedded_error(self):
        handler = lambda r: httpx.Response(200, content=_error_xml("InternalError"))  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(ErrorResponse) as exc_info:
                await client.copy_object("a.txt", "b.txt")
        assert exc_info.value.status == 200


# ---- Buckets and listing ---------------------------------------------------


class TestBuckets:
    async def test_list_buckets(self):
        def handler(request):
            _verify_signature(request)
            assert request.url.path == "/"
            return httpx.Response(
                200,
                content=b"<ListAllMyBucketsResult><Buckets>"
                b"<Bucket><Name>demo</Name><CreationDate>2024-01-01</CreationDate></Bucket>"
                b"</Buckets></ListAllMyBucketsResult>",
            )

        async with _make_client(handler) as client:
            buckets = await client.list_buckets()
        assert [b.name for b in buckets] == ["demo"]

    async def test_list_buckets_empty_body(self):
        async with _make_client(lambda r: httpx.Response(200)) as client:
            with pytest.raises(MissingDataError):
                await client.list_buckets()

    async def test_list_objects(self):
        def handler(request):
            _verify_signature(request)
            assert request.url.params["list-type"] == "2"
            assert request.url.params["prefix"] == "photos/"
            assert request.url.params["max-keys"] == "10"
            return httpx.Response(
                200,
                content=b"<ListBucketResult><Name>demo</Name><Contents><Key>photos/a.jpg</Key>"
                b"<Size>1</Size></Contents></ListBucketResult>",
            )

        async with _make_client(handler) as client:
            result = await client.list_objects(prefix="photos/", max_keys=10)
        assert [o.key for o in result.objects] == ["photos/a.jpg"]

    async def test_create_bucket_us_east_1_has_no_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        async with _make_client(handler) as client:
            await client.create_bucket("fresh")
        assert seen[0].method == "PUT"
        assert seen[0].url.path == "/fresh"
        assert seen[0].content == b""

    async def test_create_bucket_other_region(self):
        seen = []

        def handler(request):
            seen.append(request)
            _verify_signature(request, region="eu-west-1")
            return httpx.Response(200)

        async with _make_client(handler) as client:
            await client.create_bucket("fresh", region="eu-west-1")
        assert seen[0].url.host == "s3.eu-west-1.amazonaws.com"
        assert b"<LocationConstraint>eu-west-1</LocationConstraint>" in seen[0].content
        assert "/eu-west-1/s3/aws4_request" in seen[0].headers["authorization"]

    async def test_delete_bucket(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        async with _make_client(handler) as client:
            await client.delete_bucket()
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/demo"


# ---- ACLs and multipart ----------------------------------------------------


class TestAcl:
    async def test_get_object_acl(self):
        def handler(request):
            _verify_signature(request)
            assert request.url.query == b"acl="
            return httpx.Response(
                200,
                content=b"<AccessControlPolicy><Owner><ID>o</ID></Owner><AccessControlList>"
                b"<Grant><Grantee><ID>o</ID></Grantee><Permission>FULL_CONTROL</Permission></Grant>"
                b"</AccessControlList></AccessControlPolicy>",
            )

        async with _make_client(handler) as client:
            policy = await client.get_object_acl("k.txt")
        assert policy.owner_id == "o"
        assert policy.grants[0].permission == "FULL_CONTROL"

    async def test_put_object_acl(self):
        seen = []

        def handler(request):
            seen.append(request)
            _verify_signature(request)
            return httpx.Response(200)

        async with _make_client(handler) as client:
            await client.put_object_acl("k.txt", "public-read")
        assert seen[0].headers["x-amz-acl"] == "public-read"
        assert "x-amz-acl" in seen[0].headers["authorization"]


class TestMultipart:
    """A full multipart upload against a mock server."""

    async def test_upload_flow(self):
        seen = []

        def handler(request):
            seen.append(request)
            _verify_signature(request)
            params = request.url.params
            if request.method == "POST" and "uploads" in params:
                return httpx.Response(
                    200,
                    content=b"<InitiateMultipartUploadResult><UploadId>u-1</UploadId>"
                    b"</InitiateMultipartUploadResult>",
                )
            if request.method == "PUT":
                return httpx.Response(200, headers={"ETag": f'"part-{params["partNumber"]}"'})
            if request.method == "POST":
                assert params["uploadId"] == "u-1"
                assert request.content.index(b'"part-1"') < request.content.index(b'"part-2"')
                return httpx.Response(
                    200,
                    content=b"<CompleteMultipartUploadResult><ETag>\"final-2\"</ETag>"
                    b"</CompleteMultipartUploadResult>",
                )
            return httpx.Response(204)

        async with _make_client(handler) as client:
            upload_id = await client.create_multipart_upload("big.bin")
            second = await client.upload_part("big.bin", upload_id, 2, b"b" * 10)
            first = await client.upload_part("big.bin", upload_id, 1, b"a" * 10)
            etag = await client.complete_multipart_upload("big.bin", upload_id, [second, first])
            await client.abort_multipart_upload("big.bin", upload_id)

        assert upload_id == "u-1"
        assert first == CompletedPart(1, '"part-1"')
        assert etag == '"final-2"'
        assert [r.method for r in seen] == ["POST", "PUT", "PUT", "POST", "DELETE"]

    async def test_complete_with_embedded_error(self):
        handler = lambda r: httpx.Response(200, content=_error_xml("InternalError", "retry"))  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(ErrorResponse) as exc_info:
                await client.complete_multipart_upload("big.bin", "u-1", [CompletedPart(1, '"e"')])
        assert exc_info.value.code == "InternalError"

    async def test_initiate_without_upload_id(self):
        handler = lambda r: httpx.Response(200, content=b"<InitiateMultipartUploadResult/>")  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(MissingDataError):
                await client.create_multipart_upload("big.bin")


# ---- Retries ---------------------------------------------------------------


class TestRetries:
    """Transport retries and clock-skew correction."""

    async def test_transport_failure_resigned_with_new_timestamp(self):
        seen = []

        def handler(request):
            seen.append(request)
            if len(seen) == 1:
                raise httpx.ConnectError("connection refused")
            _verify_signature(request)
            return httpx.Response(200, content=b"ok")

        async with _make_client(handler, clock=TickingClock()) as client:
            data = await client.get_object("k.txt")
        assert data.body == b"ok"
        assert len(seen) == 2
        assert seen[0].headers["x-amz-date"] != seen[1].headers["x-amz-date"]
        assert seen[0].headers["authorization"] != seen[1].headers["authorization"]

    async def test_transport_failure_exhausts_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused")

        async with _make_client(handler, max_attempts=2) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.get_object("k.txt")
        assert len(calls) == 2
        assert exc_info.value.kind == "transportError"
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_timeout_wrapped(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out")

        async with _make_client(handler, max_attempts=1) as client:
            with pytest.raises(RequestTimeoutError):
                await client.get_object("k.txt")

    async def test_server_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, content=b"<html>oops</html>")

        async with _make_client(handler) as client:
            with pytest.raises(MalformedErrorResponse):
                await client.get_object("k.txt")
        assert len(calls) == 1

    async def test_clock_skew_corrected_once(self):
        server_now = NOW + timedelta(hours=1)
        seen = []

        def handler(request):
            seen.append(request)
            if len(seen) == 1:
                return httpx.Response(
                    403,
                    content=_error_xml("RequestTimeTooSkewed"),
                    headers={"Date": format_datetime(server_now, usegmt=True)},
                )
            return httpx.Response(200, content=b"ok")

        clock = SkewAdjustedClock(fixed_clock(NOW))
        async with _make_client(handler, clock=clock) as client:
            await client.get_object("k.txt")
        assert len(seen) == 2
        assert seen[1].headers["x-amz-date"] == format_timestamp(server_now)

    async def test_clock_skew_persisting_raises(self):
        calls = []

        def handler(request):
            calls.append(request)
            skewed = NOW + timedelta(hours=len(calls))
            return httpx.Response(
                403,
                content=_error_xml("RequestTimeTooSkewed"),
                headers={"Date": format_datetime(skewed, usegmt=True)},
            )

        async with _make_client(handler, clock=SkewAdjustedClock(fixed_clock(NOW))) as client:
            with pytest.raises(ErrorResponse) as exc_info:
                await client.get_object("k.txt")
        assert exc_info.value.code == "RequestTimeTooSkewed"
        assert len(calls) == 2

    async def test_metrics_recorded(self):
        metrics.init_metrics()
        labels = {"operation": "DeleteObject", "status": "204"}
        before = REGISTRY.get_sample_value("s3signer_requests_total", labels) or 0.0
        async with _make_client(lambda r: httpx.Response(204)) as client:
            await client.delete_object("k.txt")
        assert REGISTRY.get_sample_value("s3signer_requests_total", labels) == before + 1


# ---- Pre-signed URLs and wiring --------------------------------------------


class TestPresignAndBuild:
    def test_presign_url(self):
        client = _make_client(lambda r: httpx.Response(200))
        url = client.presign_url("photos/a.jpg")
        parsed = httpx.URL(url)
        assert parsed.path == "/demo/photos/a.jpg"
        assert parsed.params["X-Amz-Expires"] == "3600"
        assert parsed.params["X-Amz-SignedHeaders"] == "host"
        assert len(parsed.params["X-Amz-Signature"]) == 64

    def test_presign_url_expiry_limit(self):
        client = _make_client(lambda r: httpx.Response(200))
        assert "X-Amz-Expires=604800" in client.presign_url("k", expires=604800)
        with pytest.raises(InvalidExpiryError):
            client.presign_url("k", expires=604801)

    async def test_build_client(self):
        config = S3SignerConfig.model_validate(
            {
                "s3": {"endpoint": "http://localhost:9000", "default_bucket": "demo"},
                "credentials": {"access_key": ACCESS_KEY, "secret_key": SECRET_KEY},
                "client": {"max_attempts": 2, "presign_expires": 60},
            }
        )
        seen = []

        def handler(request):
            seen.append(request)
            _verify_signature(request)
            return httpx.Response(200, headers={"ETag": '"e"'})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with build_client(config, http_client=http) as client:
            assert client.file_url("k.txt") == "http://localhost:9000/demo/k.txt"
            assert client.max_attempts == 2
            assert isinstance(client.signer.clock, SkewAdjustedClock)
            assert "X-Amz-Expires=60&" in client.presign_url("k.txt")
            await client.put_object("k.txt", b"data")
        assert seen[0].headers["host"] == "localhost:9000"
        await http.aclose()

    async def test_owned_http_client_closed(self):
        signer = RequestSigner(StaticCredentialProvider(Credentials.create(ACCESS_KEY, SECRET_KEY)))
        async with S3Client(signer) as client:
            http = client._http
        assert http.is_closed
