"""s3signer - AWS Signature Version 4 signing and an async client for S3-compatible storage."""

from s3signer.canonical import (
    EMPTY_SHA256,
    STREAMING_PAYLOAD,
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    canonicalize,
    hash_payload,
)
from s3signer.client import S3Client, build_client
from s3signer.clock import SkewAdjustedClock, fixed_clock
from s3signer.credentials import (
    ChainCredentialProvider,
    Credentials,
    EnvironmentCredentialProvider,
    RefreshableCredentialProvider,
    StaticCredentialProvider,
)
from s3signer.models import File, Location
from s3signer.regions import Endpoint, Region, RegionConfig
from s3signer.responses import ErrorMessage, classify
from s3signer.signature import CredentialScope, SignatureEngine, SigningKeyCache
from s3signer.signer import RequestSigner, SignedRequest, UnsignedRequest

__version__ = "0.1.0"

__all__ = [
    "EMPTY_SHA256",
    "STREAMING_PAYLOAD",
    "UNSIGNED_PAYLOAD",
    "CanonicalRequest",
    "ChainCredentialProvider",
    "CredentialScope",
    "Credentials",
    "Endpoint",
    "EnvironmentCredentialProvider",
    "ErrorMessage",
    "File",
    "Location",
    "RefreshableCredentialProvider",
    "Region",
    "RegionConfig",
    "RequestSigner",
    "S3Client",
    "SignatureEngine",
    "SignedRequest",
    "SigningKeyCache",
    "SkewAdjustedClock",
    "StaticCredentialProvider",
    "UnsignedRequest",
    "build_client",
    "canonicalize",
    "classify",
    "fixed_clock",
    "hash_payload",
]
