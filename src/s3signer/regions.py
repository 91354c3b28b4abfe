"""Region to endpoint mapping.

A pure lookup table from region identifiers to S3 hosts and signing-service
names, plus explicit host overrides for S3-compatible third-party stores.
"""

import urllib.parse
from dataclasses import dataclass

from s3signer.errors import InvalidRegionError, InvalidUrlError, UnknownRegionError

DEFAULT_REGION = "us-east-1"
DEFAULT_SERVICE = "s3"

_STANDARD_HOST = "s3.{region}.amazonaws.com"
_CHINA_HOST = "s3.{region}.amazonaws.com.cn"


@dataclass(frozen=True)
class Region:
    """A storage region.

    Attributes:
        identifier: Region identifier (e.g. 'eu-west-1').
        host_template: Host name, optionally containing ``{region}``.
        signing_service: Service name used in the credential scope.
    """

    identifier: str
    host_template: str = _STANDARD_HOST
    signing_service: str = DEFAULT_SERVICE

    @property
    def host(self) -> str:
        return self.host_template.format(region=self.identifier)


@dataclass(frozen=True)
class Endpoint:
    """The result of resolving a region: where to send and how to scope."""

    region: str
    host: str
    signing_service: str = DEFAULT_SERVICE
    scheme: str = "https"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


AWS_REGIONS: tuple[Region, ...] = (
    Region("us-east-1", "s3.amazonaws.com"),
    Region("us-east-2"),
    Region("us-west-1"),
    Region("us-west-2"),
    Region("ca-central-1"),
    Region("sa-east-1"),
    Region("eu-central-1"),
    Region("eu-north-1"),
    Region("eu-south-1"),
    Region("eu-west-1"),
    Region("eu-west-2"),
    Region("eu-west-3"),
    Region("af-south-1"),
    Region("me-south-1"),
    Region("ap-east-1"),
    Region("ap-south-1"),
    Region("ap-northeast-1"),
    Region("ap-northeast-2"),
    Region("ap-northeast-3"),
    Region("ap-southeast-1"),
    Region("ap-southeast-2"),
    Region("us-gov-east-1"),
    Region("us-gov-west-1"),
    Region("cn-north-1", _CHINA_HOST),
    Region("cn-northwest-1", _CHINA_HOST),
)


def parse_host_override(override: str) -> tuple[str, str]:
    """Split a custom endpoint into (scheme, host[:port]).

    Accepts ``host``, ``host:port`` or a full URL.  Without a scheme,
    https is assumed.

    Raises:
        InvalidUrlError: If no host can be extracted.
    """
    value = override.strip()
    if "://" not in value:
        value = "https://" + value
    try:
        parts = urllib.parse.urlsplit(value)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid endpoint {override!r}: {exc}") from None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidUrlError(f"Invalid endpoint {override!r}")
    if parts.path not in ("", "/") or parts.query or parts.fragment:
        raise InvalidUrlError(f"Endpoint {override!r} must not contain a path or query")

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    default_port = 443 if parts.scheme == "https" else 80
    if port is not None and port != default_port:
        host = f"{host}:{port}"
    return parts.scheme, host


class RegionConfig:
    """Region lookup table.

    Attributes:
        host_override: Optional custom endpoint applied to every resolution.
    """

    def __init__(
        self,
        regions: tuple[Region, ...] | list[Region] = AWS_REGIONS,
        host_override: str | None = None,
    ) -> None:
        self._regions: dict[str, Region] = {}
        for region in regions:
            self.register(region)
        self.host_override = host_override or None

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._regions

    @property
    def identifiers(self) -> list[str]:
        return sorted(self._regions)

    def register(self, region: Region) -> None:
        """Add or replace a region.

        Raises:
            InvalidRegionError: If the region maps to an empty host.
        """
        if not region.identifier or not region.host:
            raise InvalidRegionError(region.identifier)
        self._regions[region.identifier] = region

    def get(self, identifier: str) -> Region:
        """Return the registered Region.

        Raises:
            UnknownRegionError: If the identifier is not registered.
        """
        try:
            return self._regions[identifier]
        except KeyError:
            raise UnknownRegionError(identifier) from None

    def resolve(self, identifier: str, host_override: str | None = None) -> Endpoint:
        """Resolve a region identifier to an endpoint.

        An explicit override (argument, then instance default) replaces the
        table lookup entirely, so any identifier is accepted for it.

        Raises:
            UnknownRegionError: Unregistered identifier and no override.
            InvalidRegionError: Empty identifier.
            InvalidUrlError: Malformed override.
        """
        if not identifier:
            raise InvalidRegionError(identifier, "Region identifier is empty.")

        override = host_override or self.host_override
        if override:
            scheme, host = parse_host_override(override)
            region = self._regions.get(identifier)
            service = region.signing_service if region else DEFAULT_SERVICE
            return Endpoint(region=identifier, host=host, signing_service=service, scheme=scheme)

        region = self.get(identifier)
        return Endpoint(region=identifier, host=region.host, signing_service=region.signing_service)
