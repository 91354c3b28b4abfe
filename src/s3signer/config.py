"""Configuration loading and Pydantic models for s3signer."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

from s3signer.credentials import (
    ChainCredentialProvider,
    CredentialProvider,
    Credentials,
    EnvironmentCredentialProvider,
    StaticCredentialProvider,
)
from s3signer.signer import MAX_PRESIGNED_EXPIRES


class S3Config(BaseModel):
    """Target service configuration."""

    region: str = "us-east-1"
    endpoint: str = ""
    default_bucket: str = ""
    addressing_style: Literal["path", "virtual"] = "path"
    service: str = "s3"


class CredentialsConfig(BaseModel):
    """Credential source configuration.

    ``source: static`` uses the keys below; ``source: env`` reads the
    standard AWS environment variables, falling back to the keys below if
    they are set.
    """

    source: Literal["static", "env"] = "static"
    access_key: str = ""
    secret_key: SecretStr = SecretStr("")
    session_token: SecretStr | None = None


class ClientConfig(BaseModel):
    """HTTP client behaviour."""

    timeout: float = 30.0
    max_attempts: int = Field(default=3, ge=1)
    presign_expires: int = 3600

    @field_validator("presign_expires")
    @classmethod
    def _check_expires(cls, value: int) -> int:
        if not 1 <= value <= MAX_PRESIGNED_EXPIRES:
            raise ValueError(f"presign_expires must be between 1 and {MAX_PRESIGNED_EXPIRES}")
        return value


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: Literal["text", "json"] = "text"


class S3SignerConfig(BaseModel):
    """Top-level s3signer configuration."""

    s3: S3Config = Field(default_factory=S3Config)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _section(data: Any) -> dict[str, Any]:
    """Return a YAML section as a dict, treating a missing/null section as empty."""
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if v is not None}


def load_config(path: Path) -> S3SignerConfig:
    """Load an S3SignerConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated S3SignerConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return S3SignerConfig(
        s3=S3Config(**_section(raw.get("s3"))),
        credentials=CredentialsConfig(**_section(raw.get("credentials"))),
        client=ClientConfig(**_section(raw.get("client"))),
        logging=LoggingConfig(**_section(raw.get("logging"))),
    )


def build_credential_provider(config: CredentialsConfig) -> CredentialProvider:
    """Build the credential provider described by the configuration.

    A static source with no keys yields a provider that reports no
    credentials; signing then fails with MissingCredentialsError.
    """
    static: CredentialProvider | None = None
    if config.access_key or config.secret_key.get_secret_value():
        token = config.session_token.get_secret_value() if config.session_token else None
        static = StaticCredentialProvider(
            Credentials.create(config.access_key, config.secret_key.get_secret_value(), token)
        )

    if config.source == "env":
        if static is None:
            return EnvironmentCredentialProvider()
        return ChainCredentialProvider(EnvironmentCredentialProvider(), static)
    return static if static is not None else ChainCredentialProvider()
