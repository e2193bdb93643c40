"""Configuration management for Issuer Proxy.

Loads configuration from a YAML file or from flat environment keys and
validates it with Pydantic models. Configuration is immutable once loaded.
"""

from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from issuer_proxy.exceptions import ConfigurationError
from issuer_proxy.issuers.encoding import parse_duration

if TYPE_CHECKING:
    from collections.abc import Mapping


class IssuerKind(str, Enum):
    """Supported certificate authority backends."""

    VAULT = "vault"
    CFSSL = "cfssl"
    AWS = "aws"

    @classmethod
    def parse(cls, text: str) -> IssuerKind:
        """Parse an issuer name, accepting vendor aliases.

        Raises:
            ConfigurationError: If the name is not a supported issuer.
        """
        kind = _ISSUER_ALIASES.get(text.strip().lower())
        if kind is None:
            raise ConfigurationError.invalid_issuer(value=text)
        return kind


_ISSUER_ALIASES = {
    "vault": IssuerKind.VAULT,
    "hashicorp": IssuerKind.VAULT,
    "cfssl": IssuerKind.CFSSL,
    "cloudflare": IssuerKind.CFSSL,
    "aws": IssuerKind.AWS,
    "amazon": IssuerKind.AWS,
    "acmpca": IssuerKind.AWS,
    "awscmpca": IssuerKind.AWS,
}


class AuthMethodKind(str, Enum):
    """Methods for authenticating against Vault."""

    UNKNOWN = "unknown"
    CONSTANT_TOKEN = "constant_token"
    RENEWING_TOKEN = "renewing_token"

    @classmethod
    def parse(cls, text: str) -> AuthMethodKind:
        """Parse an auth method name.

        Unrecognized names resolve to UNKNOWN; the issuer selector rejects
        UNKNOWN when it builds a backend that needs a credential.
        """
        return _AUTH_METHOD_ALIASES.get(text.strip().lower(), cls.UNKNOWN)


_AUTH_METHOD_ALIASES = {
    "constant": AuthMethodKind.CONSTANT_TOKEN,
    "token": AuthMethodKind.CONSTANT_TOKEN,
    "constant_token": AuthMethodKind.CONSTANT_TOKEN,
    "renewing": AuthMethodKind.RENEWING_TOKEN,
    "renewing_token": AuthMethodKind.RENEWING_TOKEN,
}


def _parse_auth_method_kind(value: Any) -> Any:
    if value is None:
        return AuthMethodKind.UNKNOWN
    if isinstance(value, str):
        return AuthMethodKind.parse(value)
    return value


def _parse_duration_value(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


Duration = Annotated[timedelta, BeforeValidator(_parse_duration_value)]


class RenewingTokenConfig(BaseModel):
    """Renewing Vault token configuration.

    The renew_before < time_to_live invariant is checked when the credential
    provider is built, so it surfaces as a ConfigurationError at construction.
    """

    model_config = ConfigDict(frozen=True)

    initial: str = ""
    renew_before: Duration = timedelta(minutes=30)
    time_to_live: Duration = timedelta(hours=24)


class VaultConfig(BaseModel):
    """Vault PKI secrets engine issuer configuration."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    # Deprecated: use auth_method with auth_method_constant_token instead.
    token: str = ""
    auth_method: Annotated[AuthMethodKind, BeforeValidator(_parse_auth_method_kind)] = AuthMethodKind.UNKNOWN
    auth_method_renewing_token: RenewingTokenConfig = RenewingTokenConfig()
    auth_method_constant_token: str = ""
    mount: str = "pki"
    role: str = ""
    ca_cert_path: Path | None = None
    time_to_live: Duration = timedelta(hours=720)
    uri_subject_alternative_names: list[str] = []
    other_subject_alternative_names: list[str] = []


class CFSSLConfig(BaseModel):
    """CFSSL signing server issuer configuration."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    ca_cert_path: Path | None = None
    profile: str = ""
    auth_key: str = ""


class AWSConfig(BaseModel):
    """AWS Private CA issuer configuration."""

    model_config = ConfigDict(frozen=True)

    region: str = ""
    access_key_id: str = ""
    access_key_secret: str = ""
    certificate_authority_arn: str = ""
    time_to_live: Annotated[int, Field(ge=1, le=36500)] = 30


class TLSConfig(BaseModel):
    """TLS configuration for server."""

    model_config = ConfigDict(frozen=True)

    cert_file: Path
    key_file: Path


class ServerConfig(BaseModel):
    """HTTP/S server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 8443
    tls: TLSConfig | None = None


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AuditConfig(BaseModel):
    """Audit logging configuration."""

    model_config = ConfigDict(frozen=True)

    log_file: Path | None = Path("./logs/audit.log")
    log_level: LogLevel = LogLevel.INFO


class Settings(BaseModel):
    """Root configuration model for Issuer Proxy.

    Only the section matching ``issuer`` is used; the others are ignored.
    """

    model_config = ConfigDict(frozen=True)

    issuer: IssuerKind = IssuerKind.VAULT
    vault: VaultConfig = VaultConfig()
    cfssl: CFSSLConfig = CFSSLConfig()
    aws: AWSConfig = AWSConfig()
    server: ServerConfig = ServerConfig()
    audit: AuditConfig = AuditConfig()

    @field_validator("issuer", mode="before")
    @classmethod
    def parse_issuer(cls, v: Any) -> Any:
        """Parse issuer aliases; an empty value means the default."""
        if v is None or v == "":
            return IssuerKind.VAULT
        if isinstance(v, str):
            try:
                return IssuerKind.parse(v)
            except ConfigurationError as e:
                raise ValueError(e.message) from e
        return v


def load_config(config_path: Path | str) -> Settings:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file.

    Returns:
        Validated Settings instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
        pydantic.ValidationError: If configuration validation fails.
    """
    path = Path(config_path)
    with path.open("r") as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def load_config_from_env(
    env_var: str = "ISSUER_PROXY_CONFIG",
    default_paths: list[Path] | None = None,
) -> Settings:
    """Load configuration from environment variable or default paths.

    Args:
        env_var: Environment variable name containing config path.
        default_paths: List of default paths to try if env var not set.

    Returns:
        Validated Settings instance, built from flat environment keys
        when no config file is found.
    """
    config_path = os.environ.get(env_var)
    if config_path:
        return load_config(config_path)

    if default_paths is None:
        default_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/etc/issuer-proxy/config.yaml"),
        ]

    for path in default_paths:
        if path.exists():
            return load_config(path)

    return load_config_from_environ(os.environ)


# Flat environment keys and where they land in the Settings tree
_ENVIRON_KEYS: dict[str, tuple[str, ...]] = {
    "ISSUER": ("issuer",),
    "VAULT_URL": ("vault", "url"),
    "VAULT_TOKEN": ("vault", "token"),
    "VAULT_AUTH_METHOD": ("vault", "auth_method"),
    "VAULT_AUTH_METHOD_RENEWING_TOKEN_INITIAL": ("vault", "auth_method_renewing_token", "initial"),
    "VAULT_AUTH_METHOD_RENEWING_TOKEN_RENEW_BEFORE": ("vault", "auth_method_renewing_token", "renew_before"),
    "VAULT_AUTH_METHOD_RENEWING_TOKEN_TIME_TO_LIVE": ("vault", "auth_method_renewing_token", "time_to_live"),
    "VAULT_AUTH_METHOD_CONSTANT_TOKEN": ("vault", "auth_method_constant_token"),
    "VAULT_MOUNT": ("vault", "mount"),
    "VAULT_ROLE": ("vault", "role"),
    "VAULT_CA_CERT_PATH": ("vault", "ca_cert_path"),
    "VAULT_TIME_TO_LIVE": ("vault", "time_to_live"),
    "VAULT_URI_SUBJECT_ALTERNATIVE_NAMES": ("vault", "uri_subject_alternative_names"),
    "VAULT_OTHER_SUBJECT_ALTERNATIVE_NAMES": ("vault", "other_subject_alternative_names"),
    "CFSSL_URL": ("cfssl", "url"),
    "CFSSL_CA_CERT_PATH": ("cfssl", "ca_cert_path"),
    "CFSSL_PROFILE": ("cfssl", "profile"),
    "CFSSL_AUTH_KEY": ("cfssl", "auth_key"),
    "AWS_REGION": ("aws", "region"),
    "AWS_ACCESS_KEY_ID": ("aws", "access_key_id"),
    "AWS_ACCESS_KEY_SECRET": ("aws", "access_key_secret"),
    "AWS_CERTIFICATE_AUTHORITY_ARN": ("aws", "certificate_authority_arn"),
    "AWS_TIME_TO_LIVE": ("aws", "time_to_live"),
}

_LIST_KEYS = frozenset({"VAULT_URI_SUBJECT_ALTERNATIVE_NAMES", "VAULT_OTHER_SUBJECT_ALTERNATIVE_NAMES"})


def load_config_from_environ(environ: Mapping[str, str], prefix: str = "") -> Settings:
    """Build configuration from flat environment-style keys.

    Keys are matched case-insensitively after stripping ``prefix``
    (e.g. ``VAULT_AUTH_METHOD_RENEWING_TOKEN_RENEW_BEFORE=45m``). List values
    are comma-separated.

    Args:
        environ: Mapping of keys to text values, typically ``os.environ``.
        prefix: Optional prefix every key must carry.

    Returns:
        Validated Settings instance.

    Raises:
        pydantic.ValidationError: If configuration validation fails.
    """
    data: dict[str, Any] = {}
    upper_prefix = prefix.upper()

    for raw_key, value in environ.items():
        key = raw_key.upper()
        if not key.startswith(upper_prefix):
            continue
        key = key[len(upper_prefix) :]
        location = _ENVIRON_KEYS.get(key)
        if location is None:
            continue

        parsed: Any = value
        if key in _LIST_KEYS:
            parsed = [item.strip() for item in value.split(",") if item.strip()]

        target = data
        for part in location[:-1]:
            target = target.setdefault(part, {})
        target[location[-1]] = parsed

    return Settings.model_validate(data)
