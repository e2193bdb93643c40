"""Issuer selection from configuration.

Resolves the configured IssuerKind to a backend, validating the matching
configuration section and building its credential provider. All problems
surface here as ConfigurationError, before any certificate is requested.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3

from issuer_proxy.audit.logger import log_deprecated_setting, log_issuer_initialized
from issuer_proxy.clients.cfssl import HTTPCFSSLClient
from issuer_proxy.clients.vault import HTTPVaultClient
from issuer_proxy.config import AuthMethodKind, IssuerKind
from issuer_proxy.exceptions import ConfigurationError
from issuer_proxy.issuers.auth import ConstantToken, RenewingToken
from issuer_proxy.issuers.aws import AWSIssuer
from issuer_proxy.issuers.cfssl import CFSSLIssuer
from issuer_proxy.issuers.vault import VaultIssuer

if TYPE_CHECKING:
    from issuer_proxy.config import AWSConfig, CFSSLConfig, Settings, VaultConfig
    from issuer_proxy.issuers.auth import AuthMethod
    from issuer_proxy.issuers.model import Issuer


def create_issuer(settings: Settings, *, client: Any = None, **auth_options: Any) -> Issuer:
    """Create the issuer backend selected by configuration.

    Args:
        settings: Loaded settings; only the section for ``settings.issuer`` is read.
        client: Transport to use instead of building one from configuration.
        **auth_options: Extra keyword arguments for a RenewingToken (clock, sleep, backoff).

    Returns:
        Configured issuer backend.

    Raises:
        ConfigurationError: If the selected section is incomplete or inconsistent.
    """
    if settings.issuer == IssuerKind.VAULT:
        return _create_vault_issuer(settings.vault, client, auth_options)
    if settings.issuer == IssuerKind.CFSSL:
        return _create_cfssl_issuer(settings.cfssl, client)
    if settings.issuer == IssuerKind.AWS:
        return _create_aws_issuer(settings.aws, client)
    raise ConfigurationError.invalid_issuer(value=str(settings.issuer))


def create_vault_auth(config: VaultConfig, **auth_options: Any) -> AuthMethod:
    """Build the Vault credential provider for the configured auth method.

    The deprecated ``token`` setting stands in for a constant token when no
    auth method is configured.

    Raises:
        ConfigurationError: If the auth method is unknown or its secret is missing.
    """
    method = config.auth_method

    if method == AuthMethodKind.UNKNOWN and config.token:
        log_deprecated_setting(setting="vault.token", replacement="vault.auth_method")
        return ConstantToken(config.token, issuer=VaultIssuer.name)

    if method == AuthMethodKind.CONSTANT_TOKEN:
        token = config.auth_method_constant_token or config.token
        if not token:
            raise ConfigurationError.missing_required(field="vault.auth_method_constant_token")
        return ConstantToken(token, issuer=VaultIssuer.name)

    if method == AuthMethodKind.RENEWING_TOKEN:
        return RenewingToken.from_config(config.auth_method_renewing_token, issuer=VaultIssuer.name, **auth_options)

    raise ConfigurationError.invalid_config(
        field="vault.auth_method",
        reason='unknown auth method, supported methods are "constant" and "renewing"',
    )


def _create_vault_issuer(config: VaultConfig, client: Any, auth_options: dict[str, Any]) -> VaultIssuer:
    if not config.url:
        raise ConfigurationError.missing_required(field="vault.url")
    if not config.role:
        raise ConfigurationError.missing_required(field="vault.role")
    if not config.mount.strip("/"):
        raise ConfigurationError.missing_required(field="vault.mount")

    auth = create_vault_auth(config, **auth_options)

    if client is None:
        client = HTTPVaultClient(config.url, ca_cert_path=config.ca_cert_path)

    log_issuer_initialized(issuer=VaultIssuer.name, auth_method=type(auth).__name__)
    return VaultIssuer(
        client,
        auth,
        role=config.role,
        mount=config.mount,
        time_to_live=config.time_to_live,
        uri_sans=config.uri_subject_alternative_names,
        other_sans=config.other_subject_alternative_names,
    )


def _create_cfssl_issuer(config: CFSSLConfig, client: Any) -> CFSSLIssuer:
    if not config.url:
        raise ConfigurationError.missing_required(field="cfssl.url")

    auth = None
    if config.auth_key:
        try:
            bytes.fromhex(config.auth_key)
        except ValueError as e:
            raise ConfigurationError.invalid_config(field="cfssl.auth_key", reason="must be hex encoded") from e
        auth = ConstantToken(config.auth_key, issuer=CFSSLIssuer.name)

    if client is None:
        client = HTTPCFSSLClient(config.url, ca_cert_path=config.ca_cert_path)

    log_issuer_initialized(issuer=CFSSLIssuer.name, auth_method="auth_key" if auth else None)
    return CFSSLIssuer(client, auth, profile=config.profile)


def _create_aws_issuer(config: AWSConfig, client: Any) -> AWSIssuer:
    if not config.region:
        raise ConfigurationError.missing_required(field="aws.region")
    if not config.certificate_authority_arn:
        raise ConfigurationError.missing_required(field="aws.certificate_authority_arn")
    if bool(config.access_key_id) != bool(config.access_key_secret):
        raise ConfigurationError.invalid_config(
            field="aws.access_key_id",
            reason="access_key_id and access_key_secret must be set together",
        )

    if client is None:
        # Without explicit keys boto3 falls back to its default credential chain
        session = boto3.Session(
            aws_access_key_id=config.access_key_id or None,
            aws_secret_access_key=config.access_key_secret or None,
            region_name=config.region,
        )
        client = session.client("acm-pca")

    log_issuer_initialized(issuer=AWSIssuer.name, auth_method="access_key" if config.access_key_id else None)
    return AWSIssuer(
        client,
        certificate_authority_arn=config.certificate_authority_arn,
        time_to_live_days=config.time_to_live,
    )
