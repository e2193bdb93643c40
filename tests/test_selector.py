"""Tests for issuer selection from configuration."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from issuer_proxy.config import Settings
from issuer_proxy.exceptions import ConfigurationError
from issuer_proxy.issuers.auth import ConstantToken, RenewingToken
from issuer_proxy.issuers.aws import AWSIssuer
from issuer_proxy.issuers.cfssl import CFSSLIssuer
from issuer_proxy.issuers.model import CertificateRequest
from issuer_proxy.issuers.selector import create_issuer, create_vault_auth
from issuer_proxy.issuers.vault import VaultIssuer


def _settings(**sections: Any) -> Settings:
    return Settings.model_validate(sections)


VAULT = {"url": "https://vault:8200", "role": "proxy"}


class TestVaultSelection:
    """Tests for selecting and configuring the Vault issuer."""

    def test_unknown_auth_method_fails(self) -> None:
        """No auth method and no deprecated token is a configuration error."""
        with pytest.raises(ConfigurationError, match="unknown auth method"):
            create_issuer(_settings(issuer="vault", vault=VAULT))

    def test_unrecognized_auth_method_fails(self) -> None:
        """Unsupported method names fail at construction, not at parse."""
        with pytest.raises(ConfigurationError, match="auth_method"):
            create_issuer(_settings(issuer="vault", vault={**VAULT, "auth_method": "approle"}))

    @pytest.mark.asyncio
    async def test_constant_token_issue(self, vault_client: Any, leaf_pem: str) -> None:
        """A constant token issuer sends the TTL as duration text."""
        vault_client.response = {"certificate": leaf_pem}
        issuer = create_issuer(
            _settings(
                issuer="vault",
                vault={**VAULT, "auth_method": "constant", "auth_method_constant_token": "s.constant"},
            ),
            client=vault_client,
        )

        issued = await issuer.issue(
            CertificateRequest(common_name="svc.example.com", time_to_live=timedelta(hours=24)),
        )

        assert isinstance(issuer, VaultIssuer)
        token, _, data = vault_client.writes[0]
        assert token == "s.constant"
        assert data["ttl"] == "24h0m0s"
        assert issued.serial_number == 4242

    def test_constant_token_requires_secret(self) -> None:
        """A constant method without any token fails."""
        with pytest.raises(ConfigurationError, match="auth_method_constant_token"):
            create_issuer(_settings(vault={**VAULT, "auth_method": "constant"}))

    def test_deprecated_token(self) -> None:
        """The deprecated token still works when no auth method is set."""
        config = _settings(vault={**VAULT, "token": "s.legacy"}).vault

        auth = create_vault_auth(config)

        assert auth == ConstantToken("s.legacy")

    def test_constant_token_falls_back_to_deprecated(self) -> None:
        """The deprecated token backs an empty constant token."""
        config = _settings(vault={**VAULT, "auth_method": "token", "token": "s.legacy"}).vault

        assert create_vault_auth(config) == ConstantToken("s.legacy")

    def test_renewing_token(self) -> None:
        """The renewing method builds a RenewingToken."""
        config = _settings(
            vault={
                **VAULT,
                "auth_method": "renewing",
                "auth_method_renewing_token": {"initial": "s.initial", "renew_before": "1h"},
            },
        ).vault

        assert isinstance(create_vault_auth(config), RenewingToken)

    def test_renewing_token_window_too_large(self) -> None:
        """renew_before not shorter than time_to_live fails at construction."""
        settings = _settings(
            vault={
                **VAULT,
                "auth_method": "renewing",
                "auth_method_renewing_token": {"initial": "s.initial", "renew_before": "24h", "time_to_live": "24h"},
            },
        )

        with pytest.raises(ConfigurationError, match="renew_before"):
            create_issuer(settings)

    def test_renewing_token_requires_initial(self) -> None:
        """A renewing method without an initial token fails."""
        with pytest.raises(ConfigurationError, match="initial"):
            create_issuer(_settings(vault={**VAULT, "auth_method": "renewing"}))

    @pytest.mark.parametrize("missing", ["url", "role"])
    def test_required_fields(self, missing: str) -> None:
        """URL and role are required."""
        vault = {**VAULT, "auth_method": "constant", "auth_method_constant_token": "s.constant", missing: ""}

        with pytest.raises(ConfigurationError, match=f"vault.{missing}"):
            create_issuer(_settings(vault=vault))

    def test_builds_http_client(self) -> None:
        """Without an injected client the HTTP transport is used."""
        issuer = create_issuer(
            _settings(vault={**VAULT, "auth_method": "constant", "auth_method_constant_token": "s.constant"}),
        )

        assert isinstance(issuer, VaultIssuer)


class TestCFSSLSelection:
    """Tests for selecting the CFSSL issuer."""

    def test_selected_by_alias(self) -> None:
        """The cloudflare alias selects CFSSL."""
        issuer = create_issuer(_settings(issuer="cloudflare", cfssl={"url": "https://cfssl:8888"}))

        assert isinstance(issuer, CFSSLIssuer)

    def test_url_required(self) -> None:
        """CFSSL needs a URL."""
        with pytest.raises(ConfigurationError, match="cfssl.url"):
            create_issuer(_settings(issuer="cfssl"))

    def test_auth_key_must_be_hex(self) -> None:
        """A non-hex auth key fails before any request."""
        with pytest.raises(ConfigurationError, match="hex"):
            create_issuer(_settings(issuer="cfssl", cfssl={"url": "https://cfssl:8888", "auth_key": "secret"}))


class TestAWSSelection:
    """Tests for selecting the AWS issuer."""

    ARN = "arn:aws:acm-pca:eu-west-1:123456789012:certificate-authority/1234"

    def test_selected_with_injected_client(self) -> None:
        """The AWS issuer wraps the given client."""
        issuer = create_issuer(
            _settings(issuer="aws", aws={"region": "eu-west-1", "certificate_authority_arn": self.ARN}),
            client=object(),
        )

        assert isinstance(issuer, AWSIssuer)

    def test_builds_boto3_client(self) -> None:
        """Explicit keys build an acm-pca client without touching AWS."""
        issuer = create_issuer(
            _settings(
                issuer="aws",
                aws={
                    "region": "eu-west-1",
                    "certificate_authority_arn": self.ARN,
                    "access_key_id": "AKIAEXAMPLE",
                    "access_key_secret": "secret",
                },
            ),
        )

        assert isinstance(issuer, AWSIssuer)

    @pytest.mark.parametrize(
        ("aws", "field"),
        [
            ({"certificate_authority_arn": ARN}, "aws.region"),
            ({"region": "eu-west-1"}, "aws.certificate_authority_arn"),
        ],
    )
    def test_required_fields(self, aws: dict[str, str], field: str) -> None:
        """Region and CA ARN are required."""
        with pytest.raises(ConfigurationError, match=field):
            create_issuer(_settings(issuer="aws", aws=aws), client=object())

    def test_keys_set_together(self) -> None:
        """An access key id without its secret fails."""
        aws = {"region": "eu-west-1", "certificate_authority_arn": self.ARN, "access_key_id": "AKIAEXAMPLE"}

        with pytest.raises(ConfigurationError, match="set together"):
            create_issuer(_settings(issuer="aws", aws=aws), client=object())
