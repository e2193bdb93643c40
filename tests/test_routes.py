"""Integration tests for the certificate issuance API.

Tests the full request/response cycle with a fake issuer backend.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from issuer_proxy.config import AuditConfig, Settings
from issuer_proxy.exceptions import AuthorizationError, BackendError, IssuerProxyError
from issuer_proxy.issuers.auth import ConstantToken
from issuer_proxy.issuers.model import CertificateRequest, IssuedCertificate
from issuer_proxy.issuers.vault import VaultIssuer
from issuer_proxy.main import create_app

pytestmark = pytest.mark.integration

# --- Fixtures ---


class FakeIssuer:
    """Issuer returning a fixed certificate or raising a preset error."""

    name = "fake"

    def __init__(self, certificate: IssuedCertificate) -> None:
        self.certificate = certificate
        self.requests: list[CertificateRequest] = []
        self.error: IssuerProxyError | None = None
        self.closed = False

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.certificate

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings that keep audit output off disk."""
    return Settings(audit=AuditConfig(log_file=None))


@pytest.fixture
def issuer(leaf_pem: str, ca_pem: str) -> FakeIssuer:
    """Fake issuer returning the test leaf."""
    return FakeIssuer(IssuedCertificate(certificate_pem=leaf_pem, chain_pem=(ca_pem,), private_key_pem="KEY"))


@pytest.fixture
def app(settings: Settings, issuer: FakeIssuer) -> FastAPI:
    """Application serving the fake issuer."""
    return create_app(settings, issuer=issuer)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client running the application lifespan."""
    with TestClient(app) as test_client:
        yield test_client


# --- Tests ---


class TestIssueCertificate:
    """Tests for POST /v1/certificates."""

    def test_issue(self, client: TestClient, issuer: FakeIssuer, leaf_pem: str, ca_pem: str) -> None:
        """A valid request returns the certificate, chain and key."""
        response = client.post(
            "/v1/certificates",
            json={
                "common_name": "svc.example.com",
                "uri_sans": ["spiffe://example.org/svc"],
                "time_to_live": "24h",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["certificate"] == leaf_pem
        assert body["chain"] == [ca_pem]
        assert body["private_key"] == "KEY"
        assert body["serial_number"] == "1092"
        assert issuer.requests == [
            CertificateRequest(
                common_name="svc.example.com",
                uri_sans=("spiffe://example.org/svc",),
                time_to_live=timedelta(hours=24),
            ),
        ]

    def test_missing_common_name(self, client: TestClient, issuer: FakeIssuer) -> None:
        """Requests without a common name are rejected before the issuer."""
        response = client.post("/v1/certificates", json={"common_name": ""})

        assert response.status_code == 422
        assert issuer.requests == []

    def test_invalid_duration(self, client: TestClient) -> None:
        """Malformed TTL text is a validation error."""
        response = client.post("/v1/certificates", json={"common_name": "svc.example.com", "time_to_live": "1 day"})

        assert response.status_code == 422

    def test_authorization_error(self, client: TestClient, issuer: FakeIssuer) -> None:
        """Authorization failures map to 401."""
        issuer.error = AuthorizationError.credential_expired(issuer="vault", expired_at="2026-01-02T00:00:00+00:00")

        response = client.post("/v1/certificates", json={"common_name": "svc.example.com"})

        assert response.status_code == 401
        assert response.json()["error"] == "AuthorizationError"

    def test_backend_error(self, client: TestClient, issuer: FakeIssuer) -> None:
        """CA refusals map to 502 with the backend detail."""
        issuer.error = BackendError.request_failed(issuer="vault", status_code=400, detail="role not found")

        response = client.post("/v1/certificates", json={"common_name": "svc.example.com"})

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "BackendError"
        assert body["details"]["reason"] == "role not found"


class TestLifecycle:
    """Tests for health and shutdown."""

    def test_health(self, client: TestClient) -> None:
        """Health names the issuer backend."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["issuer"] == "fake"

    def test_shutdown_closes_issuer(self, app: FastAPI, issuer: FakeIssuer) -> None:
        """Leaving the lifespan closes the issuer."""
        with TestClient(app):
            assert not issuer.closed

        assert issuer.closed

    def test_vault_issuer_end_to_end(self, settings: Settings, vault_client: Any, leaf_pem: str) -> None:
        """A Vault issuer behind the API sends the TTL as duration text."""
        vault_client.response = {"certificate": leaf_pem}
        app = create_app(settings, issuer=VaultIssuer(vault_client, ConstantToken("s.constant"), role="proxy"))

        with TestClient(app) as client:
            response = client.post("/v1/certificates", json={"common_name": "svc.example.com", "time_to_live": "24h"})

        assert response.status_code == 200
        assert vault_client.writes[0][2]["ttl"] == "24h0m0s"
        assert vault_client.closed
