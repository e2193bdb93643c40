"""Shared fixtures: a throwaway CA, certificates it signed, and fakes for Vault and time."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Generator


@pytest.fixture(scope="session")
def ca_key() -> ec.EllipticCurvePrivateKey:
    """CA private key for signing test certificates."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ca_certificate(ca_key: ec.EllipticCurvePrivateKey) -> x509.Certificate:
    """Self-signed CA certificate."""
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test CA")])
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def ca_pem(ca_certificate: x509.Certificate) -> str:
    """CA certificate as PEM text."""
    return ca_certificate.public_bytes(Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def sign_leaf(
    ca_key: ec.EllipticCurvePrivateKey,
    ca_certificate: x509.Certificate,
) -> Callable[..., str]:
    """Factory returning a PEM leaf certificate signed by the test CA."""

    def _sign(common_name: str = "svc.example.com", serial_number: int = 4242, days: int = 30) -> str:
        key = ec.generate_private_key(ec.SECP256R1())
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(ca_certificate.subject)
            .public_key(key.public_key())
            .serial_number(serial_number)
            .not_valid_before(datetime.now(UTC))
            .not_valid_after(datetime.now(UTC) + timedelta(days=days))
            .sign(ca_key, hashes.SHA256())
        )
        return cert.public_bytes(Encoding.PEM).decode("ascii")

    return _sign


@pytest.fixture
def leaf_pem(sign_leaf: Callable[..., str]) -> str:
    """A leaf certificate for svc.example.com with serial 4242."""
    return sign_leaf()


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Sleep that advances a FakeClock and parks forever after ``limit`` calls."""

    def __init__(self, clock: FakeClock, limit: int) -> None:
        self.clock = clock
        self.limit = limit
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        if len(self.delays) >= self.limit:
            await asyncio.Event().wait()
        self.delays.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)


class FakeVaultClient:
    """In-memory Vault transport recording the token used for each call."""

    def __init__(self, *, lease_duration: int = 86400) -> None:
        self.token = ""
        self.lease_duration = lease_duration
        self.create_calls: list[tuple[str, str]] = []
        self.renew_calls: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, dict[str, Any]]] = []
        self.create_error: Exception | None = None
        self.renew_error: Exception | None = None
        self.write_error: Exception | None = None
        self.renew_gate: asyncio.Event | None = None
        self.renewed_token: str | None = None
        self.response: dict[str, Any] = {}
        self.closed = False

    def set_token(self, token: str) -> None:
        self.token = token

    async def create_token(self, *, ttl: str, renewable: bool = True) -> dict[str, Any]:
        self.create_calls.append((self.token, ttl))
        if self.create_error is not None:
            raise self.create_error
        return {
            "client_token": f"s.session-{len(self.create_calls)}",
            "accessor": f"accessor-{len(self.create_calls)}",
            "lease_duration": self.lease_duration,
            "renewable": renewable,
        }

    async def renew_self(self, *, increment: str) -> dict[str, Any]:
        self.renew_calls.append((self.token, increment))
        if self.renew_gate is not None:
            await self.renew_gate.wait()
        if self.renew_error is not None:
            raise self.renew_error
        return {"client_token": self.renewed_token or self.token, "lease_duration": self.lease_duration}

    async def write(self, path: str, data: dict[str, Any]) -> dict[str, Any]:
        self.writes.append((self.token, path, dict(data)))
        await asyncio.sleep(0)
        if self.write_error is not None:
            raise self.write_error
        return self.response

    async def aclose(self) -> None:
        self.closed = True


async def _wait_until(condition: Callable[[], bool], *, turns: int = 200) -> None:
    for _ in range(turns):
        if condition():
            return
        await asyncio.sleep(0)
    assert condition(), "condition not reached"


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at 2026-01-01T00:00Z."""
    return FakeClock()


@pytest.fixture
def vault_client() -> FakeVaultClient:
    """Fake Vault transport."""
    return FakeVaultClient()


@pytest.fixture
def make_sleep(clock: FakeClock) -> Callable[[int], RecordingSleep]:
    """Factory for sleeps that advance the fake clock."""
    return lambda limit: RecordingSleep(clock, limit)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Yield to the event loop until a condition holds."""
    return _wait_until


@pytest.fixture
def audit_records() -> Generator[list[dict[str, Any]], None, None]:
    """Collect the ``extra`` of every audit record emitted during the test."""
    records: list[dict[str, Any]] = []
    handler_id = logger.add(
        lambda message: records.append(dict(message.record["extra"])),
        level="DEBUG",
        filter=lambda r: r["extra"].get("audit", False),
    )
    yield records
    logger.remove(handler_id)
