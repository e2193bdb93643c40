"""Certificate request and result types shared by all issuer backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from functools import cached_property
from typing import TYPE_CHECKING, Protocol

from cryptography import x509

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class CertificateRequest:
    """Normalized certificate request.

    SAN sequences keep the caller's order; backends render them as ordered
    lists. A zero time_to_live selects the backend's configured default.
    """

    common_name: str
    exclude_cn_from_sans: bool = False
    uri_sans: tuple[str, ...] = ()
    other_sans: tuple[str, ...] = ()
    time_to_live: timedelta = timedelta(0)
    output_format: str = "pem"
    csr_pem: str | None = None

    def __post_init__(self) -> None:
        """Freeze SAN sequences given as lists."""
        object.__setattr__(self, "uri_sans", tuple(self.uri_sans))
        object.__setattr__(self, "other_sans", tuple(self.other_sans))


@dataclass(frozen=True)
class IssuedCertificate:
    """Certificate returned by an issuer backend."""

    certificate_pem: str
    chain_pem: tuple[str, ...] = ()
    private_key_pem: str | None = field(default=None, repr=False)

    @cached_property
    def certificate(self) -> x509.Certificate:
        """Parsed leaf certificate."""
        return x509.load_pem_x509_certificate(self.certificate_pem.encode("ascii"))

    @property
    def serial_number(self) -> int:
        """Serial number of the leaf certificate."""
        return self.certificate.serial_number

    @property
    def not_after(self) -> datetime:
        """Expiry of the leaf certificate (UTC)."""
        return self.certificate.not_valid_after_utc


class Issuer(Protocol):
    """Protocol for issuer backend implementations."""

    name: str

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        """Issue a certificate for the request."""
        ...

    async def aclose(self) -> None:
        """Stop background work and release transport resources."""
        ...
