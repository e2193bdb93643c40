"""Certificate issuance endpoint.

Implements:
- POST /v1/certificates - Issue a certificate through the configured issuer
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from issuer_proxy.audit.logger import clear_correlation_id, set_correlation_id
from issuer_proxy.config import Duration
from issuer_proxy.issuers.model import CertificateRequest, Issuer

router = APIRouter(prefix="/v1")


class CertificateRequestBody(BaseModel):
    """JSON body of an issuance request."""

    common_name: Annotated[str, Field(min_length=1)]
    exclude_cn_from_sans: bool = False
    uri_sans: list[str] = []
    other_sans: list[str] = []
    time_to_live: Duration = timedelta(0)
    output_format: str = "pem"
    csr: str | None = None

    def to_request(self) -> CertificateRequest:
        """Convert to the issuer-facing request model."""
        return CertificateRequest(
            common_name=self.common_name,
            exclude_cn_from_sans=self.exclude_cn_from_sans,
            uri_sans=tuple(self.uri_sans),
            other_sans=tuple(self.other_sans),
            time_to_live=self.time_to_live,
            output_format=self.output_format,
            csr_pem=self.csr,
        )


class CertificateResponseBody(BaseModel):
    """JSON body of an issued certificate."""

    certificate: str
    chain: list[str]
    private_key: str | None
    serial_number: str
    not_after: datetime


@dataclass
class RouteState:
    """Mutable state container for route dependencies."""

    issuer: Issuer | None = None


# Module-level state instance
_state = RouteState()


def configure_routes(issuer: Issuer) -> None:
    """Configure routes with the issuer instance.

    Called by main.py during startup.
    """
    _state.issuer = issuer


def get_issuer() -> Issuer:
    """Dependency to get the issuer."""
    if _state.issuer is None:
        msg = "Issuer not configured"
        raise RuntimeError(msg)
    return _state.issuer


@router.post("/certificates")
async def issue_certificate(
    body: CertificateRequestBody,
    issuer: Annotated[Issuer, Depends(get_issuer)],
) -> CertificateResponseBody:
    """Issue a certificate.

    Errors map to 401 when the issuer cannot authenticate and 502 when
    the CA refused or could not be reached.

    Returns:
        The leaf certificate, its chain and the private key when one was generated.
    """
    set_correlation_id()
    try:
        issued = await issuer.issue(body.to_request())
        return CertificateResponseBody(
            certificate=issued.certificate_pem,
            chain=list(issued.chain_pem),
            private_key=issued.private_key_pem,
            serial_number=format(issued.serial_number, "x"),
            not_after=issued.not_after,
        )
    finally:
        clear_correlation_id()
