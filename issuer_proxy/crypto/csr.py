"""Key and CSR (Certificate Signing Request) generation.

Backends that only sign CSRs get one generated here when the caller did
not supply its own; the private key travels back with the certificate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

if TYPE_CHECKING:
    from issuer_proxy.issuers.model import CertificateRequest


@dataclass(frozen=True)
class GeneratedCSR:
    """A CSR together with the private key that signed it."""

    csr_pem: str
    private_key_pem: str = field(repr=False)


def generate_csr(request: CertificateRequest) -> GeneratedCSR:
    """Generate an ECDSA P-256 key and a CSR for the request.

    The CSR carries the common name as subject, plus the common name as a
    DNS SAN (unless excluded) and the request's URI SANs.

    Args:
        request: Certificate request to build the CSR for.

    Returns:
        PEM-encoded CSR and PKCS#8 private key.
    """
    key = ec.generate_private_key(ec.SECP256R1())

    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, request.common_name)]),
    )

    sans = csr_subject_alternative_names(request)
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)

    csr = builder.sign(key, hashes.SHA256())

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return GeneratedCSR(
        csr_pem=csr.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        private_key_pem=key_pem.decode("ascii"),
    )


def csr_subject_alternative_names(request: CertificateRequest) -> list[x509.GeneralName]:
    """SAN entries a generated CSR carries, in request order."""
    names: list[x509.GeneralName] = []
    if request.common_name and not request.exclude_cn_from_sans:
        names.append(x509.DNSName(request.common_name))
    names.extend(x509.UniformResourceIdentifier(uri) for uri in request.uri_sans)
    return names
