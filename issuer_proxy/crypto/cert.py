"""Certificate PEM handling for backend responses."""

from __future__ import annotations

import base64
import re

from cryptography import x509
from cryptography.hazmat.primitives import serialization

_PEM_CERTIFICATE = re.compile(
    r"-----BEGIN CERTIFICATE-----\s.*?-----END CERTIFICATE-----",
    re.DOTALL,
)


def split_pem_chain(data: str | None) -> tuple[str, ...]:
    """Extract the PEM certificates from a bundle.

    Blocks other than certificates (e.g. private keys in a PEM bundle) are
    skipped.

    Args:
        data: Zero or more PEM blocks, possibly with surrounding whitespace.

    Returns:
        One PEM string per certificate in bundle order, each ending in a newline.
    """
    if not data:
        return ()
    return tuple(match.group(0) + "\n" for match in _PEM_CERTIFICATE.finditer(data))


def der_base64_to_pem(data: str) -> str:
    """Convert a base64 DER certificate to PEM.

    Raises:
        ValueError: If the data is not a DER certificate.
    """
    cert = x509.load_der_x509_certificate(base64.b64decode(data))
    return encode_certificate_pem(cert).decode("ascii")


def encode_certificate_pem(cert: x509.Certificate) -> bytes:
    """Encode certificate to PEM format.

    Args:
        cert: Certificate to encode.

    Returns:
        PEM-encoded bytes.
    """
    return cert.public_bytes(serialization.Encoding.PEM)
