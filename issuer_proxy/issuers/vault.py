"""Vault PKI secrets engine issuer.

Requests are written to ``<mount>/sign/<role>`` when the caller supplies a
CSR and to ``<mount>/issue/<role>`` otherwise, in which case Vault
generates the key and returns it with the certificate.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from issuer_proxy.audit.logger import log_certificate_issued, log_issuance_failed
from issuer_proxy.crypto.cert import der_base64_to_pem, split_pem_chain
from issuer_proxy.exceptions import AuthorizationError, BackendError, CAClientError, normalize_client_error
from issuer_proxy.issuers.encoding import encode_duration, encode_sans
from issuer_proxy.issuers.model import IssuedCertificate

if TYPE_CHECKING:
    from collections.abc import Iterable

    from issuer_proxy.clients.vault import VaultClient
    from issuer_proxy.issuers.auth import AuthMethod
    from issuer_proxy.issuers.model import CertificateRequest


class VaultIssuer:
    """Issuer backed by a Vault PKI secrets engine."""

    name = "vault"

    def __init__(
        self,
        client: VaultClient,
        auth: AuthMethod,
        *,
        role: str,
        mount: str = "pki",
        time_to_live: timedelta = timedelta(hours=720),
        uri_sans: Iterable[str] = (),
        other_sans: Iterable[str] = (),
    ) -> None:
        """Initialize issuer.

        Args:
            client: Vault transport.
            auth: Credential provider owning the client's session.
            role: PKI role to issue against.
            mount: Mount path of the PKI secrets engine.
            time_to_live: TTL used when a request does not set one.
            uri_sans: URI SANs added to every request.
            other_sans: OID/UTF8 SANs added to every request.
        """
        self._client = client
        self._auth = auth
        self._role = role
        self._mount = mount.strip("/")
        self._time_to_live = time_to_live
        self._uri_sans = tuple(uri_sans)
        self._other_sans = tuple(other_sans)

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        """Issue a certificate through Vault.

        Raises:
            AuthorizationError: If the session is not authorized or Vault refused the token.
            BackendError: If Vault refused the request or could not be reached.
        """
        try:
            await self._auth.ensure_authorized(self._client)
        except AuthorizationError as e:
            log_issuance_failed(issuer=self.name, common_name=request.common_name, error=e)
            raise

        operation = "sign" if request.csr_pem else "issue"
        path = f"{self._mount}/{operation}/{self._role}"
        payload = build_issue_request(
            request,
            default_ttl=self._time_to_live,
            extra_uri_sans=self._uri_sans,
            extra_other_sans=self._other_sans,
        )

        try:
            data = await self._client.write(path, payload)
            certificate = parse_issue_response(data, output_format=payload["format"])
        except CAClientError as e:
            error = normalize_client_error(e, issuer=self.name)
            log_issuance_failed(issuer=self.name, common_name=request.common_name, error=error)
            raise error from e
        except BackendError as e:
            log_issuance_failed(issuer=self.name, common_name=request.common_name, error=e)
            raise

        log_certificate_issued(
            issuer=self.name,
            common_name=request.common_name,
            serial_number=certificate.serial_number,
            not_after=certificate.not_after,
        )
        return certificate

    async def aclose(self) -> None:
        """Stop token renewal and close the transport."""
        await self._auth.close()
        await self._client.aclose()


def build_issue_request(
    request: CertificateRequest,
    *,
    default_ttl: timedelta = timedelta(0),
    extra_uri_sans: Iterable[str] = (),
    extra_other_sans: Iterable[str] = (),
) -> dict[str, Any]:
    """Translate a certificate request into Vault's issue/sign parameters.

    SAN lists are comma-joined and TTL is duration text; each is left out
    when empty. Configured SANs follow the request's own, without repeats.

    Args:
        request: Normalized certificate request.
        default_ttl: TTL used when the request's is zero.
        extra_uri_sans: URI SANs appended to the request's.
        extra_other_sans: Other SANs appended to the request's.

    Returns:
        JSON-ready request body.
    """
    payload: dict[str, Any] = {
        "common_name": request.common_name,
        "exclude_cn_from_sans": request.exclude_cn_from_sans,
        "format": request.output_format or "pem",
    }
    if request.csr_pem:
        payload["csr"] = request.csr_pem

    ttl = request.time_to_live if request.time_to_live > timedelta(0) else default_ttl
    optional = {
        "uri_sans": encode_sans(_merge(request.uri_sans, extra_uri_sans)),
        "other_sans": encode_sans(_merge(request.other_sans, extra_other_sans)),
        "ttl": encode_duration(ttl) if ttl > timedelta(0) else None,
    }
    payload.update({key: value for key, value in optional.items() if value is not None})
    return payload


def parse_issue_response(data: dict[str, Any], *, output_format: str = "pem") -> IssuedCertificate:
    """Normalize the data block of an issue/sign response.

    Raises:
        BackendError: If the response has no usable certificate.
    """
    raw_certificate = data.get("certificate")
    if not raw_certificate:
        raise BackendError.invalid_response(issuer=VaultIssuer.name, reason="no certificate in response")

    try:
        if output_format == "der":
            leaf = der_base64_to_pem(raw_certificate)
            chain = tuple(der_base64_to_pem(c) for c in data.get("ca_chain") or ())
        else:
            certificates = split_pem_chain(raw_certificate)
            if not certificates:
                msg = "certificate is not PEM encoded"
                raise ValueError(msg)
            leaf = certificates[0]
            chain = tuple(pem for c in data.get("ca_chain") or () for pem in split_pem_chain(c))
            if not chain:
                chain = certificates[1:] or split_pem_chain(data.get("issuing_ca"))
        issued = IssuedCertificate(
            certificate_pem=leaf,
            chain_pem=chain,
            private_key_pem=data.get("private_key") or None,
        )
        issued.certificate  # noqa: B018 - parse now so a bad leaf fails here
    except ValueError as e:
        raise BackendError.invalid_response(issuer=VaultIssuer.name, reason=str(e)) from e

    return issued


def _merge(first: Iterable[str], second: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for value in (*first, *second):
        if value not in merged:
            merged.append(value)
    return merged
