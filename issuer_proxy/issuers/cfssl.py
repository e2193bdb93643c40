"""CFSSL signing server issuer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from issuer_proxy.audit.logger import log_certificate_issued, log_issuance_failed
from issuer_proxy.crypto.cert import split_pem_chain
from issuer_proxy.crypto.csr import generate_csr
from issuer_proxy.exceptions import AuthorizationError, BackendError, CAClientError, normalize_client_error
from issuer_proxy.issuers.model import IssuedCertificate

if TYPE_CHECKING:
    from issuer_proxy.clients.cfssl import CFSSLClient
    from issuer_proxy.issuers.auth import AuthMethod
    from issuer_proxy.issuers.model import CertificateRequest


class CFSSLIssuer:
    """Issuer backed by a CFSSL signing server.

    CFSSL signs CSRs only, so one is generated when the request carries
    none. Validity comes from the server-side profile; the request TTL is
    not sent. The CA certificate is fetched once, before the first signing
    request, and reused as the chain.
    """

    name = "cfssl"

    def __init__(self, client: CFSSLClient, auth: AuthMethod | None = None, *, profile: str = "") -> None:
        """Initialize issuer.

        Args:
            client: CFSSL transport.
            auth: Credential provider for the auth key, or None for unauthenticated signing.
            profile: Signing profile; the server default when empty.
        """
        self._client = client
        self._auth = auth
        self._profile = profile
        self._ca_chain: tuple[str, ...] | None = None

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        """Issue a certificate through CFSSL.

        Raises:
            AuthorizationError: If the auth key is unusable or was refused.
            BackendError: If CFSSL refused the request, could not be reached,
                or the request carries other SANs.
        """
        if self._auth is not None:
            try:
                await self._auth.ensure_authorized(self._client)
            except AuthorizationError as e:
                log_issuance_failed(issuer=self.name, common_name=request.common_name, error=e)
                raise

        if request.other_sans:
            error = BackendError.unsupported_field(issuer=self.name, field="other_sans")
            log_issuance_failed(issuer=self.name, common_name=request.common_name, error=error)
            raise error

        private_key_pem = None
        csr_pem = request.csr_pem
        if not csr_pem:
            generated = generate_csr(request)
            csr_pem, private_key_pem = generated.csr_pem, generated.private_key_pem

        try:
            chain = await self._chain()
            result = await self._client.sign(build_sign_request(request, csr_pem, profile=self._profile))
            certificate = _issued_from_result(result, chain=chain, private_key_pem=private_key_pem)
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
        """Close the transport."""
        if self._auth is not None:
            await self._auth.close()
        await self._client.aclose()

    async def _chain(self) -> tuple[str, ...]:
        if self._ca_chain is None:
            info = await self._client.info(self._profile)
            self._ca_chain = split_pem_chain(info.get("certificate"))
        return self._ca_chain


def build_sign_request(request: CertificateRequest, csr_pem: str, *, profile: str = "") -> dict[str, Any]:
    """Translate a certificate request into a CFSSL sign request.

    ``hosts`` lists the common name (unless excluded) then the URI SANs and
    is left out when empty, so the CSR's own SANs apply.
    """
    hosts = []
    if request.common_name and not request.exclude_cn_from_sans:
        hosts.append(request.common_name)
    hosts.extend(request.uri_sans)

    sign_request: dict[str, Any] = {
        "certificate_request": csr_pem,
        "subject": {"CN": request.common_name},
    }
    if hosts:
        sign_request["hosts"] = hosts
    if profile:
        sign_request["profile"] = profile
    return sign_request


def _issued_from_result(
    result: dict[str, Any],
    *,
    chain: tuple[str, ...],
    private_key_pem: str | None,
) -> IssuedCertificate:
    certificates = split_pem_chain(result.get("certificate"))
    if not certificates:
        raise BackendError.invalid_response(issuer=CFSSLIssuer.name, reason="no certificate in response")

    issued = IssuedCertificate(
        certificate_pem=certificates[0],
        chain_pem=chain,
        private_key_pem=private_key_pem,
    )
    try:
        issued.certificate  # noqa: B018 - parse now so a bad leaf fails here
    except ValueError as e:
        raise BackendError.invalid_response(issuer=CFSSLIssuer.name, reason=str(e)) from e
    return issued
