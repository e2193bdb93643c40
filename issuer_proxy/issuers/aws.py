"""AWS Private CA (ACM PCA) issuer."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, WaiterError

from issuer_proxy.audit.logger import log_certificate_issued, log_issuance_failed
from issuer_proxy.crypto.cert import split_pem_chain
from issuer_proxy.crypto.csr import generate_csr
from issuer_proxy.exceptions import BackendError, CAClientError, normalize_client_error
from issuer_proxy.issuers.model import IssuedCertificate

if TYPE_CHECKING:
    from issuer_proxy.issuers.model import CertificateRequest

# Error codes meaning the AWS credentials themselves were refused
_AUTH_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "InvalidSignatureException",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    },
)

# Fallback when the CA description does not name its signing algorithm
_SIGNING_ALGORITHMS = {
    "RSA_2048": "SHA256WITHRSA",
    "RSA_3072": "SHA256WITHRSA",
    "RSA_4096": "SHA256WITHRSA",
    "EC_prime256v1": "SHA256WITHECDSA",
    "EC_secp384r1": "SHA384WITHECDSA",
    "EC_secp521r1": "SHA512WITHECDSA",
}


def validity_days(time_to_live: timedelta, default_days: int) -> int:
    """Convert a TTL to whole days for the Validity parameter.

    Partial days are rounded down with a floor of one day; a zero TTL
    selects ``default_days``.
    """
    if time_to_live <= timedelta(0):
        return default_days
    return max(1, time_to_live // timedelta(days=1))


class AWSIssuer:
    """Issuer backed by an AWS Private CA.

    The boto3 ``acm-pca`` client is blocking, so each call runs in a worker
    thread. The CA's signing algorithm is looked up once and cached.
    """

    name = "aws"

    def __init__(self, client: Any, *, certificate_authority_arn: str, time_to_live_days: int = 30) -> None:
        """Initialize issuer.

        Args:
            client: boto3 ``acm-pca`` client.
            certificate_authority_arn: ARN of the issuing CA.
            time_to_live_days: Validity used when a request does not set a TTL.
        """
        self._client = client
        self._ca_arn = certificate_authority_arn
        self._time_to_live_days = time_to_live_days
        self._signing_algorithm: str | None = None

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        """Issue a certificate through AWS Private CA.

        Raises:
            AuthorizationError: If AWS refused the credentials.
            BackendError: If the CA refused the request or could not be reached.
        """
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
            certificate = await asyncio.to_thread(
                self._issue_blocking,
                csr_pem,
                validity_days(request.time_to_live, self._time_to_live_days),
                private_key_pem,
            )
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
        """Nothing to release; boto3 clients have no explicit close."""

    def _issue_blocking(self, csr_pem: str, days: int, private_key_pem: str | None) -> IssuedCertificate:
        try:
            signing_algorithm = self._lookup_signing_algorithm()
            issued = self._client.issue_certificate(
                CertificateAuthorityArn=self._ca_arn,
                Csr=csr_pem.encode("ascii"),
                SigningAlgorithm=signing_algorithm,
                Validity={"Value": days, "Type": "DAYS"},
            )
            certificate_arn = issued["CertificateArn"]
            self._client.get_waiter("certificate_issued").wait(
                CertificateAuthorityArn=self._ca_arn,
                CertificateArn=certificate_arn,
            )
            response = self._client.get_certificate(
                CertificateAuthorityArn=self._ca_arn,
                CertificateArn=certificate_arn,
            )
        except (BotoCoreError, ClientError) as e:
            raise _client_error(e) from e

        return _issued_from_response(response, private_key_pem=private_key_pem)

    def _lookup_signing_algorithm(self) -> str:
        if self._signing_algorithm is None:
            description = self._client.describe_certificate_authority(CertificateAuthorityArn=self._ca_arn)
            ca_config = description["CertificateAuthority"]["CertificateAuthorityConfiguration"]
            algorithm = ca_config.get("SigningAlgorithm") or _SIGNING_ALGORITHMS.get(ca_config.get("KeyAlgorithm", ""))
            if not algorithm:
                raise BackendError.invalid_response(
                    issuer=self.name,
                    reason=f"unsupported CA key algorithm {ca_config.get('KeyAlgorithm')!r}",
                )
            self._signing_algorithm = algorithm
        return self._signing_algorithm


def _client_error(error: BotoCoreError | ClientError) -> CAClientError:
    """Express a botocore failure as a transport error."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        message = error.response.get("Error", {}).get("Message", "") or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _AUTH_ERROR_CODES:
            status = 403
        return CAClientError(str(error), status_code=status, errors=[f"{code}: {message}" if code else message])
    if isinstance(error, NoCredentialsError):
        return CAClientError(str(error), status_code=401, errors=[str(error)])
    if isinstance(error, WaiterError):
        return CAClientError(str(error), errors=[str(error)])
    return CAClientError(str(error))


def _issued_from_response(response: dict[str, Any], *, private_key_pem: str | None) -> IssuedCertificate:
    certificates = split_pem_chain(response.get("Certificate"))
    if not certificates:
        raise BackendError.invalid_response(issuer=AWSIssuer.name, reason="no certificate in response")

    issued = IssuedCertificate(
        certificate_pem=certificates[0],
        chain_pem=split_pem_chain(response.get("CertificateChain")),
        private_key_pem=private_key_pem,
    )
    try:
        issued.certificate  # noqa: B018 - parse now so a bad leaf fails here
    except ValueError as e:
        raise BackendError.invalid_response(issuer=AWSIssuer.name, reason=str(e)) from e
    return issued
