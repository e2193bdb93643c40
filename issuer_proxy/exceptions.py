"""Custom exception hierarchy for Issuer Proxy.

All issuance-facing exceptions inherit from IssuerProxyError for consistent
handling. Each exception maps to an HTTP status code for REST API responses,
so the consuming proxy can tell "cannot authenticate" apart from
"CA refused this request".
"""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class IssuerProxyError(Exception):
    """Base exception for all Issuer Proxy errors.

    Attributes:
        message: Human-readable error description.
        http_status: HTTP status code for REST API responses.
        details: Additional context for audit logging.
    """

    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error description.
            details: Additional context for audit logging.
        """
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def to_audit_dict(self) -> dict[str, str | int | bool | None]:
        """Return dictionary suitable for audit logging.

        Returns:
            Dictionary with exception type, message, and details.
        """
        return {
            "exception_type": self.__class__.__name__,
            "message": self.message,
            **self.details,
        }


class ConfigurationError(IssuerProxyError):
    """Configuration error, fatal to startup.

    HTTP Status: 500 Internal Server Error (startup failure)
    """

    http_status = HTTPStatus.INTERNAL_SERVER_ERROR

    @classmethod
    def invalid_config(cls, *, field: str, reason: str) -> ConfigurationError:
        """Create exception for invalid configuration.

        Args:
            field: The configuration field with the error.
            reason: Why the configuration is invalid.

        Returns:
            ConfigurationError instance.
        """
        return cls(f"Invalid configuration for '{field}': {reason}", details={"field": field, "reason": reason})

    @classmethod
    def missing_required(cls, *, field: str) -> ConfigurationError:
        """Create exception for missing required configuration.

        Args:
            field: The missing configuration field.

        Returns:
            ConfigurationError instance.
        """
        return cls(f"Missing required configuration: {field}", details={"field": field})

    @classmethod
    def invalid_issuer(cls, *, value: str) -> ConfigurationError:
        """Create exception for an unrecognized issuer name.

        Args:
            value: The text that failed to parse.

        Returns:
            ConfigurationError instance.
        """
        return cls(
            'invalid issuer specified, supported issuers are "vault", "cfssl" and "aws"',
            details={"field": "issuer", "value": value},
        )


class AuthorizationError(IssuerProxyError):
    """Backend credential is missing, expired or was rejected.

    HTTP Status: 401 Unauthorized
    """

    http_status = HTTPStatus.UNAUTHORIZED

    @classmethod
    def not_authorized(cls, *, issuer: str, reason: str) -> AuthorizationError:
        """Create exception for a session that could not be established.

        Args:
            issuer: Issuer backend name.
            reason: Why authorization failed.

        Returns:
            AuthorizationError instance.
        """
        return cls(
            f"Could not authorize against {issuer}: {reason}",
            details={"issuer": issuer, "reason": reason},
        )

    @classmethod
    def credential_expired(cls, *, issuer: str, expired_at: str) -> AuthorizationError:
        """Create exception for a session whose credential has expired.

        Args:
            issuer: Issuer backend name.
            expired_at: ISO timestamp the credential expired at.

        Returns:
            AuthorizationError instance.
        """
        return cls(
            f"Credential for {issuer} expired at {expired_at}",
            details={"issuer": issuer, "expired_at": expired_at},
        )

    @classmethod
    def credential_revoked(cls, *, issuer: str, accessor: str | None) -> AuthorizationError:
        """Create exception for a session token the backend no longer accepts.

        Args:
            issuer: Issuer backend name.
            accessor: Accessor of the refused token, if known.

        Returns:
            AuthorizationError instance.
        """
        return cls(
            f"Credential for {issuer} was revoked; waiting for a new session",
            details={"issuer": issuer, "accessor": accessor},
        )

    @classmethod
    def rejected(cls, *, issuer: str, status_code: int | None, detail: str) -> AuthorizationError:
        """Create exception for a credential the backend refused.

        Args:
            issuer: Issuer backend name.
            status_code: Status reported by the backend, if any.
            detail: Backend error detail.

        Returns:
            AuthorizationError instance.
        """
        return cls(
            f"{issuer} rejected the credential: {detail}",
            details={"issuer": issuer, "status_code": status_code, "reason": detail},
        )


class BackendError(IssuerProxyError):
    """CA rejected the request or was unreachable.

    HTTP Status: 502 Bad Gateway
    """

    http_status = HTTPStatus.BAD_GATEWAY

    @classmethod
    def request_failed(cls, *, issuer: str, status_code: int | None, detail: str) -> BackendError:
        """Create exception for a request the CA refused.

        Args:
            issuer: Issuer backend name.
            status_code: Status reported by the backend, if any.
            detail: Backend error detail.

        Returns:
            BackendError instance.
        """
        return cls(
            f"{issuer} refused the certificate request: {detail}",
            details={"issuer": issuer, "status_code": status_code, "reason": detail},
        )

    @classmethod
    def unreachable(cls, *, issuer: str, reason: str) -> BackendError:
        """Create exception for a CA that could not be reached.

        Args:
            issuer: Issuer backend name.
            reason: Transport failure description.

        Returns:
            BackendError instance.
        """
        return cls(f"{issuer} is unreachable: {reason}", details={"issuer": issuer, "reason": reason})

    @classmethod
    def invalid_response(cls, *, issuer: str, reason: str) -> BackendError:
        """Create exception for a response that could not be normalized.

        Args:
            issuer: Issuer backend name.
            reason: What was wrong with the response.

        Returns:
            BackendError instance.
        """
        return cls(
            f"{issuer} returned an invalid response: {reason}",
            details={"issuer": issuer, "reason": reason},
        )

    @classmethod
    def unsupported_field(cls, *, issuer: str, field: str) -> BackendError:
        """Create exception for a request field the backend cannot express.

        Args:
            issuer: Issuer backend name.
            field: The unsupported request field.

        Returns:
            BackendError instance.
        """
        return cls(f"{issuer} does not support '{field}'", details={"issuer": issuer, "field": field})


class RenewalError(IssuerProxyError):
    """Background credential renewal failed.

    Contained within the credential provider; it is logged and retried,
    never raised to an issuance caller.
    """

    @classmethod
    def renewal_failed(cls, *, attempt: int, reason: str) -> RenewalError:
        """Create exception for a failed renewal attempt.

        Args:
            attempt: Consecutive failure count, starting at 1.
            reason: Why renewal failed.

        Returns:
            RenewalError instance.
        """
        return cls(
            f"Credential renewal attempt {attempt} failed: {reason}",
            details={"attempt": attempt, "reason": reason},
        )


class CAClientError(Exception):
    """Raised by transport clients when a CA call fails.

    Attributes:
        status_code: HTTP status returned by the CA, or None on transport failure.
        errors: Error messages reported by the CA.
    """

    def __init__(self, message: str, *, status_code: int | None = None, errors: Sequence[str] = ()) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error description.
            status_code: HTTP status returned by the CA, if any.
            errors: Error messages reported by the CA.
        """
        super().__init__(message)
        self.status_code = status_code
        self.errors = list(errors)

    @property
    def detail(self) -> str:
        """Backend-reported detail, falling back to the message."""
        return "; ".join(self.errors) if self.errors else str(self)

    @property
    def is_auth_failure(self) -> bool:
        """Whether the CA refused the caller's credential."""
        return self.status_code in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN)


def normalize_client_error(error: CAClientError, *, issuer: str) -> AuthorizationError | BackendError:
    """Map a transport failure onto the issuance error taxonomy.

    Args:
        error: Failure raised by a transport client.
        issuer: Issuer backend name.

    Returns:
        AuthorizationError when the CA refused the credential, BackendError otherwise.
    """
    if error.is_auth_failure:
        return AuthorizationError.rejected(issuer=issuer, status_code=error.status_code, detail=error.detail)
    if error.status_code is None and not error.errors:
        return BackendError.unreachable(issuer=issuer, reason=error.detail)
    return BackendError.request_failed(issuer=issuer, status_code=error.status_code, detail=error.detail)
