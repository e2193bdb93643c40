"""Audit logging for certificate issuance and credential lifecycle.

Provides structured logging with correlation IDs for tracing issuance
requests through the backend CA. Credential events never carry the
secret itself, only its accessor and expiry.
"""

from __future__ import annotations

import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from issuer_proxy.config import AuditConfig
    from issuer_proxy.exceptions import RenewalError


# Context variable for request correlation ID
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID for request tracing."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current request context."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear the correlation ID after request completes."""
    _correlation_id.set("")


_AUDIT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} [{level}] "
    "[{extra[correlation_id]}] <{extra[event]}> {message} | {extra}"
)


def configure_audit_logger(config: AuditConfig) -> None:
    """Configure the audit logger based on settings."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=config.log_level.value,
        format=_AUDIT_FORMAT,
        filter=lambda r: r["extra"].get("audit", False),
    )

    if config.log_file is None:
        return

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_path),
        level=config.log_level.value,
        format=_AUDIT_FORMAT,
        rotation="10 MB",
        retention="90 days",
        compression="gz",
        filter=lambda r: r["extra"].get("audit", False),
    )


def _get_audit_logger() -> Any:
    """Get logger bound with audit context."""
    return logger.bind(
        audit=True,
        correlation_id=get_correlation_id() or "-",
        event="",
    )


def _isoformat(value: datetime) -> str:
    return value.isoformat() if value.tzinfo else value.replace(tzinfo=UTC).isoformat()


def log_issuer_initialized(*, issuer: str, auth_method: str | None = None) -> None:
    """Log issuer backend construction."""
    audit = _get_audit_logger().bind(
        event="issuer_initialized",
        issuer=issuer,
        auth_method=auth_method,
    )
    audit.info("Issuer {} initialized", issuer)


def log_deprecated_setting(*, setting: str, replacement: str) -> None:
    """Log use of a deprecated configuration setting."""
    audit = _get_audit_logger().bind(
        event="deprecated_setting",
        setting=setting,
        replacement=replacement,
    )
    audit.warning("{} is deprecated; use {} instead", setting, replacement)


def log_token_acquired(*, accessor: str | None, expires_at: datetime) -> None:
    """Log creation of a renewable session token."""
    audit = _get_audit_logger().bind(
        event="token_acquired",
        accessor=accessor,
        expires_at=_isoformat(expires_at),
    )
    audit.info("Renewable token acquired, expires {}", _isoformat(expires_at))


def log_token_renewed(*, accessor: str | None, expires_at: datetime, renewals: int) -> None:
    """Log a successful token renewal."""
    audit = _get_audit_logger().bind(
        event="token_renewed",
        accessor=accessor,
        expires_at=_isoformat(expires_at),
        renewals=renewals,
    )
    audit.info("Token renewed, expires {}", _isoformat(expires_at))


def log_token_revoked(*, accessor: str | None, reason: str) -> None:
    """Log a session token Vault refused to renew."""
    audit = _get_audit_logger().bind(
        event="token_revoked",
        accessor=accessor,
        reason=reason,
    )
    audit.warning("Session token refused ({}); authenticating again", reason)


def log_short_lease(*, accessor: str | None, expires_at: datetime, renew_before: float) -> None:
    """Log a lease too short for the configured renewal window."""
    audit = _get_audit_logger().bind(
        event="token_short_lease",
        accessor=accessor,
        expires_at=_isoformat(expires_at),
        renew_before=renew_before,
    )
    audit.warning(
        "Token lease ending {} is shorter than renew_before ({:.0f}s); renewing at half the remaining lease",
        _isoformat(expires_at),
        renew_before,
    )


def log_renewal_failed(*, error: RenewalError, retry_in: float, expires_at: datetime) -> None:
    """Log a failed renewal attempt that will be retried."""
    audit = _get_audit_logger().bind(
        event="token_renewal_failed",
        retry_in=retry_in,
        expires_at=_isoformat(expires_at),
        **error.to_audit_dict(),
    )
    audit.warning("{} (retrying in {:.0f}s)", error.message, retry_in)


def log_certificate_issued(
    *,
    issuer: str,
    common_name: str,
    serial_number: int,
    not_after: datetime,
) -> None:
    """Log certificate issuance."""
    audit = _get_audit_logger().bind(
        event="cert_issued",
        issuer=issuer,
        common_name=common_name,
        serial_number=serial_number,
        not_after=_isoformat(not_after),
    )
    audit.info("Certificate issued by {}: {}", issuer, common_name)


def log_issuance_failed(*, issuer: str, common_name: str, error: Exception) -> None:
    """Log a certificate request the issuer could not fulfil."""
    audit = _get_audit_logger().bind(
        event="cert_issue_failed",
        issuer=issuer,
        common_name=common_name,
        error_type=type(error).__name__,
        error_message=str(error),
    )
    audit.warning("Certificate issuance by {} failed for {}: {}", issuer, common_name, error)


def log_error(*, error: Exception, context: str) -> None:
    """Log an error with full context."""
    audit = _get_audit_logger().bind(
        event="error",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
    )
    audit.exception("Error during {}: {}", context, error)


def log_startup(*, version: str, issuer: str, host: str, port: int) -> None:
    """Log server startup."""
    audit = _get_audit_logger().bind(
        event="startup",
        version=version,
        issuer=issuer,
        host=host,
        port=port,
    )
    audit.info("Issuer Proxy v{} starting with {} issuer", version, issuer)


def log_shutdown() -> None:
    """Log server shutdown."""
    audit = _get_audit_logger().bind(event="shutdown")
    audit.info("Issuer Proxy shutting down")
