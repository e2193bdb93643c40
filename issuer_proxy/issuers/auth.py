"""Credential providers that keep a backend session authorized.

Two providers share the ``ensure_authorized(client)`` capability:

- ConstantToken: sets a fixed secret on the client, nothing else.
- RenewingToken: exchanges an initial token for a renewable session token,
  then renews it in a background task ahead of expiry.

A renewing session is a frozen ``Session`` value that is replaced as a
whole, so concurrent readers see either the old or the new credential.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from issuer_proxy.audit.logger import (
    log_renewal_failed,
    log_short_lease,
    log_token_acquired,
    log_token_renewed,
    log_token_revoked,
)
from issuer_proxy.exceptions import AuthorizationError, CAClientError, ConfigurationError, RenewalError
from issuer_proxy.issuers.encoding import encode_duration

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from issuer_proxy.clients.vault import VaultClient
    from issuer_proxy.config import RenewingTokenConfig

    Clock = Callable[[], datetime]
    Sleep = Callable[[float], Awaitable[None]]


class TokenClient(Protocol):
    """Any client that authenticates with a bearer-style secret."""

    def set_token(self, token: str) -> None:
        """Set the secret sent with subsequent requests."""
        ...


class AuthMethod(Protocol):
    """Protocol for credential providers."""

    async def ensure_authorized(self, client: Any) -> None:
        """Make sure the client carries a valid credential."""
        ...

    async def close(self) -> None:
        """Stop any background work."""
        ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConstantToken:
    """Credential provider for a fixed secret."""

    token: str = field(repr=False)
    issuer: str = "vault"

    async def ensure_authorized(self, client: TokenClient) -> None:
        """Set the constant token on the client.

        Raises:
            AuthorizationError: If the client rejects the value.
        """
        try:
            client.set_token(self.token)
        except ValueError as e:
            raise AuthorizationError.not_authorized(issuer=self.issuer, reason=str(e)) from e

    async def close(self) -> None:
        """Nothing to stop."""


@dataclass(frozen=True)
class Session:
    """A live session credential and its expiry."""

    token: str = field(repr=False)
    accessor: str | None
    expires_at: datetime
    renewals: int = 0
    revoked: bool = False

    def is_expired(self, now: datetime) -> bool:
        """Whether the credential is no longer valid at ``now``."""
        return now >= self.expires_at


class RenewingToken:
    """Credential provider for a renewable Vault token.

    On first use the initial token creates a renewable child token living
    ``time_to_live``. A background task then sleeps until ``renew_before``
    ahead of expiry and renews it. Failed renewals are logged and retried
    with capped exponential backoff; callers keep using the current token
    until it actually expires, after which ``ensure_authorized`` raises
    AuthorizationError. Once expired, the task re-authenticates with the
    initial token instead of renewing. A session token Vault refuses
    outright (401/403) is marked revoked and replaced at once.
    """

    def __init__(
        self,
        initial: str,
        *,
        renew_before: timedelta = timedelta(minutes=30),
        time_to_live: timedelta = timedelta(hours=24),
        issuer: str = "vault",
        clock: Clock = _utcnow,
        sleep: Sleep | None = None,
        backoff_initial: float = 1.0,
        backoff_max: float = 300.0,
    ) -> None:
        """Initialize provider.

        Args:
            initial: Token used to create the renewable session token.
            renew_before: How long before expiry to renew.
            time_to_live: Lifetime requested for the session token.
            issuer: Issuer name used in error messages.
            clock: Returns the current UTC time.
            sleep: Replaces the interruptible wait between attempts.
            backoff_initial: First retry delay after a failure, in seconds.
            backoff_max: Upper bound on the retry delay, in seconds.

        Raises:
            ConfigurationError: If the settings cannot produce a renewing session.
        """
        if not initial:
            raise ConfigurationError.missing_required(field="vault.auth_method_renewing_token.initial")
        if renew_before < timedelta(0):
            raise ConfigurationError.invalid_config(
                field="vault.auth_method_renewing_token.renew_before",
                reason="must not be negative",
            )
        if renew_before >= time_to_live:
            raise ConfigurationError.invalid_config(
                field="vault.auth_method_renewing_token.renew_before",
                reason=f"{encode_duration(renew_before)} is not shorter than time_to_live "
                f"{encode_duration(time_to_live)}",
            )

        self._initial = initial
        self._renew_before = renew_before
        self._time_to_live = time_to_live
        self._issuer = issuer
        self._clock = clock
        self._sleep = sleep
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max

        self._session: Session | None = None
        self._client: VaultClient | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._short_lease_logged = False

    @classmethod
    def from_config(cls, config: RenewingTokenConfig, **kwargs: Any) -> RenewingToken:
        """Create provider from configuration."""
        return cls(
            config.initial,
            renew_before=config.renew_before,
            time_to_live=config.time_to_live,
            **kwargs,
        )

    @property
    def session(self) -> Session | None:
        """The current session, or None before first use."""
        return self._session

    @property
    def renew_at(self) -> datetime | None:
        """When the next renewal is due."""
        session = self._session
        if session is None:
            return None
        return session.expires_at - self._renew_before

    async def ensure_authorized(self, client: VaultClient) -> None:
        """Set the live session token on the client.

        Authenticates and starts the renewal task on first use.

        Raises:
            AuthorizationError: If no session could be created, or it expired or was revoked.
        """
        session = self._session
        if session is None:
            session = await self._start(client)

        if session.revoked:
            raise AuthorizationError.credential_revoked(issuer=self._issuer, accessor=session.accessor)
        now = self._clock()
        if session.is_expired(now):
            raise AuthorizationError.credential_expired(
                issuer=self._issuer,
                expired_at=session.expires_at.isoformat(),
            )
        client.set_token(session.token)

    def refresh(self) -> None:
        """Wake the renewal task to renew now."""
        self._wake.set()

    async def close(self) -> None:
        """Cancel the renewal task. The session token is not revoked."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _start(self, client: VaultClient) -> Session:
        async with self._lock:
            if self._session is not None:
                return self._session
            try:
                self._session = await self._authenticate(client)
            except CAClientError as e:
                if e.is_auth_failure:
                    raise AuthorizationError.rejected(
                        issuer=self._issuer,
                        status_code=e.status_code,
                        detail=e.detail,
                    ) from e
                raise AuthorizationError.not_authorized(issuer=self._issuer, reason=e.detail) from e
            self._client = client
            self._task = asyncio.create_task(self._renew_loop(), name=f"{self._issuer}-token-renewal")
            return self._session

    async def _authenticate(self, client: VaultClient) -> Session:
        client.set_token(self._initial)
        auth = await client.create_token(ttl=encode_duration(self._time_to_live), renewable=True)
        session = Session(
            token=auth["client_token"],
            accessor=auth.get("accessor"),
            expires_at=self._expiry(auth),
        )
        log_token_acquired(accessor=session.accessor, expires_at=session.expires_at)
        return session

    async def _renew(self, client: VaultClient, session: Session) -> Session:
        client.set_token(session.token)
        auth = await client.renew_self(increment=encode_duration(self._time_to_live))
        renewed = replace(
            session,
            token=auth.get("client_token") or session.token,
            expires_at=self._expiry(auth),
            renewals=session.renewals + 1,
        )
        log_token_renewed(accessor=renewed.accessor, expires_at=renewed.expires_at, renewals=renewed.renewals)
        return renewed

    def _expiry(self, auth: dict[str, Any]) -> datetime:
        """Expiry from Vault's lease duration, or the requested TTL if absent."""
        lease = auth.get("lease_duration") or 0
        lifetime = timedelta(seconds=lease) if lease > 0 else self._time_to_live
        return self._clock() + lifetime

    async def _renew_loop(self) -> None:
        client = self._client
        if client is None:
            return

        failures = 0
        while True:
            if failures:
                delay = min(self._backoff_max, self._backoff_initial * 2 ** (failures - 1))
            else:
                delay = self._next_delay()
            await self._wait(delay)

            try:
                async with self._lock:
                    session = self._session
                    if session is None or session.revoked or session.is_expired(self._clock()):
                        replacement = await self._authenticate(client)
                    else:
                        replacement = await self._renew_or_reauthenticate(client, session)
                    self._session = replacement
            except Exception as e:  # noqa: BLE001 - a failed attempt is retried, never fatal
                failures += 1
                current = self._session
                reason = e.detail if isinstance(e, CAClientError) else str(e)
                log_renewal_failed(
                    error=RenewalError.renewal_failed(attempt=failures, reason=reason),
                    retry_in=min(self._backoff_max, self._backoff_initial * 2 ** (failures - 1)),
                    expires_at=current.expires_at if current else self._clock(),
                )
                continue

            failures = 0

    async def _renew_or_reauthenticate(self, client: VaultClient, session: Session) -> Session:
        """Renew, or log in again at once if Vault refused the session token.

        A refused token is marked revoked first, so callers get an
        AuthorizationError instead of it while the new login is pending or
        failing.
        """
        try:
            return await self._renew(client, session)
        except CAClientError as e:
            if not e.is_auth_failure:
                raise
            self._session = replace(session, revoked=True)
            log_token_revoked(accessor=session.accessor, reason=e.detail)
        return await self._authenticate(client)

    def _next_delay(self) -> float:
        """Seconds until the next renewal of a healthy session.

        A lease no longer than ``renew_before`` would make the deadline
        already due after every renewal; such sessions are renewed at half
        their remaining lifetime, never sooner than ``backoff_initial``.
        """
        session = self._session
        if session is None:
            return 0.0
        now = self._clock()
        until_renewal = (session.expires_at - self._renew_before - now).total_seconds()
        if until_renewal > 0:
            return until_renewal

        if not self._short_lease_logged:
            self._short_lease_logged = True
            log_short_lease(
                accessor=session.accessor,
                expires_at=session.expires_at,
                renew_before=self._renew_before.total_seconds(),
            )
        remaining = (session.expires_at - now).total_seconds()
        return max(remaining / 2, self._backoff_initial)

    async def _wait(self, delay: float) -> None:
        """Sleep for ``delay`` seconds or until refresh() is called."""
        sleep = self._sleep or asyncio.sleep
        sleeping = asyncio.ensure_future(sleep(delay))
        waking = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({sleeping, waking}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeping.cancel()
            waking.cancel()
        self._wake.clear()
