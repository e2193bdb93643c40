"""HTTP transport for the Vault API.

Performs the raw calls only: token creation and renewal plus writes to
secrets engine paths. Translating certificate requests and normalizing
errors is the issuer backend's job.
"""

from __future__ import annotations

import ssl
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from issuer_proxy.exceptions import CAClientError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


class VaultClient(Protocol):
    """Vault operations used by the Vault issuer and its credentials."""

    def set_token(self, token: str) -> None:
        """Set the token sent with subsequent requests."""
        ...

    async def create_token(self, *, ttl: str, renewable: bool = True) -> dict[str, Any]:
        """Create a child token and return the response's auth block."""
        ...

    async def renew_self(self, *, increment: str) -> dict[str, Any]:
        """Renew the current token and return the response's auth block."""
        ...

    async def write(self, path: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Write to a secrets engine path and return the response's data block."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection pool."""
        ...


class HTTPVaultClient:
    """Vault client over httpx."""

    def __init__(
        self,
        url: str,
        *,
        ca_cert_path: Path | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            url: Base URL of the Vault server, e.g. https://vault:8200.
            ca_cert_path: CA bundle for the server certificate; system CAs if None.
            timeout: Per-request timeout in seconds.
            transport: Optional transport override.
        """
        verify: ssl.SSLContext | bool = True
        if ca_cert_path is not None:
            verify = ssl.create_default_context(cafile=str(ca_cert_path))

        self._http = httpx.AsyncClient(
            base_url=url.rstrip("/") + "/v1/",
            verify=verify,
            timeout=timeout,
            transport=transport,
        )
        self._token = ""

    def set_token(self, token: str) -> None:
        """Set the token sent as X-Vault-Token."""
        self._token = token

    async def create_token(self, *, ttl: str, renewable: bool = True) -> dict[str, Any]:
        """Create a child of the current token."""
        body = await self._post("auth/token/create", {"ttl": ttl, "renewable": renewable})
        return _auth_block(body, "auth/token/create")

    async def renew_self(self, *, increment: str) -> dict[str, Any]:
        """Renew the current token by the given increment."""
        body = await self._post("auth/token/renew-self", {"increment": increment})
        return _auth_block(body, "auth/token/renew-self")

    async def write(self, path: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Write to a path, e.g. pki/sign/my-role."""
        body = await self._post(path, data)
        result = body.get("data")
        if not isinstance(result, dict):
            msg = f"Vault response for {path} has no data"
            raise CAClientError(msg)
        return result

    async def aclose(self) -> None:
        """Close the HTTP connection pool."""
        await self._http.aclose()

    async def _post(self, path: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(
                path.lstrip("/"),
                json=dict(payload),
                headers={"X-Vault-Token": self._token},
            )
        except httpx.HTTPError as e:
            msg = f"Vault request to {path} failed: {e}"
            raise CAClientError(msg) from e

        if response.is_error:
            msg = f"Vault returned {response.status_code} for {path}"
            raise CAClientError(msg, status_code=response.status_code, errors=_error_messages(response))

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            msg = f"Vault returned a non-JSON body for {path}"
            raise CAClientError(msg, status_code=response.status_code) from e
        return body if isinstance(body, dict) else {}


def _auth_block(body: dict[str, Any], path: str) -> dict[str, Any]:
    auth = body.get("auth")
    if not isinstance(auth, dict) or not auth.get("client_token"):
        msg = f"Vault response for {path} has no auth block"
        raise CAClientError(msg)
    return auth


def _error_messages(response: httpx.Response) -> list[str]:
    """Extract Vault's "errors" list, falling back to the raw body."""
    try:
        body = response.json()
    except ValueError:
        return [response.text] if response.text else []
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list):
        return [str(e) for e in errors]
    return []
