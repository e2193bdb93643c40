"""HTTP transport for the CFSSL API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import ssl
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from issuer_proxy.exceptions import CAClientError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


class CFSSLClient(Protocol):
    """CFSSL operations used by the CFSSL issuer."""

    def set_token(self, token: str) -> None:
        """Set the hex-encoded auth key used to sign requests."""
        ...

    async def sign(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Sign a request and return the response's result block."""
        ...

    async def info(self, profile: str = "") -> dict[str, Any]:
        """Return the CA information for a profile."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection pool."""
        ...


class HTTPCFSSLClient:
    """CFSSL client over httpx.

    With an auth key set, sign requests go to ``authsign`` wrapped in an
    HMAC-SHA256 token; otherwise to the unauthenticated ``sign`` endpoint.
    """

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
            url: Base URL of the CFSSL server.
            ca_cert_path: CA bundle for the server certificate; system CAs if None.
            timeout: Per-request timeout in seconds.
            transport: Optional transport override.
        """
        verify: ssl.SSLContext | bool = True
        if ca_cert_path is not None:
            verify = ssl.create_default_context(cafile=str(ca_cert_path))

        self._http = httpx.AsyncClient(
            base_url=url.rstrip("/") + "/api/v1/cfssl/",
            verify=verify,
            timeout=timeout,
            transport=transport,
        )
        self._auth_key = b""

    def set_token(self, token: str) -> None:
        """Set the auth key.

        Raises:
            ValueError: If the key is not hex encoded.
        """
        self._auth_key = bytes.fromhex(token)

    async def sign(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Sign a certificate request."""
        if not self._auth_key:
            return await self._post("sign", dict(request))

        payload = json.dumps(dict(request)).encode("utf-8")
        token = hmac.new(self._auth_key, payload, hashlib.sha256).digest()
        wrapped = {
            "token": base64.b64encode(token).decode("ascii"),
            "request": base64.b64encode(payload).decode("ascii"),
        }
        return await self._post("authsign", wrapped)

    async def info(self, profile: str = "") -> dict[str, Any]:
        """Fetch the signing CA certificate."""
        body: dict[str, Any] = {"label": ""}
        if profile:
            body["profile"] = profile
        return await self._post("info", body)

    async def aclose(self) -> None:
        """Close the HTTP connection pool."""
        await self._http.aclose()

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(endpoint, json=payload)
        except httpx.HTTPError as e:
            msg = f"CFSSL request to {endpoint} failed: {e}"
            raise CAClientError(msg) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        errors = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in body.get("errors") or []]
        if response.is_error or not body.get("success", False):
            msg = f"CFSSL returned {response.status_code} for {endpoint}"
            raise CAClientError(msg, status_code=response.status_code, errors=errors)

        result = body.get("result")
        if not isinstance(result, dict):
            msg = f"CFSSL response for {endpoint} has no result"
            raise CAClientError(msg, status_code=response.status_code)
        return result
