"""FastAPI application entry point for Issuer Proxy.

Initializes configuration, the issuer backend and routes.
Run with: python -m issuer_proxy.main (or the issuer-proxy script)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from issuer_proxy import __version__
from issuer_proxy.audit.logger import (
    configure_audit_logger,
    log_error,
    log_shutdown,
    log_startup,
)
from issuer_proxy.config import load_config_from_env
from issuer_proxy.exceptions import IssuerProxyError
from issuer_proxy.issuers.selector import create_issuer
from issuer_proxy.routes.certificates import configure_routes, router

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from issuer_proxy.config import Settings
    from issuer_proxy.issuers.model import Issuer


def create_app(settings: Settings | None = None, issuer: Issuer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings instance. If not provided,
            loads from environment or defaults.
        issuer: Optional issuer to serve instead of one built from settings.

    Returns:
        Configured FastAPI application.

    Raises:
        ConfigurationError: If the issuer configuration is invalid.
    """
    if settings is None:
        settings = load_config_from_env()

    configure_audit_logger(settings.audit)

    if issuer is None:
        issuer = create_issuer(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan events; stops credential renewal on shutdown."""
        log_startup(
            version=__version__,
            issuer=settings.issuer.value,
            host=settings.server.host,
            port=settings.server.port,
        )
        try:
            yield
        finally:
            await issuer.aclose()
            log_shutdown()

    app = FastAPI(
        title="Issuer Proxy",
        description="Certificate issuance through Vault, CFSSL or AWS Private CA",
        version=__version__,
        lifespan=lifespan,
    )

    configure_routes(issuer)
    app.include_router(router)

    @app.exception_handler(IssuerProxyError)
    async def issuer_error_handler(
        _request: Request,
        exc: IssuerProxyError,
    ) -> JSONResponse:
        """Handle Issuer Proxy errors with appropriate HTTP status."""
        log_error(error=exc, context="request_handling")
        return JSONResponse(
            status_code=exc.http_status.value,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "version": __version__, "issuer": issuer.name}

    return app


def main() -> None:
    """Run the server using uvicorn."""
    settings = load_config_from_env()

    uvicorn_config: dict[str, Any] = {
        "app": create_app(settings),
        "host": settings.server.host,
        "port": settings.server.port,
    }

    if settings.server.tls:
        uvicorn_config["ssl_certfile"] = str(settings.server.tls.cert_file)
        uvicorn_config["ssl_keyfile"] = str(settings.server.tls.key_file)

    uvicorn.run(**uvicorn_config)


if __name__ == "__main__":
    main()
