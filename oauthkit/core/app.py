"""FastAPI application factory for the oauthkit authorization server."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from oauthkit.api.deps import CredentialRejected
from oauthkit.core.errors import INVALID_DPOP_PROOF, TokenEngineError
from oauthkit.core.log_config import configure_logging
from oauthkit.core.server import OAuthServer
from oauthkit.core.settings import AuthSettings
from oauthkit.crypto.key_set import KeySet
from oauthkit.crypto.keys import generate_rsa_keypair
from oauthkit.crypto.types import ASYMMETRIC_ALGORITHMS
from oauthkit.db.engine import get_session_factory, transaction
from oauthkit.db.repo_keys import ensure_key_set
from oauthkit.oauth.routes_discovery import router as discovery_router
from oauthkit.oauth.routes_revoke import router as revoke_router
from oauthkit.oauth.routes_token import router as token_router
from oauthkit.oauth.routes_tokeninfo import router as tokeninfo_router

logger = structlog.get_logger()

HTTP_UNAUTHORIZED = 401
HTTP_SERVICE_UNAVAILABLE = 503


def _challenge(public_code: str, description: str) -> str:
    if public_code == INVALID_DPOP_PROOF:
        algs = " ".join(ASYMMETRIC_ALGORITHMS)
        return f'DPoP error="{public_code}", error_description="{description}", algs="{algs}"'
    return f'Bearer error="{public_code}", error_description="{description}"'


async def _token_engine_error(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, TokenEngineError)
    logger.info("resource_request_rejected", kind=exc.kind.value, reason=exc.reason)
    body = {"error": exc.public_code, "error_description": exc.public_description}
    if exc.retryable:
        return JSONResponse(body, status_code=HTTP_SERVICE_UNAVAILABLE)
    return JSONResponse(
        body,
        status_code=HTTP_UNAUTHORIZED,
        headers={"WWW-Authenticate": _challenge(exc.public_code, exc.public_description)},
    )


async def _credential_rejected(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, CredentialRejected)
    logger.info("resource_request_rejected", reason=exc.reason)
    description = "The access token is invalid"
    return JSONResponse(
        {"error": exc.public_code, "error_description": description},
        status_code=HTTP_UNAUTHORIZED,
        headers={"WWW-Authenticate": _challenge(exc.public_code, description)},
    )


def _default_server(settings: AuthSettings) -> OAuthServer:
    if settings.storage_backend == "sql":
        # The key set is loaded from the database at startup.
        return OAuthServer.build_sql(settings, KeySet(), get_session_factory())
    logger.warning(
        "ephemeral_signing_key",
        detail="in-memory backend; tokens do not survive a restart",
    )
    keypair = generate_rsa_keypair()
    return OAuthServer.build(settings, KeySet.rsa(keypair.private_key_pem, keypair.kid))


async def _sweep(server: OAuthServer, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await server.cleanup()
        except TokenEngineError as exc:
            logger.warning("cleanup_failed", reason=exc.reason)


def create_app(server: OAuthServer | None = None) -> FastAPI:
    """Build and configure the FastAPI application."""
    settings = server.settings if server is not None else AuthSettings()
    configure_logging(settings.log_level, settings.log_json)
    server = server or _default_server(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.storage_backend == "sql" and server.codec.key_set.default is None:
            async with transaction(get_session_factory()) as session:
                key_set = await ensure_key_set(
                    session,
                    settings.signing_key_encryption_key,
                    settings.signing_key_family,
                )
            server.codec.replace_key_set(key_set)
        sweeper = asyncio.create_task(_sweep(server, settings.cleanup_interval_seconds))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="oauthkit authorization server",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.oauth_server = server

    app.add_exception_handler(TokenEngineError, _token_engine_error)
    app.add_exception_handler(CredentialRejected, _credential_rejected)

    app.include_router(discovery_router)
    app.include_router(token_router)
    app.include_router(revoke_router)
    app.include_router(tokeninfo_router)
    for extension in server.extensions:
        if extension.adds_endpoints:
            extension_router = extension.router()
            if extension_router is not None:
                app.include_router(extension_router)

    return app
