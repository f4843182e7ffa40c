"""DPoP nonce endpoint."""

import structlog
from fastapi import APIRouter
from starlette.responses import JSONResponse

from oauthkit.core.errors import STORAGE_TIMEOUT_DEFAULT, TokenEngineError, guard_storage
from oauthkit.dpop.nonce import NonceManager

logger = structlog.get_logger()

NONCE_PATH = "/oauth/dpop_nonce"
HTTP_SERVICE_UNAVAILABLE = 503

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


def build_nonce_router(
    nonces: NonceManager, storage_timeout: float = STORAGE_TIMEOUT_DEFAULT
) -> APIRouter:
    """Router serving fresh nonces from ``nonces``."""
    router = APIRouter()

    @router.get(NONCE_PATH)
    async def dpop_nonce() -> JSONResponse:
        """GET /oauth/dpop_nonce -- issue a single-use DPoP nonce."""
        try:
            nonce = await guard_storage(nonces.issue(), storage_timeout)
        except TokenEngineError as exc:
            logger.error("dpop_nonce_issue_failed", reason=exc.reason)
            return JSONResponse(
                {"error": exc.public_code, "error_description": exc.public_description},
                status_code=HTTP_SERVICE_UNAVAILABLE,
            )
        return JSONResponse(
            {"nonce": nonce.value, "expires_in": nonces.ttl},
            headers={**NO_STORE_HEADERS, "DPoP-Nonce": nonce.value},
        )

    return router
