"""OAuth token revocation endpoint."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Form
from starlette.responses import JSONResponse

from oauthkit.api.deps import ServerDep
from oauthkit.core.errors import TokenEngineError

logger = structlog.get_logger()

router = APIRouter()

HTTP_SERVICE_UNAVAILABLE = 503


@router.post("/oauth/revoke")
async def revoke(
    server: ServerDep,
    token: Annotated[str, Form()],
    token_type_hint: Annotated[str | None, Form()] = None,
) -> JSONResponse:
    """POST /oauth/revoke -- revoke a token (idempotent per RFC 7009)."""
    try:
        await server.tokens.revoke(token)
    except TokenEngineError as exc:
        logger.error("revocation_failed", reason=exc.reason, hint=token_type_hint)
        return JSONResponse(
            {"error": exc.public_code, "error_description": exc.public_description},
            status_code=HTTP_SERVICE_UNAVAILABLE,
        )
    return JSONResponse({}, status_code=200)
