"""Authorization server metadata and JWKS endpoints."""

from fastapi import APIRouter
from starlette.responses import JSONResponse

from oauthkit.api.deps import ServerDep

router = APIRouter()

JWKS_CACHE_CONTROL = "public, max-age=3600"


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(server: ServerDep) -> JSONResponse:
    """RFC 8414 metadata, including extension members."""
    return JSONResponse(server.metadata().model_dump(exclude_none=True))


@router.get("/oauth/jwks")
async def jwks(server: ServerDep) -> JSONResponse:
    """JSON Web Key Set of every asymmetric signing key."""
    document = server.codec.key_set.public_jwks().to_jwks()
    return JSONResponse(document, headers={"Cache-Control": JWKS_CACHE_CONTROL})
