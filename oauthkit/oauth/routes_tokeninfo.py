"""Protected token-info resource."""

from fastapi import APIRouter
from starlette.responses import JSONResponse

from oauthkit.api.deps import AccessTokenDep

router = APIRouter()


@router.get("/oauth/tokeninfo")
async def tokeninfo(access: AccessTokenDep) -> JSONResponse:
    """GET /oauth/tokeninfo -- describe the presented access token."""
    payload = access.payload
    body: dict[str, object] = {
        "active": True,
        "client_id": payload.client_id,
        "sub": payload.sub,
        "scope": payload.scope,
        "exp": payload.exp,
        "iat": payload.iat,
        "token_type": access.token_type,
    }
    if access.dpop_claims is not None:
        body["cnf"] = {"kid": access.dpop_claims.kid}
    return JSONResponse(body, headers={"Cache-Control": "no-store"})
