"""FastAPI dependencies for resource endpoints protected by access tokens."""

from typing import Annotated

import structlog
from fastapi import Depends, Request
from pydantic import BaseModel, ConfigDict

from oauthkit.core.errors import INVALID_DPOP_PROOF, INVALID_TOKEN
from oauthkit.core.server import OAuthServer
from oauthkit.dpop.claims import DPoPClaims
from oauthkit.dpop.validator import DPoPRequest
from oauthkit.oauth.types import TokenPayload

logger = structlog.get_logger()

BEARER = "bearer"
DPOP = "dpop"


class CredentialRejected(Exception):
    """A resource request whose credential is absent, not live, or misused."""

    def __init__(self, reason: str, public_code: str = INVALID_TOKEN) -> None:
        self.reason = reason
        self.public_code = public_code
        super().__init__(reason)


class AuthenticatedToken(BaseModel):
    """A live access token and, for bound tokens, the accepted proof."""

    model_config = ConfigDict(frozen=True)

    token: str
    payload: TokenPayload
    dpop_claims: DPoPClaims | None = None

    @property
    def token_type(self) -> str:
        return "DPoP" if self.dpop_claims is not None else "Bearer"


def get_server(request: Request) -> OAuthServer:
    """Return the OAuthServer attached to the running app."""
    return request.app.state.oauth_server


ServerDep = Annotated[OAuthServer, Depends(get_server)]


def _authorization(request: Request) -> tuple[str, str | None]:
    scheme, _, credential = request.headers.get("Authorization", "").partition(" ")
    credential = credential.strip()
    return scheme.lower(), credential or None


async def require_access_token(request: Request, server: ServerDep) -> AuthenticatedToken:
    """Accept only live access tokens; DPoP-bound ones need a matching proof."""
    scheme, credential = _authorization(request)
    if credential is None or scheme not in (BEARER, DPOP):
        raise CredentialRejected("missing_token")

    payload = await server.tokens.lookup_access_token(credential)
    if payload is None:
        raise CredentialRejected("token_not_live")

    bound_kid = None
    if server.dpop is not None:
        bound_kid = await server.dpop.bindings.bound_key(payload.jti)
    if bound_kid is None:
        if scheme != BEARER:
            raise CredentialRejected("unbound_token_with_dpop_scheme")
        return AuthenticatedToken(token=credential, payload=payload)

    if scheme != DPOP:
        raise CredentialRejected("dpop_scheme_required")
    proof = request.headers.get("DPoP")
    if proof is None:
        raise CredentialRejected("missing_dpop_proof", INVALID_DPOP_PROOF)
    claims = await server.dpop.validator.validate(
        proof,
        DPoPRequest(
            method=request.method,
            uri=f"{server.settings.issuer}{request.url.path}",
            access_token=credential,
        ),
        client_id=payload.client_id,
        bound_access_token=credential,
        require_ath=True,
    )
    return AuthenticatedToken(token=credential, payload=payload, dpop_claims=claims)


AccessTokenDep = Annotated[AuthenticatedToken, Depends(require_access_token)]
