"""OAuth token endpoint (client_credentials and refresh_token grants)."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Form, Request
from pydantic import BaseModel
from starlette.responses import JSONResponse

from oauthkit.api.deps import ServerDep
from oauthkit.core.errors import INVALID_DPOP_PROOF, ErrorKind, TokenEngineError, guard_storage
from oauthkit.core.server import OAuthServer
from oauthkit.dpop.routes import NO_STORE_HEADERS
from oauthkit.dpop.validator import DPoPRequest
from oauthkit.oauth.extensions import apply_response_hooks
from oauthkit.oauth.types import IssuanceContext, TokenResponse

logger = structlog.get_logger()

router = APIRouter()

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_SERVICE_UNAVAILABLE = 503

USE_DPOP_NONCE = "use_dpop_nonce"


class _TokenForm(BaseModel):
    """Bundle form fields for the token endpoint."""

    grant_type: str
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
    refresh_token: str | None = None


class _GrantRejected(Exception):
    def __init__(self, error: str, status_code: int = HTTP_BAD_REQUEST) -> None:
        self.error = error
        self.status_code = status_code
        super().__init__(error)


def _error(error: str, status_code: int, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"error": error}, status_code=status_code, headers=headers)


def _requested_scopes(scope: str | None) -> list[str] | None:
    if scope is None:
        return None
    return scope.split()


async def _nonce_headers(server: OAuthServer) -> dict[str, str]:
    if server.dpop is None:
        return {}
    nonce = await guard_storage(
        server.dpop.nonces.issue(), server.settings.storage_timeout_seconds
    )
    return {"DPoP-Nonce": nonce.value}


async def _proof_context(
    request: Request, server: OAuthServer, client_id: str
) -> IssuanceContext:
    """Validate the DPoP header, if any, and declare its key."""
    proof = request.headers.get("DPoP")
    if proof is None:
        return IssuanceContext()
    if server.dpop is None:
        raise _GrantRejected(INVALID_DPOP_PROOF)
    claims = await server.dpop.validator.validate(
        proof,
        DPoPRequest(method=request.method, uri=server.token_endpoint),
        client_id=client_id,
        register_key=True,
    )
    return IssuanceContext(dpop_key_id=claims.kid)


async def _client_credentials(
    request: Request, server: OAuthServer, form: _TokenForm, client_id: str
) -> tuple[TokenResponse, IssuanceContext]:
    context = await _proof_context(request, server, client_id)
    access = await server.tokens.issue_access_only(
        client_id, scopes=_requested_scopes(form.scope), context=context
    )
    response = TokenResponse(
        access_token=access.token,
        expires_in=access.expires_in,
        scope=access.payload.scope,
    )
    return response, context


async def _refresh(
    request: Request, server: OAuthServer, form: _TokenForm, client_id: str
) -> tuple[TokenResponse, IssuanceContext]:
    # Grant checks run before the proof: a refused grant registers no key.
    if not form.refresh_token:
        raise _GrantRejected("invalid_request")
    try:
        payload = await server.tokens.lookup_refresh_token(form.refresh_token)
    except TokenEngineError as exc:
        if exc.retryable:
            raise
        logger.info("refresh_token_rejected", client_id=client_id, reason=exc.reason)
        raise _GrantRejected("invalid_grant") from exc
    if payload is None or payload.client_id != client_id:
        raise _GrantRejected("invalid_grant")

    scopes = _requested_scopes(form.scope)
    if scopes is not None and not set(scopes) <= set(payload.scopes):
        raise _GrantRejected("invalid_scope")

    context = await _proof_context(request, server, client_id)
    pair = await server.tokens.exchange_refresh_token(payload, scopes, context=context)
    if pair is None:
        raise _GrantRejected("invalid_grant")
    access, refresh = pair
    response = TokenResponse(
        access_token=access.token,
        expires_in=access.expires_in,
        refresh_token=refresh.token,
        scope=access.payload.scope,
    )
    return response, context


_GRANTS = {
    "client_credentials": _client_credentials,
    "refresh_token": _refresh,
}


@router.post("/oauth/token", response_model=None)
async def token_endpoint(
    request: Request,
    server: ServerDep,
    form: Annotated[_TokenForm, Form()],
) -> JSONResponse:
    """POST /oauth/token -- issue tokens, DPoP-bound when a proof is sent."""
    if not form.client_id or not form.client_secret:
        return _error("invalid_client", HTTP_UNAUTHORIZED)
    if not server.clients.authenticate(form.client_id, form.client_secret):
        return _error("invalid_client", HTTP_UNAUTHORIZED)
    grant = _GRANTS.get(form.grant_type)
    if grant is None:
        return _error("unsupported_grant_type", HTTP_BAD_REQUEST)

    try:
        response, context = await grant(request, server, form, form.client_id)
    except _GrantRejected as exc:
        return _error(exc.error, exc.status_code)
    except TokenEngineError as exc:
        return await _engine_error(server, exc)

    response = apply_response_hooks(server.extensions, response, context)
    headers = {**NO_STORE_HEADERS}
    if context.dpop_key_id is not None:
        headers.update(await _nonce_headers(server))
    return JSONResponse(response.model_dump(exclude_none=True), headers=headers)


async def _engine_error(server: OAuthServer, exc: TokenEngineError) -> JSONResponse:
    logger.info("token_request_failed", kind=exc.kind.value, reason=exc.reason)
    if exc.retryable:
        return JSONResponse(
            {"error": exc.public_code, "error_description": exc.public_description},
            status_code=HTTP_SERVICE_UNAVAILABLE,
        )
    if exc.kind is ErrorKind.NONCE_INVALID_OR_REUSED:
        # RFC 9449 section 8: hand out a nonce the client can retry with
        return _error(USE_DPOP_NONCE, HTTP_BAD_REQUEST, await _nonce_headers(server))
    return JSONResponse(
        {"error": exc.public_code, "error_description": exc.public_description},
        status_code=HTTP_BAD_REQUEST,
    )
