"""DPoP as a token engine extension."""

from typing import Any

from fastapi import APIRouter

from oauthkit.core.errors import STORAGE_TIMEOUT_DEFAULT, guard_storage
from oauthkit.crypto.types import ASYMMETRIC_ALGORITHMS
from oauthkit.dpop.bindings import AccessTokenBindingStore
from oauthkit.dpop.nonce import NonceManager
from oauthkit.dpop.registry import KeyRegistry
from oauthkit.dpop.routes import NONCE_PATH, build_nonce_router
from oauthkit.dpop.validator import DPoPValidator
from oauthkit.oauth.extensions import TokenExtension
from oauthkit.oauth.types import AccessToken, IssuanceContext, TokenKind, TokenResponse

DPOP_TOKEN_TYPE = "DPoP"


class DPoPExtension(TokenExtension):
    """Binds access tokens to the proof key they were requested with."""

    extension_id = "dpop"
    extension_name = "Demonstrating Proof of Possession"
    specification_version = "RFC 9449"

    observes_issuance = True
    observes_revocation = True
    modifies_token_response = True
    adds_endpoints = True

    def __init__(
        self,
        validator: DPoPValidator,
        nonces: NonceManager,
        registry: KeyRegistry,
        bindings: AccessTokenBindingStore,
        *,
        issuer: str,
        storage_timeout: float = STORAGE_TIMEOUT_DEFAULT,
    ) -> None:
        self.validator = validator
        self.nonces = nonces
        self.registry = registry
        self.bindings = bindings
        self._issuer = issuer
        self._storage_timeout = storage_timeout

    async def on_access_token_issued(
        self, token: AccessToken, context: IssuanceContext
    ) -> None:
        if context.dpop_key_id is not None:
            await self.bindings.bind(
                token.token_id, context.dpop_key_id, expires_at=token.payload.exp
            )

    async def on_token_revoked(self, token_id: str, kind: TokenKind) -> None:
        if kind is TokenKind.ACCESS:
            await self.bindings.unbind(token_id)

    def modify_token_response(
        self, response: TokenResponse, context: IssuanceContext
    ) -> TokenResponse:
        if context.dpop_key_id is None:
            return response
        return response.model_copy(update={"token_type": DPOP_TOKEN_TYPE})

    def router(self) -> APIRouter | None:
        return build_nonce_router(self.nonces, self._storage_timeout)

    def metadata(self) -> dict[str, Any]:
        return {
            "dpop_signing_alg_values_supported": list(ASYMMETRIC_ALGORITHMS),
            "dpop_nonce_endpoint": f"{self._issuer}{NONCE_PATH}",
        }

    async def cleanup(self) -> dict[str, int]:
        """Sweep expired nonces, keys and bindings."""
        return {
            "nonces": await guard_storage(self.nonces.cleanup(), self._storage_timeout),
            "keys": await guard_storage(self.registry.cleanup(), self._storage_timeout),
            "bindings": await guard_storage(self.bindings.cleanup(), self._storage_timeout),
        }
