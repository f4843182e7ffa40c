"""DPoP proof validation.

A proof moves through four short-circuiting stages: decode (structure,
key lookup, signature and lifetime), request binding (``htm``/``htu``),
nonce consumption, and access-token binding (``ath`` and the binding
store). Cheap structural checks run before the stateful ones. Any
failure raises TokenEngineError carrying the ``invalid_dpop_proof``
public code, except storage outages which stay ``server_error`` and a
failing bound access token which stays ``invalid_token``. Every store
call runs under ``storage_timeout``.
"""

import hmac
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from oauthkit.core.errors import (
    INVALID_TOKEN,
    STORAGE_TIMEOUT_DEFAULT,
    ErrorKind,
    TokenEngineError,
    guard_storage,
)
from oauthkit.crypto.keys import jwk_to_public_key, key_fits_algorithm
from oauthkit.crypto.token_codec import TokenCodec, unverified_claims, unverified_header
from oauthkit.crypto.types import ASYMMETRIC_ALGORITHMS
from oauthkit.dpop.bindings import AccessTokenBindingStore
from oauthkit.dpop.claims import DPOP_TYP, PRIVATE_JWK_MEMBERS, DPoPClaims, access_token_hash
from oauthkit.dpop.nonce import NonceManager
from oauthkit.dpop.registry import KeyRegistry

logger = structlog.get_logger()

T = TypeVar("T")

MAX_PROOF_LIFETIME_DEFAULT = 300


class DPoPRequest(BaseModel):
    """The inbound request a proof must be bound to."""

    model_config = ConfigDict(frozen=True)

    method: str
    uri: str
    access_token: str | None = None


class _BoundTokenError(TokenEngineError):
    """The presented access token failed, not the proof."""


class DPoPValidator:
    """Validates DPoP proofs against registered keys and token bindings."""

    def __init__(
        self,
        codec: TokenCodec,
        registry: KeyRegistry,
        nonces: NonceManager,
        bindings: AccessTokenBindingStore,
        *,
        max_proof_lifetime: int = MAX_PROOF_LIFETIME_DEFAULT,
        require_nonce: bool = False,
        storage_timeout: float = STORAGE_TIMEOUT_DEFAULT,
    ) -> None:
        self._codec = codec
        self._registry = registry
        self._nonces = nonces
        self._bindings = bindings
        self._max_lifetime = max_proof_lifetime
        self._require_nonce = require_nonce
        self._storage_timeout = storage_timeout

    @property
    def require_nonce(self) -> bool:
        return self._require_nonce

    async def validate(
        self,
        proof: str,
        request: DPoPRequest,
        *,
        client_id: str | None = None,
        bound_access_token: str | None = None,
        register_key: bool = False,
        require_ath: bool = False,
    ) -> DPoPClaims:
        """Run every stage and return the accepted claims.

        With ``register_key`` an unregistered ``cnf.jwk`` is used to verify
        the proof and is registered for ``client_id`` only once the proof
        has been accepted.
        """
        try:
            claims, declared = await self._decode(proof, client_id, register_key)
            self._check_request(claims, request)
            await self._check_nonce(claims)
            await self._check_access_token(claims, request, bound_access_token, require_ath)
            if declared is not None:
                await self._register(claims.kid, declared, client_id)
        except TokenEngineError as exc:
            logger.info(
                "dpop_proof_rejected",
                kind=exc.kind.value,
                reason=exc.reason,
                client_id=client_id,
                method=request.method,
            )
            if exc.retryable or isinstance(exc, _BoundTokenError):
                raise
            raise exc.for_proof() from exc
        logger.debug("dpop_proof_accepted", kid=claims.kid, client_id=client_id)
        return claims

    async def _decode(
        self, proof: str, client_id: str | None, register_key: bool
    ) -> tuple[DPoPClaims, dict[str, Any] | None]:
        header = unverified_header(proof)
        if header.get("typ") != DPOP_TYP:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "invalid_typ")
        algorithm = header.get("alg")
        if algorithm not in ASYMMETRIC_ALGORITHMS:
            raise TokenEngineError(ErrorKind.SIGNATURE_INVALID, "unsupported_algorithm")

        cnf = unverified_claims(proof).get("cnf")
        jwk = cnf.get("jwk") if isinstance(cnf, dict) else None
        if not isinstance(jwk, dict) or not isinstance(jwk.get("kid"), str):
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "missing_cnf_kid")
        if PRIVATE_JWK_MEMBERS & jwk.keys():
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "private_key_in_jwk")
        kid = jwk["kid"]

        declared = None
        registered = await self._guard(self._registry.get(kid, client_id))
        if registered is not None:
            verification_jwk = registered.jwk
        elif register_key and not await self._guard(self._registry.contains(kid)):
            verification_jwk = declared = jwk
        else:
            raise TokenEngineError(ErrorKind.UNKNOWN_SIGNING_KEY, "unregistered_proof_key")

        try:
            public_key = jwk_to_public_key(verification_jwk)
        except ValueError as exc:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "unusable_jwk") from exc
        if not key_fits_algorithm(public_key, algorithm):
            raise TokenEngineError(ErrorKind.SIGNATURE_INVALID, "algorithm_mismatch")
        payload = self._codec.verify_with_key(proof, public_key, algorithm)
        try:
            claims = DPoPClaims.model_validate(payload)
        except ValidationError as exc:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "invalid_proof_claims") from exc
        if claims.exp - claims.iat > self._max_lifetime:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "proof_lifetime_too_long")
        return claims, declared

    @staticmethod
    def _check_request(claims: DPoPClaims, request: DPoPRequest) -> None:
        if claims.htm != request.method.upper():
            raise TokenEngineError(ErrorKind.REQUEST_BINDING_MISMATCH, "method_mismatch")
        if claims.htu != request.uri:
            raise TokenEngineError(ErrorKind.REQUEST_BINDING_MISMATCH, "uri_mismatch")

    async def _check_nonce(self, claims: DPoPClaims) -> None:
        if claims.nonce is None:
            if self._require_nonce:
                raise TokenEngineError(ErrorKind.NONCE_INVALID_OR_REUSED, "nonce_required")
            return
        if not await self._guard(self._nonces.validate_and_consume(claims.nonce)):
            raise TokenEngineError(ErrorKind.NONCE_INVALID_OR_REUSED, "invalid_or_reused_nonce")

    async def _check_access_token(
        self,
        claims: DPoPClaims,
        request: DPoPRequest,
        bound_access_token: str | None,
        require_ath: bool,
    ) -> None:
        if claims.ath is not None:
            presented = request.access_token
            if presented is None or not hmac.compare_digest(
                claims.ath.encode(), access_token_hash(presented).encode()
            ):
                raise TokenEngineError(ErrorKind.ACCESS_TOKEN_HASH_MISMATCH, "ath_mismatch")
        elif require_ath:
            raise TokenEngineError(ErrorKind.ACCESS_TOKEN_HASH_MISMATCH, "ath_missing")

        if bound_access_token is not None:
            try:
                token_id = self._codec.verify(bound_access_token).get("jti")
            except TokenEngineError as exc:
                raise _BoundTokenError(exc.kind, exc.reason, public_code=INVALID_TOKEN) from exc
            if not isinstance(token_id, str) or not await self._guard(
                self._bindings.verify_binding(token_id, claims.kid)
            ):
                raise TokenEngineError(ErrorKind.KEY_NOT_BOUND_TO_TOKEN, "token_not_bound_to_key")

    async def _register(self, kid: str, jwk: dict[str, Any], client_id: str | None) -> None:
        if not await self._guard(self._registry.put(kid, jwk, client_id)):
            raise TokenEngineError(ErrorKind.UNKNOWN_SIGNING_KEY, "key_already_registered")

    async def _guard(self, operation: Awaitable[T]) -> T:
        return await guard_storage(operation, self._storage_timeout)
