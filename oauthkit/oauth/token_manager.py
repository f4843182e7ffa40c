"""Access and refresh token issuance, lookup, revocation, and rotation."""

from collections.abc import Awaitable, Sequence
from typing import TypeVar

import structlog
import uuid_utils
from pydantic import ValidationError

from oauthkit.core.clock import Clock
from oauthkit.core.errors import (
    STORAGE_TIMEOUT_DEFAULT,
    ErrorKind,
    TokenEngineError,
    guard_storage,
)
from oauthkit.crypto.token_codec import TokenCodec
from oauthkit.oauth.extensions import TokenExtension, check_extensions
from oauthkit.oauth.storage import TokenStorage
from oauthkit.oauth.types import (
    AccessToken,
    IssuanceContext,
    RefreshToken,
    SignedToken,
    TokenKind,
    TokenPayload,
    TokenRecord,
)

logger = structlog.get_logger()

T = TypeVar("T")
H = TypeVar("H", bound=SignedToken)

ACCESS_TOKEN_TTL_DEFAULT = 3600
REFRESH_TOKEN_TTL_DEFAULT = 2_592_000

_NO_CONTEXT = IssuanceContext()


class TokenManager:
    """Mints signed tokens and tracks their identifiers in a live set.

    A token is trusted only when its signature and lifetime verify *and*
    its ``jti`` is still in the live set. Cryptographic failures raise
    TokenEngineError; a well-formed token that was revoked, never stored,
    or is of the other kind looks up as ``None``.
    """

    def __init__(
        self,
        codec: TokenCodec,
        storage: TokenStorage,
        *,
        issuer: str,
        access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT,
        refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT,
        storage_timeout: float = STORAGE_TIMEOUT_DEFAULT,
        extensions: Sequence[TokenExtension] = (),
        clock: Clock | None = None,
    ) -> None:
        self._codec = codec
        self._storage = storage
        self._issuer = issuer
        self._access_ttl = access_token_ttl
        self._refresh_ttl = refresh_token_ttl
        self._storage_timeout = storage_timeout
        self._extensions = check_extensions(extensions)
        self._clock = clock or codec.clock

    @property
    def codec(self) -> TokenCodec:
        return self._codec

    @property
    def storage(self) -> TokenStorage:
        return self._storage

    @property
    def extensions(self) -> tuple[TokenExtension, ...]:
        return self._extensions

    @property
    def access_token_ttl(self) -> int:
        return self._access_ttl

    async def issue_access_and_refresh(
        self,
        client_id: str,
        user_id: str | None = None,
        scopes: Sequence[str] | None = None,
        access_ttl: int | None = None,
        context: IssuanceContext | None = None,
    ) -> tuple[AccessToken, RefreshToken]:
        """Issue and store an access/refresh pair sharing client, user and scope."""
        now = int(self._clock())
        access = self._mint(
            AccessToken, client_id, user_id, scopes, now, self._ttl(access_ttl)
        )
        refresh = self._mint(
            RefreshToken, client_id, user_id, scopes, now, self._refresh_ttl
        )
        await self._store(access)
        await self._store(refresh)
        await self._notify_issued(access, context or _NO_CONTEXT)
        logger.info(
            "tokens_issued",
            client_id=client_id,
            access_jti=access.token_id,
            refresh_jti=refresh.token_id,
        )
        return access, refresh

    async def issue_access_only(
        self,
        client_id: str,
        user_id: str | None = None,
        scopes: Sequence[str] | None = None,
        access_ttl: int | None = None,
        context: IssuanceContext | None = None,
    ) -> AccessToken:
        """Issue and store a lone access token (client credentials style)."""
        now = int(self._clock())
        access = self._mint(
            AccessToken, client_id, user_id, scopes, now, self._ttl(access_ttl)
        )
        await self._store(access)
        await self._notify_issued(access, context or _NO_CONTEXT)
        logger.info("access_token_issued", client_id=client_id, access_jti=access.token_id)
        return access

    async def lookup_access_token(self, token: str) -> TokenPayload | None:
        payload = self._decode(token)
        if payload.token_type is not TokenKind.ACCESS:
            return None
        record = await self._guard(self._storage.get_access_token(payload.jti))
        return payload if record is not None else None

    async def lookup_refresh_token(self, token: str) -> TokenPayload | None:
        payload = self._decode(token)
        if payload.token_type is not TokenKind.REFRESH:
            return None
        record = await self._guard(self._storage.get_refresh_token(payload.jti))
        return payload if record is not None else None

    async def revoke(self, token: str) -> None:
        """Remove a token from the live set. Never fails on bad input."""
        try:
            payload = self._decode(token, check_lifetime=False)
        except TokenEngineError as exc:
            logger.debug("revoke_ignored", reason=exc.reason)
            return
        if payload.token_type is TokenKind.ACCESS:
            removed = await self._guard(self._storage.revoke_access_token(payload.jti))
        else:
            removed = await self._guard(self._storage.revoke_refresh_token(payload.jti))
        if removed:
            await self._notify_revoked(payload.jti, payload.token_type)
            logger.info("token_revoked", jti=payload.jti, kind=payload.token_type.value)

    async def rotate_refresh_scope(
        self, refresh_token: RefreshToken | str, scopes: Sequence[str]
    ) -> RefreshToken | None:
        """Replace a live refresh token with one carrying ``scopes``.

        Returns None when the old token is no longer live. The old signed
        string stays verifiable but is absent from the live set. The
        replacement is stored before the old token is claimed, so a storage
        failure leaves the caller holding a live token.
        """
        if isinstance(refresh_token, RefreshToken):
            refresh_token = refresh_token.token
        payload = await self.lookup_refresh_token(refresh_token)
        if payload is None:
            return None
        now = int(self._clock())
        rotated = self._mint(
            RefreshToken,
            payload.client_id,
            payload.user_id,
            scopes,
            now,
            self._refresh_ttl,
        )
        await self._store(rotated)
        if not await self._claim_refresh(payload):
            # Lost the race for the old token; withdraw the replacement.
            await self._guard(self._storage.revoke_refresh_token(rotated.token_id))
            return None
        logger.info("refresh_scope_rotated", old_jti=payload.jti, new_jti=rotated.token_id)
        return rotated

    async def cleanup(self) -> int:
        """Drop expired records from the live set."""
        removed = await self._guard(self._storage.delete_expired(self._clock()))
        if removed:
            logger.debug("expired_tokens_swept", count=removed)
        return removed

    async def exchange_refresh_token(
        self,
        payload: TokenPayload,
        scopes: Sequence[str] | None = None,
        access_ttl: int | None = None,
        context: IssuanceContext | None = None,
    ) -> tuple[AccessToken, RefreshToken] | None:
        """Spend a looked-up refresh token on a new pair.

        Of two concurrent exchanges of the same token only one wins; the
        loser gets None.
        """
        if not await self._claim_refresh(payload):
            return None
        return await self.issue_access_and_refresh(
            payload.client_id,
            payload.user_id,
            scopes if scopes is not None else payload.scopes,
            access_ttl,
            context,
        )

    async def _store(self, token: SignedToken) -> None:
        record = TokenRecord.from_payload(token.payload)
        if token.kind is TokenKind.ACCESS:
            await self._guard(self._storage.put_access_token(token.token_id, record))
        else:
            await self._guard(self._storage.put_refresh_token(token.token_id, record))

    async def _claim_refresh(self, payload: TokenPayload) -> bool:
        removed = await self._guard(self._storage.revoke_refresh_token(payload.jti))
        if removed:
            await self._notify_revoked(payload.jti, TokenKind.REFRESH)
        return removed

    def _mint(
        self,
        handle: type[H],
        client_id: str,
        user_id: str | None,
        scopes: Sequence[str] | None,
        now: int,
        ttl: int,
    ) -> H:
        if ttl <= 0:
            raise ValueError("Token lifetime must be positive")
        payload = TokenPayload(
            iss=self._issuer,
            sub=user_id or "",
            aud=[client_id],
            exp=now + ttl,
            iat=now,
            jti=str(uuid_utils.uuid7()),
            scope=" ".join(scopes) if scopes else None,
            client_id=client_id,
            token_type=handle.kind,
        )
        return handle(token=self._codec.sign(payload.to_claims()), payload=payload)

    def _decode(self, token: str, *, check_lifetime: bool = True) -> TokenPayload:
        claims = self._codec.verify(token, check_lifetime=check_lifetime)
        try:
            return TokenPayload.model_validate(claims)
        except ValidationError as exc:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "unexpected_token_shape") from exc

    async def _guard(self, operation: Awaitable[T]) -> T:
        """Run a storage call under the configured timeout."""
        return await guard_storage(operation, self._storage_timeout)

    def _ttl(self, access_ttl: int | None) -> int:
        return access_ttl if access_ttl is not None else self._access_ttl

    async def _notify_issued(self, token: AccessToken, context: IssuanceContext) -> None:
        for extension in self._extensions:
            if extension.observes_issuance:
                await self._guard(extension.on_access_token_issued(token, context))

    async def _notify_revoked(self, token_id: str, kind: TokenKind) -> None:
        for extension in self._extensions:
            if extension.observes_revocation:
                await self._guard(extension.on_token_revoked(token_id, kind))
