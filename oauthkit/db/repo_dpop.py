"""SQL backends for DPoP nonces, registered keys, and token bindings."""

from typing import Any

import structlog
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from oauthkit.core.clock import Clock, system_clock
from oauthkit.core.errors import storage_unavailable
from oauthkit.db.engine import SessionFactory, transaction
from oauthkit.db.models_dpop import DPoPKeyEntity, DPoPNonceEntity, TokenBindingEntity
from oauthkit.dpop.bindings import TokenBinding
from oauthkit.dpop.nonce import NONCE_TTL_DEFAULT, Nonce, new_nonce_value
from oauthkit.dpop.registry import RegisteredKey

logger = structlog.get_logger()


class SqlNonceManager:
    """Nonce store whose consume step is one conditional UPDATE.

    The row count of ``UPDATE ... WHERE consumed = false AND expires_at >
    now`` decides the single winner among concurrent consumers.
    """

    def __init__(
        self,
        factory: SessionFactory,
        ttl: int = NONCE_TTL_DEFAULT,
        *,
        clock: Clock = system_clock,
    ) -> None:
        self._factory = factory
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> int:
        return self._ttl

    async def issue(self) -> Nonce:
        now = self._clock()
        nonce = Nonce(value=new_nonce_value(), created_at=now, expires_at=now + self._ttl)
        async with transaction(self._factory) as session:
            session.add(
                DPoPNonceEntity(
                    value=nonce.value,
                    created_at=nonce.created_at,
                    expires_at=nonce.expires_at,
                    consumed=False,
                )
            )
        return nonce

    async def validate_and_consume(self, value: str) -> bool:
        now = self._clock()
        async with transaction(self._factory) as session:
            stmt = (
                update(DPoPNonceEntity)
                .where(
                    DPoPNonceEntity.value == value,
                    DPoPNonceEntity.consumed.is_(False),
                    DPoPNonceEntity.expires_at > now,
                )
                .values(consumed=True)
            )
            result = await session.execute(stmt)
            if result.rowcount == 1:
                return True
            existing = await session.get(DPoPNonceEntity, value)
        if existing is None:
            logger.info("dpop_nonce_rejected", reason="unknown_nonce")
        elif existing.consumed:
            logger.warning("dpop_nonce_reused", created_at=existing.created_at)
        else:
            logger.info("dpop_nonce_rejected", reason="expired_nonce")
        return False

    async def cleanup(self) -> int:
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(DPoPNonceEntity).where(DPoPNonceEntity.expires_at <= self._clock())
            )
            return result.rowcount


def _to_registered(entity: DPoPKeyEntity) -> RegisteredKey:
    return RegisteredKey(
        kid=entity.kid,
        jwk=dict(entity.jwk),
        client_id=entity.client_id,
        expires_at=entity.expires_at,
    )


class SqlKeyRegistry:
    """DPoP key registry backed by the ``dpop_keys`` table."""

    def __init__(self, factory: SessionFactory, *, clock: Clock = system_clock) -> None:
        self._factory = factory
        self._clock = clock

    async def _load(self, kid: str) -> RegisteredKey | None:
        async with transaction(self._factory) as session:
            entity = await session.get(DPoPKeyEntity, kid)
            return _to_registered(entity) if entity is not None else None

    async def put(
        self,
        kid: str,
        jwk: dict[str, Any],
        client_id: str | None = None,
        expires_at: float | None = None,
    ) -> bool:
        """Register a key. False if ``kid`` already names a different key."""
        existing = await self._load(kid)
        if existing is not None and existing.is_expired(self._clock()):
            await self.remove(kid)
            existing = None
        if existing is None:
            try:
                async with transaction(self._factory) as session:
                    session.add(
                        DPoPKeyEntity(
                            kid=kid, jwk=jwk, client_id=client_id, expires_at=expires_at
                        )
                    )
            except IntegrityError:
                existing = await self._load(kid)
                if existing is None:
                    raise storage_unavailable("dpop_key_conflict") from None
            else:
                logger.info("dpop_key_registered", kid=kid, client_id=client_id)
                return True
        return existing.jwk == jwk and existing.client_id == client_id

    async def get(self, kid: str, client_id: str | None = None) -> RegisteredKey | None:
        entry = await self._load(kid)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry if entry.visible_to(client_id) else None

    async def contains(self, kid: str) -> bool:
        entry = await self._load(kid)
        return entry is not None and not entry.is_expired(self._clock())

    async def remove(self, kid: str) -> None:
        async with transaction(self._factory) as session:
            await session.execute(delete(DPoPKeyEntity).where(DPoPKeyEntity.kid == kid))

    async def cleanup(self) -> int:
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(DPoPKeyEntity).where(
                    DPoPKeyEntity.expires_at.is_not(None),
                    DPoPKeyEntity.expires_at <= self._clock(),
                )
            )
            return result.rowcount


class SqlBindingStore:
    """Access-token bindings backed by the ``dpop_token_bindings`` table."""

    def __init__(self, factory: SessionFactory, *, clock: Clock = system_clock) -> None:
        self._factory = factory
        self._clock = clock

    async def bind(self, token_id: str, kid: str, expires_at: float | None = None) -> None:
        try:
            async with transaction(self._factory) as session:
                session.add(
                    TokenBindingEntity(token_id=token_id, kid=kid, expires_at=expires_at)
                )
        except IntegrityError:
            async with transaction(self._factory) as session:
                existing = await session.get(TokenBindingEntity, token_id)
            if existing is None or existing.kid != kid:
                raise ValueError(f"Token {token_id} is already bound to another key") from None

    async def verify_binding(self, token_id: str, kid: str) -> bool:
        return await self.bound_key(token_id) == kid

    async def bound_key(self, token_id: str) -> str | None:
        async with transaction(self._factory) as session:
            entity = await session.get(TokenBindingEntity, token_id)
            if entity is None:
                return None
            binding = TokenBinding(
                token_id=entity.token_id, kid=entity.kid, expires_at=entity.expires_at
            )
        return None if binding.is_expired(self._clock()) else binding.kid

    async def unbind(self, token_id: str) -> None:
        async with transaction(self._factory) as session:
            await session.execute(
                delete(TokenBindingEntity).where(TokenBindingEntity.token_id == token_id)
            )

    async def cleanup(self) -> int:
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(TokenBindingEntity).where(
                    TokenBindingEntity.expires_at.is_not(None),
                    TokenBindingEntity.expires_at <= self._clock(),
                )
            )
            return result.rowcount
