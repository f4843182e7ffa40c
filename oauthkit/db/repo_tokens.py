"""SQL backend for the live token set."""

from sqlalchemy import delete, select

from oauthkit.db.engine import SessionFactory, transaction
from oauthkit.db.models_tokens import LiveTokenEntity
from oauthkit.oauth.types import TokenKind, TokenRecord


def _to_record(entity: LiveTokenEntity) -> TokenRecord:
    return TokenRecord(
        token_id=entity.token_id,
        kind=TokenKind(entity.kind),
        client_id=entity.client_id,
        user_id=entity.user_id,
        scopes=list(entity.scopes or []),
        issued_at=entity.issued_at,
        expires_at=entity.expires_at,
    )


class SqlTokenStorage:
    """Live set kept in one table; revocation deletes the row.

    Strongly consistent within one database. Each call runs in its own
    transaction, so a revoke is visible to the very next lookup.
    """

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory

    async def _put(self, token_id: str, record: TokenRecord) -> None:
        async with transaction(self._factory) as session:
            session.add(
                LiveTokenEntity(
                    token_id=token_id,
                    kind=record.kind.value,
                    client_id=record.client_id,
                    user_id=record.user_id,
                    scopes=list(record.scopes),
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                )
            )

    async def _get(self, token_id: str, kind: TokenKind) -> TokenRecord | None:
        async with transaction(self._factory) as session:
            stmt = select(LiveTokenEntity).where(
                LiveTokenEntity.token_id == token_id,
                LiveTokenEntity.kind == kind.value,
            )
            entity = (await session.execute(stmt)).scalar_one_or_none()
            return _to_record(entity) if entity is not None else None

    async def _revoke(self, token_id: str, kind: TokenKind) -> bool:
        async with transaction(self._factory) as session:
            stmt = delete(LiveTokenEntity).where(
                LiveTokenEntity.token_id == token_id,
                LiveTokenEntity.kind == kind.value,
            )
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def put_access_token(self, token_id: str, record: TokenRecord) -> None:
        await self._put(token_id, record)

    async def get_access_token(self, token_id: str) -> TokenRecord | None:
        return await self._get(token_id, TokenKind.ACCESS)

    async def revoke_access_token(self, token_id: str) -> bool:
        return await self._revoke(token_id, TokenKind.ACCESS)

    async def put_refresh_token(self, token_id: str, record: TokenRecord) -> None:
        await self._put(token_id, record)

    async def get_refresh_token(self, token_id: str) -> TokenRecord | None:
        return await self._get(token_id, TokenKind.REFRESH)

    async def revoke_refresh_token(self, token_id: str) -> bool:
        return await self._revoke(token_id, TokenKind.REFRESH)

    async def all_refresh_tokens(self) -> dict[str, TokenRecord]:
        async with transaction(self._factory) as session:
            stmt = select(LiveTokenEntity).where(
                LiveTokenEntity.kind == TokenKind.REFRESH.value
            )
            entities = (await session.execute(stmt)).scalars().all()
            return {entity.token_id: _to_record(entity) for entity in entities}

    async def delete_expired(self, now: float) -> int:
        """Drop records whose tokens can no longer verify."""
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(LiveTokenEntity).where(LiveTokenEntity.expires_at <= now)
            )
            return result.rowcount
