"""Storage contract for the live token set, and its in-memory backend."""

from typing import Protocol

from oauthkit.oauth.types import TokenRecord


class TokenStorage(Protocol):
    """Live set of issued, non-revoked token identifiers.

    Implementations must make a token absent immediately after revoke and
    present immediately after put, for the same backend. ``revoke_*``
    returns whether the identifier was live, so that exactly one of two
    concurrent revocations observes ``True``.
    """

    async def put_access_token(self, token_id: str, record: TokenRecord) -> None: ...

    async def get_access_token(self, token_id: str) -> TokenRecord | None: ...

    async def revoke_access_token(self, token_id: str) -> bool: ...

    async def put_refresh_token(self, token_id: str, record: TokenRecord) -> None: ...

    async def get_refresh_token(self, token_id: str) -> TokenRecord | None: ...

    async def revoke_refresh_token(self, token_id: str) -> bool: ...

    async def all_refresh_tokens(self) -> dict[str, TokenRecord]: ...

    async def delete_expired(self, now: float) -> int:
        """Drop records with ``expires_at <= now`` and return how many went."""
        ...


class InMemoryTokenStorage:
    """Process-local live set. Single-process deployments and tests only."""

    def __init__(self) -> None:
        self._access: dict[str, TokenRecord] = {}
        self._refresh: dict[str, TokenRecord] = {}

    async def put_access_token(self, token_id: str, record: TokenRecord) -> None:
        self._access[token_id] = record

    async def get_access_token(self, token_id: str) -> TokenRecord | None:
        return self._access.get(token_id)

    async def revoke_access_token(self, token_id: str) -> bool:
        return self._access.pop(token_id, None) is not None

    async def put_refresh_token(self, token_id: str, record: TokenRecord) -> None:
        self._refresh[token_id] = record

    async def get_refresh_token(self, token_id: str) -> TokenRecord | None:
        return self._refresh.get(token_id)

    async def revoke_refresh_token(self, token_id: str) -> bool:
        return self._refresh.pop(token_id, None) is not None

    async def all_refresh_tokens(self) -> dict[str, TokenRecord]:
        return dict(self._refresh)

    async def delete_expired(self, now: float) -> int:
        removed = 0
        for live in (self._access, self._refresh):
            expired = [token_id for token_id, record in live.items() if record.expires_at <= now]
            for token_id in expired:
                del live[token_id]
            removed += len(expired)
        return removed
