"""Access-token to DPoP key bindings."""

from typing import Protocol

from pydantic import BaseModel, ConfigDict

from oauthkit.core.clock import Clock, system_clock


class TokenBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    kid: str
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class AccessTokenBindingStore(Protocol):
    async def bind(self, token_id: str, kid: str, expires_at: float | None = None) -> None: ...

    async def verify_binding(self, token_id: str, kid: str) -> bool: ...

    async def bound_key(self, token_id: str) -> str | None: ...

    async def unbind(self, token_id: str) -> None: ...

    async def cleanup(self) -> int: ...


class InMemoryBindingStore:
    """Process-local binding store."""

    def __init__(self, *, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._bindings: dict[str, TokenBinding] = {}

    async def bind(self, token_id: str, kid: str, expires_at: float | None = None) -> None:
        binding = TokenBinding(token_id=token_id, kid=kid, expires_at=expires_at)
        existing = self._bindings.setdefault(token_id, binding)
        if existing.kid != kid:
            raise ValueError(f"Token {token_id} is already bound to another key")

    async def verify_binding(self, token_id: str, kid: str) -> bool:
        return await self.bound_key(token_id) == kid

    async def bound_key(self, token_id: str) -> str | None:
        binding = self._bindings.get(token_id)
        if binding is None or binding.is_expired(self._clock()):
            return None
        return binding.kid

    async def unbind(self, token_id: str) -> None:
        self._bindings.pop(token_id, None)

    async def cleanup(self) -> int:
        now = self._clock()
        expired = [
            token_id
            for token_id, binding in list(self._bindings.items())
            if binding.is_expired(now)
        ]
        for token_id in expired:
            self._bindings.pop(token_id, None)
        return len(expired)
