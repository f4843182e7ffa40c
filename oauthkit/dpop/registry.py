"""Registry of DPoP public keys declared by clients."""

from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict

from oauthkit.core.clock import Clock, system_clock

logger = structlog.get_logger()


class RegisteredKey(BaseModel):
    """A client's DPoP public key. Never mutated once registered."""

    model_config = ConfigDict(frozen=True)

    kid: str
    jwk: dict[str, Any]
    client_id: str | None = None
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def visible_to(self, client_id: str | None) -> bool:
        """Unscoped keys are visible to everyone; scoped keys only to their owner."""
        return client_id is None or self.client_id is None or self.client_id == client_id


class KeyRegistry(Protocol):
    async def put(
        self,
        kid: str,
        jwk: dict[str, Any],
        client_id: str | None = None,
        expires_at: float | None = None,
    ) -> bool: ...

    async def get(self, kid: str, client_id: str | None = None) -> RegisteredKey | None: ...

    async def contains(self, kid: str) -> bool: ...

    async def remove(self, kid: str) -> None: ...

    async def cleanup(self) -> int: ...


class InMemoryKeyRegistry:
    """Process-local key registry."""

    def __init__(self, *, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._keys: dict[str, RegisteredKey] = {}

    async def put(
        self,
        kid: str,
        jwk: dict[str, Any],
        client_id: str | None = None,
        expires_at: float | None = None,
    ) -> bool:
        """Register a key. False if ``kid`` already names a different key."""
        entry = RegisteredKey(kid=kid, jwk=jwk, client_id=client_id, expires_at=expires_at)
        existing = self._keys.setdefault(kid, entry)
        if existing is entry:
            logger.info("dpop_key_registered", kid=kid, client_id=client_id)
            return True
        if existing.is_expired(self._clock()):
            self._keys[kid] = entry
            return True
        return existing.jwk == jwk and existing.client_id == client_id

    async def get(self, kid: str, client_id: str | None = None) -> RegisteredKey | None:
        entry = self._keys.get(kid)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry if entry.visible_to(client_id) else None

    async def contains(self, kid: str) -> bool:
        entry = self._keys.get(kid)
        return entry is not None and not entry.is_expired(self._clock())

    async def remove(self, kid: str) -> None:
        self._keys.pop(kid, None)

    async def cleanup(self) -> int:
        now = self._clock()
        expired = [kid for kid, entry in list(self._keys.items()) if entry.is_expired(now)]
        for kid in expired:
            self._keys.pop(kid, None)
        return len(expired)
