"""Single-use DPoP nonces with bounded lifetime."""

import secrets
import threading
from typing import Protocol

import structlog
from pydantic import BaseModel, ConfigDict

from oauthkit.core.clock import Clock, system_clock

logger = structlog.get_logger()

NONCE_TTL_DEFAULT = 300
NONCE_BYTES = 32
CLEANUP_INTERVAL_DEFAULT = 60.0


class Nonce(BaseModel):
    """An issued nonce value and its validity window."""

    model_config = ConfigDict(frozen=True)

    value: str
    created_at: float
    expires_at: float

    def expires_in(self, now: float) -> int:
        return max(0, int(self.expires_at - now))


def new_nonce_value() -> str:
    return secrets.token_urlsafe(NONCE_BYTES)


class NonceManager(Protocol):
    """Issues nonces and consumes each one at most once."""

    @property
    def ttl(self) -> int: ...

    async def issue(self) -> Nonce: ...

    async def validate_and_consume(self, value: str) -> bool: ...

    async def cleanup(self) -> int: ...


class _Entry:
    __slots__ = ("consumed", "lock", "nonce")

    def __init__(self, nonce: Nonce) -> None:
        self.nonce = nonce
        self.consumed = False
        self.lock = threading.Lock()


class InMemoryNonceManager:
    """Process-local nonce store with a lock per nonce value.

    Consumed nonces are kept until they expire so that a replay is
    reported as reuse rather than as an unknown value.
    """

    def __init__(
        self,
        ttl: int = NONCE_TTL_DEFAULT,
        *,
        clock: Clock = system_clock,
        cleanup_interval: float = CLEANUP_INTERVAL_DEFAULT,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._entries: dict[str, _Entry] = {}
        self._last_cleanup = clock()

    @property
    def ttl(self) -> int:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    async def issue(self) -> Nonce:
        now = self._clock()
        nonce = Nonce(value=new_nonce_value(), created_at=now, expires_at=now + self._ttl)
        self._entries[nonce.value] = _Entry(nonce)
        if now - self._last_cleanup >= self._cleanup_interval:
            await self.cleanup()
        return nonce

    async def validate_and_consume(self, value: str) -> bool:
        entry = self._entries.get(value)
        if entry is None:
            logger.info("dpop_nonce_rejected", reason="unknown_nonce")
            return False
        with entry.lock:
            if entry.consumed:
                logger.warning("dpop_nonce_reused", created_at=entry.nonce.created_at)
                return False
            if entry.nonce.expires_at <= self._clock():
                logger.info("dpop_nonce_rejected", reason="expired_nonce")
                return False
            entry.consumed = True
        return True

    async def cleanup(self) -> int:
        """Drop expired nonces, consumed or not."""
        now = self._clock()
        self._last_cleanup = now
        expired = [
            value for value, entry in list(self._entries.items()) if entry.nonce.expires_at <= now
        ]
        for value in expired:
            self._entries.pop(value, None)
        if expired:
            logger.debug("dpop_nonces_swept", count=len(expired))
        return len(expired)
