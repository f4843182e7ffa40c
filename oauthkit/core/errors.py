"""Error kinds raised by the token engine and their public error codes."""

import asyncio
from collections.abc import Awaitable
from enum import StrEnum
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

STORAGE_TIMEOUT_DEFAULT = 5.0


class ErrorKind(StrEnum):
    """Distinct failure kinds surfaced by signing, validation, and storage."""

    MALFORMED_TOKEN = "malformed_token"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    UNKNOWN_SIGNING_KEY = "unknown_signing_key"
    REQUEST_BINDING_MISMATCH = "request_binding_mismatch"
    NONCE_INVALID_OR_REUSED = "nonce_invalid_or_reused"
    ACCESS_TOKEN_HASH_MISMATCH = "access_token_hash_mismatch"
    KEY_NOT_BOUND_TO_TOKEN = "key_not_bound_to_token"
    STORAGE_UNAVAILABLE = "storage_unavailable"


INVALID_TOKEN = "invalid_token"
INVALID_DPOP_PROOF = "invalid_dpop_proof"
SERVER_ERROR = "server_error"

_PROOF_KINDS = frozenset(
    {
        ErrorKind.REQUEST_BINDING_MISMATCH,
        ErrorKind.NONCE_INVALID_OR_REUSED,
        ErrorKind.ACCESS_TOKEN_HASH_MISMATCH,
        ErrorKind.KEY_NOT_BOUND_TO_TOKEN,
    }
)

_DESCRIPTIONS = {
    INVALID_TOKEN: "The access token is invalid",
    INVALID_DPOP_PROOF: "The DPoP proof is invalid",
    SERVER_ERROR: "The server is temporarily unable to handle the request",
}


def default_public_code(kind: ErrorKind) -> str:
    """Map an error kind to the public OAuth error code."""
    if kind is ErrorKind.STORAGE_UNAVAILABLE:
        return SERVER_ERROR
    if kind in _PROOF_KINDS:
        return INVALID_DPOP_PROOF
    return INVALID_TOKEN


class TokenEngineError(Exception):
    """A terminal (or, for storage outages, retryable) engine failure.

    ``reason`` is a stable string safe to log; it never carries key
    material or payload content. ``public_code`` is what an untrusted
    caller gets to see.
    """

    def __init__(
        self,
        kind: ErrorKind,
        reason: str | None = None,
        *,
        public_code: str | None = None,
    ) -> None:
        self.kind = kind
        self.reason = reason or kind.value
        self.public_code = public_code or default_public_code(kind)
        super().__init__(f"{kind.value}: {self.reason}")

    @property
    def retryable(self) -> bool:
        """Only storage outages may be retried by the caller."""
        return self.kind is ErrorKind.STORAGE_UNAVAILABLE

    @property
    def public_description(self) -> str:
        return _DESCRIPTIONS.get(self.public_code, _DESCRIPTIONS[INVALID_TOKEN])

    def for_proof(self) -> "TokenEngineError":
        """Re-label a codec failure as a DPoP proof failure."""
        if self.kind is ErrorKind.STORAGE_UNAVAILABLE:
            return self
        return TokenEngineError(
            self.kind, self.reason, public_code=INVALID_DPOP_PROOF
        )


def storage_unavailable(reason: str = "storage_unavailable") -> TokenEngineError:
    """Build the retryable storage outage error."""
    return TokenEngineError(ErrorKind.STORAGE_UNAVAILABLE, reason)


async def guard_storage(operation: Awaitable[T], timeout: float) -> T:
    """Await a storage call under ``timeout``, mapping stalls to outages."""
    try:
        async with asyncio.timeout(timeout):
            return await operation
    except TimeoutError as exc:
        logger.warning("storage_timeout", timeout=timeout)
        raise storage_unavailable("storage_timeout") from exc
    except OSError as exc:
        logger.warning("storage_transport_error", error=type(exc).__name__)
        raise storage_unavailable("storage_transport_error") from exc
