"""JWT signing and verification against a KeySet."""

from typing import Any

import jwt
import structlog

from oauthkit.core.clock import Clock, system_clock
from oauthkit.core.errors import ErrorKind, TokenEngineError
from oauthkit.crypto.key_set import ECDSAKey, KeySet, RSAKey, SymmetricKey
from oauthkit.crypto.keys import PublicKey
from oauthkit.crypto.types import KeyFamily

logger = structlog.get_logger()

# Lifetime is checked against the injected clock, not by PyJWT.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_aud": False,
}


def unverified_header(token: str) -> dict[str, Any]:
    """Read a JWS header without checking the signature."""
    try:
        return jwt.get_unverified_header(token)
    except jwt.PyJWTError as exc:
        raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "unparsable_header") from exc


def unverified_claims(token: str) -> dict[str, Any]:
    """Read JWT claims without checking the signature."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "unparsable_claims") from exc
    return claims


def _signing_material(key: SymmetricKey | RSAKey | ECDSAKey) -> Any:
    match key.family:
        case KeyFamily.HMAC:
            return key.secret
        case KeyFamily.RSA | KeyFamily.EC:
            if key.private_key is None:
                raise ValueError(f"Key {key.kid} is verify-only")
            return key.private_key
    raise ValueError(f"Unknown key family: {key.family}")


def _verification_material(key: SymmetricKey | RSAKey | ECDSAKey) -> Any:
    match key.family:
        case KeyFamily.HMAC:
            return key.secret
        case KeyFamily.RSA | KeyFamily.EC:
            return key.public_key
    raise ValueError(f"Unknown key family: {key.family}")


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class TokenCodec:
    """Signs payloads with the default key and verifies them by ``kid``."""

    def __init__(
        self,
        key_set: KeySet,
        *,
        clock: Clock = system_clock,
        leeway_seconds: float = 0,
    ) -> None:
        self._key_set = key_set
        self._clock = clock
        self._leeway = leeway_seconds

    @property
    def key_set(self) -> KeySet:
        return self._key_set

    @property
    def clock(self) -> Clock:
        return self._clock

    def replace_key_set(self, key_set: KeySet) -> None:
        """Swap in a rotated key set. Readers see either the old or new set."""
        self._key_set = key_set
        logger.info(
            "key_set_replaced",
            default_kid=key_set.default_kid,
            key_count=len(key_set.entries),
        )

    def sign(self, payload: dict[str, Any]) -> str:
        """Sign ``payload`` with the default key."""
        key = self._key_set.default
        if key is None:
            raise ValueError("Key set has no default signing key")
        return jwt.encode(
            payload,
            _signing_material(key),
            algorithm=key.algorithm,
            headers={"kid": key.kid},
        )

    def verify(self, token: str, *, check_lifetime: bool = True) -> dict[str, Any]:
        """Verify a token signed by any member of the key set."""
        key_set = self._key_set
        header = unverified_header(token)
        kid = header.get("kid")
        if not isinstance(kid, str):
            raise TokenEngineError(ErrorKind.UNKNOWN_SIGNING_KEY, "missing_kid")
        key = key_set.get(kid)
        if key is None:
            raise TokenEngineError(ErrorKind.UNKNOWN_SIGNING_KEY, "unknown_kid")
        if header.get("alg") != key.algorithm:
            raise TokenEngineError(ErrorKind.SIGNATURE_INVALID, "algorithm_mismatch")
        payload = self._decode(token, _verification_material(key), key.algorithm)
        if check_lifetime:
            self.check_lifetime(payload)
        return payload

    def verify_with_key(
        self,
        token: str,
        public_key: PublicKey,
        algorithm: str,
        *,
        check_lifetime: bool = True,
    ) -> dict[str, Any]:
        """Verify a token with a key that is not part of the key set."""
        header = unverified_header(token)
        if header.get("alg") != algorithm:
            raise TokenEngineError(ErrorKind.SIGNATURE_INVALID, "algorithm_mismatch")
        payload = self._decode(token, public_key, algorithm)
        if check_lifetime:
            self.check_lifetime(payload)
        return payload

    def check_lifetime(self, payload: dict[str, Any]) -> None:
        """Accept iff ``exp > now`` and ``iat <= now`` (within leeway)."""
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not _is_timestamp(exp) or not _is_timestamp(iat):
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "missing_lifetime_claims")
        now = self._clock()
        if exp <= now - self._leeway:
            raise TokenEngineError(ErrorKind.EXPIRED, "token_expired")
        if iat > now + self._leeway:
            raise TokenEngineError(ErrorKind.NOT_YET_VALID, "issued_in_future")

    @staticmethod
    def _decode(token: str, key: Any, algorithm: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                options=_DECODE_OPTIONS,
            )
        except (
            jwt.InvalidSignatureError,
            jwt.InvalidAlgorithmError,
            jwt.InvalidKeyError,
            TypeError,
        ) as exc:
            # PyJWT raises a bare TypeError for a key of the wrong family.
            raise TokenEngineError(ErrorKind.SIGNATURE_INVALID, "bad_signature") from exc
        except jwt.PyJWTError as exc:
            raise TokenEngineError(ErrorKind.MALFORMED_TOKEN, "unparsable_token") from exc
