"""Signing key material and immutable key sets."""

from typing import Annotated, Literal

from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from pydantic import BaseModel, ConfigDict, Field

from oauthkit.crypto.keys import (
    EC_CURVES,
    ec_curve_name,
    load_private_key,
    new_kid,
    public_key_to_jwk_entry,
)
from oauthkit.crypto.types import (
    HMAC_ALGORITHMS,
    RSA_ALGORITHMS,
    JWKEntry,
    JWKSResponse,
    KeyFamily,
)

HMAC_MIN_SECRET_BYTES = 32


class SymmetricKey(BaseModel):
    """HMAC shared secret. Never published."""

    model_config = ConfigDict(frozen=True)

    family: Literal[KeyFamily.HMAC] = KeyFamily.HMAC
    kid: str
    algorithm: str = "HS256"
    secret: bytes = Field(repr=False)

    def public_jwk(self) -> JWKEntry | None:
        return None


class RSAKey(BaseModel):
    """RSA keypair; ``private_key`` is absent for verify-only entries."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    family: Literal[KeyFamily.RSA] = KeyFamily.RSA
    kid: str
    algorithm: str = "RS256"
    private_key: RSAPrivateKey | None = Field(default=None, repr=False)
    public_key: RSAPublicKey

    def public_jwk(self) -> JWKEntry | None:
        return public_key_to_jwk_entry(self.public_key, self.kid, self.algorithm)


class ECDSAKey(BaseModel):
    """ECDSA keypair on P-256, P-384 or P-521."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    family: Literal[KeyFamily.EC] = KeyFamily.EC
    kid: str
    algorithm: str = "ES256"
    private_key: EllipticCurvePrivateKey | None = Field(default=None, repr=False)
    public_key: EllipticCurvePublicKey

    def public_jwk(self) -> JWKEntry | None:
        return public_key_to_jwk_entry(self.public_key, self.kid, self.algorithm)


KeyMaterial = Annotated[
    SymmetricKey | RSAKey | ECDSAKey, Field(discriminator="family")
]


def hmac_key(secret: str | bytes, kid: str | None = None, algorithm: str = "HS256") -> SymmetricKey:
    """Build HMAC key material from a shared secret."""
    raw = secret.encode() if isinstance(secret, str) else secret
    if len(raw) < HMAC_MIN_SECRET_BYTES:
        raise ValueError(f"HMAC secret must be at least {HMAC_MIN_SECRET_BYTES} bytes")
    if algorithm not in HMAC_ALGORITHMS:
        raise ValueError(f"Unsupported HMAC algorithm: {algorithm}")
    return SymmetricKey(kid=kid or new_kid(), algorithm=algorithm, secret=raw)


def rsa_key(private_key_pem: str, kid: str | None = None, algorithm: str = "RS256") -> RSAKey:
    """Build RSA key material from a PEM private key."""
    if algorithm not in RSA_ALGORITHMS:
        raise ValueError(f"Unsupported RSA algorithm: {algorithm}")
    private_key = load_private_key(private_key_pem)
    if not isinstance(private_key, RSAPrivateKey):
        raise ValueError("PEM does not contain an RSA private key")
    return RSAKey(
        kid=kid or new_kid(),
        algorithm=algorithm,
        private_key=private_key,
        public_key=private_key.public_key(),
    )


def ecdsa_key(private_key_pem: str, kid: str | None = None) -> ECDSAKey:
    """Build ECDSA key material; the algorithm follows the curve."""
    private_key = load_private_key(private_key_pem)
    if not isinstance(private_key, EllipticCurvePrivateKey):
        raise ValueError("PEM does not contain an EC private key")
    _curve, algorithm = EC_CURVES[ec_curve_name(private_key)]
    return ECDSAKey(
        kid=kid or new_kid(),
        algorithm=algorithm,
        private_key=private_key,
        public_key=private_key.public_key(),
    )


class KeySet(BaseModel):
    """Ordered, immutable collection of signing keys with one default signer.

    Every ``adding_*`` method returns a new KeySet, so verifications in
    flight keep seeing the set they started with.
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[KeyMaterial, ...] = ()
    default_kid: str | None = None

    @classmethod
    def hmac(cls, secret: str | bytes, kid: str | None = None) -> "KeySet":
        return cls().adding(hmac_key(secret, kid))

    @classmethod
    def rsa(cls, private_key_pem: str, kid: str | None = None) -> "KeySet":
        return cls().adding(rsa_key(private_key_pem, kid))

    @classmethod
    def ecdsa(cls, private_key_pem: str, kid: str | None = None) -> "KeySet":
        return cls().adding(ecdsa_key(private_key_pem, kid))

    @classmethod
    def multi_key(
        cls,
        *,
        hmac_secret: str | bytes | None = None,
        rsa_private_key_pem: str | None = None,
        ecdsa_private_key_pem: str | None = None,
    ) -> "KeySet":
        """Combine symmetric and asymmetric keys; the first one given signs."""
        key_set = cls()
        if hmac_secret is not None:
            key_set = key_set.adding(hmac_key(hmac_secret))
        if rsa_private_key_pem is not None:
            key_set = key_set.adding(rsa_key(rsa_private_key_pem))
        if ecdsa_private_key_pem is not None:
            key_set = key_set.adding(ecdsa_key(ecdsa_private_key_pem))
        return key_set

    def adding(
        self, key: SymmetricKey | RSAKey | ECDSAKey, *, make_default: bool = False
    ) -> "KeySet":
        if self.get(key.kid) is not None:
            raise ValueError(f"Duplicate key identifier: {key.kid}")
        default = key.kid if make_default or self.default_kid is None else self.default_kid
        return KeySet(entries=(*self.entries, key), default_kid=default)

    def adding_hmac(
        self, secret: str | bytes, kid: str | None = None, *, make_default: bool = False
    ) -> "KeySet":
        return self.adding(hmac_key(secret, kid), make_default=make_default)

    def adding_rsa(
        self,
        private_key_pem: str,
        kid: str | None = None,
        *,
        algorithm: str = "RS256",
        make_default: bool = False,
    ) -> "KeySet":
        return self.adding(rsa_key(private_key_pem, kid, algorithm), make_default=make_default)

    def adding_ecdsa(
        self, private_key_pem: str, kid: str | None = None, *, make_default: bool = False
    ) -> "KeySet":
        return self.adding(ecdsa_key(private_key_pem, kid), make_default=make_default)

    def rotated(self, key: SymmetricKey | RSAKey | ECDSAKey) -> "KeySet":
        """Append a key and make it the signer; older keys still verify."""
        return self.adding(key, make_default=True)

    def get(self, kid: str) -> SymmetricKey | RSAKey | ECDSAKey | None:
        for entry in self.entries:
            if entry.kid == kid:
                return entry
        return None

    @property
    def default(self) -> SymmetricKey | RSAKey | ECDSAKey | None:
        if self.default_kid is None:
            return None
        return self.get(self.default_kid)

    @property
    def signing_algorithms(self) -> list[str]:
        return sorted({entry.algorithm for entry in self.entries})

    def public_jwks(self) -> JWKSResponse:
        """JWKS document of every asymmetric member, in insertion order."""
        public = [entry.public_jwk() for entry in self.entries]
        return JWKSResponse(keys=[jwk for jwk in public if jwk is not None])
