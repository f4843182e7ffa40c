"""Type definitions for signing keys, JWKS, and key families."""

from enum import StrEnum

from pydantic import BaseModel


class KeyFamily(StrEnum):
    """Algorithm family of a signing key."""

    HMAC = "HMAC"
    RSA = "RSA"
    EC = "EC"


HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
RSA_ALGORITHMS = ("RS256", "RS384", "RS512")
EC_ALGORITHMS = ("ES256", "ES384", "ES512")
ASYMMETRIC_ALGORITHMS = RSA_ALGORITHMS + EC_ALGORITHMS


class SigningKeyData(BaseModel):
    """A freshly generated asymmetric keypair in PEM form."""

    kid: str
    algorithm: str
    private_key_pem: str
    public_key_pem: str


class JWKEntry(BaseModel):
    """Single public JWK entry in a JWKS response."""

    kty: str
    use: str = "sig"
    alg: str
    kid: str
    n: str | None = None
    e: str | None = None
    crv: str | None = None
    x: str | None = None
    y: str | None = None

    def to_jwk(self) -> dict[str, str]:
        """Return the wire form without empty members."""
        return self.model_dump(exclude_none=True)


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]

    def to_jwks(self) -> dict[str, list[dict[str, str]]]:
        return {"keys": [entry.to_jwk() for entry in self.keys]}
