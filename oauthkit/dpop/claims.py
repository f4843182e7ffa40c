"""DPoP proof claims (RFC 9449) and their named constructors."""

import hashlib
import time
from typing import Any
from urllib.parse import urlparse

import uuid_utils
from pydantic import BaseModel, ConfigDict, field_validator

from oauthkit.crypto.keys import base64url_encode

DPOP_TYP = "dpop+jwt"
HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})
PRIVATE_JWK_MEMBERS = frozenset({"d", "p", "q", "dp", "dq", "qi", "k"})
PROOF_LIFETIME_DEFAULT = 60


def access_token_hash(access_token: str) -> str:
    """Compute the ``ath`` value: base64url(SHA-256(token))."""
    return base64url_encode(hashlib.sha256(access_token.encode()).digest())


class Confirmation(BaseModel):
    """The ``cnf`` claim carrying the client's public JWK."""

    model_config = ConfigDict(frozen=True)

    jwk: dict[str, Any]

    @field_validator("jwk")
    @classmethod
    def _public_jwk_with_kid(cls, jwk: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(jwk.get("kid"), str) or not jwk["kid"]:
            raise ValueError("JWK must have a key identifier")
        if PRIVATE_JWK_MEMBERS & jwk.keys():
            raise ValueError("JWK must not contain private key material")
        return jwk

    @property
    def kid(self) -> str:
        return self.jwk["kid"]


class DPoPClaims(BaseModel):
    """Claims of a DPoP proof. ``ath`` and ``nonce`` are optional."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jti: str
    iat: int
    exp: int
    htm: str
    htu: str
    cnf: Confirmation
    ath: str | None = None
    nonce: str | None = None

    @field_validator("htm")
    @classmethod
    def _known_method(cls, htm: str) -> str:
        method = htm.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Invalid HTTP method: {htm}")
        return method

    @field_validator("htu")
    @classmethod
    def _absolute_uri(cls, htu: str) -> str:
        parsed = urlparse(htu)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("htu must be an absolute URI")
        return htu

    @property
    def kid(self) -> str:
        return self.cnf.kid

    @classmethod
    def for_token_request(
        cls,
        jwk: dict[str, Any],
        htu: str,
        *,
        htm: str = "POST",
        nonce: str | None = None,
        now: float | None = None,
        lifetime: int = PROOF_LIFETIME_DEFAULT,
    ) -> "DPoPClaims":
        """Claims for a proof sent to the token endpoint."""
        issued = int(time.time() if now is None else now)
        return cls(
            jti=str(uuid_utils.uuid7()),
            iat=issued,
            exp=issued + lifetime,
            htm=htm,
            htu=htu,
            cnf=Confirmation(jwk=jwk),
            nonce=nonce,
        )

    @classmethod
    def for_resource_request(
        cls,
        jwk: dict[str, Any],
        htm: str,
        htu: str,
        access_token: str,
        *,
        nonce: str | None = None,
        now: float | None = None,
        lifetime: int = PROOF_LIFETIME_DEFAULT,
    ) -> "DPoPClaims":
        """Claims for a proof accompanying a DPoP-bound access token."""
        claims = cls.for_token_request(jwk, htu, htm=htm, nonce=nonce, now=now, lifetime=lifetime)
        return claims.model_copy(update={"ath": access_token_hash(access_token)})

    def with_nonce(self, nonce: str) -> "DPoPClaims":
        return self.model_copy(update={"nonce": nonce})

    def to_claims(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
