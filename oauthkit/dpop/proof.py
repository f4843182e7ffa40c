"""Client-side DPoP proof construction."""

from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey

from oauthkit.crypto.keys import (
    EC_CURVES,
    ec_curve_name,
    generate_ec_keypair,
    load_private_key,
    new_kid,
    public_key_to_jwk_entry,
)
from oauthkit.dpop.claims import DPOP_TYP, DPoPClaims


class ProofSigner:
    """Holds a client's DPoP private key and signs proofs with it."""

    def __init__(self, private_key_pem: str, kid: str | None = None) -> None:
        self._private_key = load_private_key(private_key_pem)
        if isinstance(self._private_key, EllipticCurvePrivateKey):
            _curve, self._algorithm = EC_CURVES[ec_curve_name(self._private_key)]
        else:
            self._algorithm = "RS256"
        self._kid = kid or new_kid()
        self._jwk = public_key_to_jwk_entry(
            self._private_key.public_key(), self._kid, self._algorithm
        ).to_jwk()

    @classmethod
    def generate(cls, curve: str = "P-256") -> "ProofSigner":
        keypair = generate_ec_keypair(curve)
        return cls(keypair.private_key_pem, keypair.kid)

    @property
    def kid(self) -> str:
        return self._kid

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def public_jwk(self) -> dict[str, Any]:
        return dict(self._jwk)

    def sign(self, claims: DPoPClaims, *, algorithm: str | None = None) -> str:
        return jwt.encode(
            claims.to_claims(),
            self._private_key,
            algorithm=algorithm or self._algorithm,
            headers={"typ": DPOP_TYP},
        )

    def token_request_proof(
        self,
        htu: str,
        *,
        nonce: str | None = None,
        now: float | None = None,
    ) -> str:
        return self.sign(DPoPClaims.for_token_request(self.public_jwk, htu, nonce=nonce, now=now))

    def resource_proof(
        self,
        htm: str,
        htu: str,
        access_token: str,
        *,
        nonce: str | None = None,
        now: float | None = None,
    ) -> str:
        claims = DPoPClaims.for_resource_request(
            self.public_jwk, htm, htu, access_token, nonce=nonce, now=now
        )
        return self.sign(claims)
