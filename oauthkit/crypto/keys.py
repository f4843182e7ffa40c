"""Key generation, encryption at rest, and JWK conversion."""

import base64
from typing import Any

import uuid_utils
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)

from oauthkit.crypto.types import RSA_ALGORITHMS, JWKEntry, SigningKeyData

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

PublicKey = RSAPublicKey | EllipticCurvePublicKey
PrivateKey = RSAPrivateKey | EllipticCurvePrivateKey

# JWK curve name -> (cryptography curve class, JWS algorithm)
EC_CURVES: dict[str, tuple[type[ec.EllipticCurve], str]] = {
    "P-256": (ec.SECP256R1, "ES256"),
    "P-384": (ec.SECP384R1, "ES384"),
    "P-521": (ec.SECP521R1, "ES512"),
}
_CURVE_NAMES = {curve().name: name for name, (curve, _alg) in EC_CURVES.items()}


def new_kid() -> str:
    """Generate a fresh, time-ordered key identifier."""
    return str(uuid_utils.uuid7())


def private_key_to_pem(key: PrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_key_to_pem(key: PublicKey) -> str:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def generate_rsa_keypair() -> SigningKeyData:
    """Generate a new RSA-2048 keypair for JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    return SigningKeyData(
        kid=new_kid(),
        algorithm="RS256",
        private_key_pem=private_key_to_pem(private_key),
        public_key_pem=public_key_to_pem(private_key.public_key()),
    )


def generate_ec_keypair(curve: str = "P-256") -> SigningKeyData:
    """Generate a new ECDSA keypair on one of the JOSE curves."""
    if curve not in EC_CURVES:
        raise ValueError(f"Unsupported ECDSA curve: {curve}")
    curve_cls, algorithm = EC_CURVES[curve]
    private_key = ec.generate_private_key(curve_cls())
    return SigningKeyData(
        kid=new_kid(),
        algorithm=algorithm,
        private_key_pem=private_key_to_pem(private_key),
        public_key_pem=public_key_to_pem(private_key.public_key()),
    )


def load_private_key(private_pem: str) -> PrivateKey:
    """Load an unencrypted PEM private key (RSA or EC)."""
    loaded = serialization.load_pem_private_key(private_pem.encode(), password=None)
    if not isinstance(loaded, RSAPrivateKey | EllipticCurvePrivateKey):
        raise ValueError("Only RSA and EC private keys are supported")
    return loaded


def ec_curve_name(key: EllipticCurvePrivateKey | EllipticCurvePublicKey) -> str:
    """Return the JWK curve name (P-256, ...) for an EC key."""
    name = _CURVE_NAMES.get(key.curve.name)
    if name is None:
        raise ValueError(f"Unsupported ECDSA curve: {key.curve.name}")
    return name


def encrypt_private_key(private_pem: str, fernet_key: str) -> str:
    """Encrypt a PEM private key (or HMAC secret) with Fernet for storage."""
    cipher = Fernet(fernet_key.encode())
    return cipher.encrypt(private_pem.encode()).decode()


def decrypt_private_key(encrypted: str, fernet_key: str) -> str:
    """Decrypt a Fernet-encrypted PEM private key."""
    cipher = Fernet(fernet_key.encode())
    return cipher.decrypt(encrypted.encode()).decode()


def base64url_encode(raw: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def base64url_decode(value: str) -> bytes:
    """Decode unpadded base64url."""
    padding = -len(value) % 4
    return base64.urlsafe_b64decode(value + "=" * padding)


def _int_to_base64url(value: int, length: int | None = None) -> str:
    """Encode an integer as base64url without padding."""
    byte_length = length or (value.bit_length() + 7) // 8
    raw = value.to_bytes(byte_length, byteorder="big")
    return base64url_encode(raw)


def _base64url_to_int(value: str) -> int:
    return int.from_bytes(base64url_decode(value), byteorder="big")


def public_key_to_jwk_entry(public_key: PublicKey, kid: str, alg: str) -> JWKEntry:
    """Project an RSA or EC public key into JWK form."""
    if isinstance(public_key, RSAPublicKey):
        numbers = public_key.public_numbers()
        return JWKEntry(
            kty="RSA",
            alg=alg,
            kid=kid,
            n=_int_to_base64url(numbers.n),
            e=_int_to_base64url(numbers.e),
        )
    ec_numbers = public_key.public_numbers()
    size = (public_key.curve.key_size + 7) // 8
    return JWKEntry(
        kty="EC",
        alg=alg,
        kid=kid,
        crv=ec_curve_name(public_key),
        x=_int_to_base64url(ec_numbers.x, size),
        y=_int_to_base64url(ec_numbers.y, size),
    )


def pem_to_jwk_entry(public_key_pem: str, kid: str, alg: str = "RS256") -> JWKEntry:
    """Convert a PEM public key to JWK format."""
    loaded = serialization.load_pem_public_key(public_key_pem.encode())
    if not isinstance(loaded, RSAPublicKey | EllipticCurvePublicKey):
        raise ValueError("Only RSA and EC public keys are supported")
    return public_key_to_jwk_entry(loaded, kid, alg)


def jwk_to_public_key(jwk: dict[str, Any]) -> PublicKey:
    """Rebuild an RSA or EC public key from its JWK members.

    Raises ValueError for symmetric, unsupported, or incomplete keys.
    """
    kty = jwk.get("kty")
    try:
        if kty == "RSA":
            return rsa.RSAPublicNumbers(
                e=_base64url_to_int(jwk["e"]),
                n=_base64url_to_int(jwk["n"]),
            ).public_key()
        if kty == "EC":
            curve = EC_CURVES.get(jwk.get("crv", ""))
            if curve is None:
                raise ValueError(f"Unsupported curve: {jwk.get('crv')}")
            curve_cls, _alg = curve
            return ec.EllipticCurvePublicNumbers(
                x=_base64url_to_int(jwk["x"]),
                y=_base64url_to_int(jwk["y"]),
                curve=curve_cls(),
            ).public_key()
    except (KeyError, TypeError) as exc:
        raise ValueError("Incomplete JWK") from exc
    raise ValueError(f"Unsupported key type: {kty}")


def key_fits_algorithm(public_key: PublicKey, algorithm: str) -> bool:
    """RSA keys take RS*, EC keys only the ES* of their own curve."""
    if isinstance(public_key, RSAPublicKey):
        return algorithm in RSA_ALGORITHMS
    return EC_CURVES[ec_curve_name(public_key)][1] == algorithm
