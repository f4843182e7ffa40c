"""Client secret hashing and verification using Argon2id."""

import argon2

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def hash_client_secret(secret: str) -> str:
    """Hash a client secret for the static client registry."""
    return _hasher.hash(secret)


def verify_client_secret(plain: str, hashed: str) -> bool:
    """Check a presented client secret against its Argon2 hash."""
    try:
        return _hasher.verify(hashed, plain)
    except (
        argon2.exceptions.VerifyMismatchError,
        argon2.exceptions.InvalidHashError,
    ):
        return False
