"""Database operations for signing key management."""

from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from oauthkit.crypto.key_set import (
    ECDSAKey,
    KeySet,
    RSAKey,
    SymmetricKey,
    ecdsa_key,
    rsa_key,
)
from oauthkit.crypto.keys import (
    base64url_decode,
    base64url_encode,
    decrypt_private_key,
    encrypt_private_key,
    generate_ec_keypair,
    generate_rsa_keypair,
    private_key_to_pem,
    public_key_to_pem,
)
from oauthkit.crypto.types import KeyFamily
from oauthkit.db.models_keys import SigningKeyEntity

logger = structlog.get_logger()


def _secret_text(key: SymmetricKey | RSAKey | ECDSAKey) -> str:
    match key.family:
        case KeyFamily.HMAC:
            return base64url_encode(key.secret)
        case KeyFamily.RSA | KeyFamily.EC:
            if key.private_key is None:
                raise ValueError(f"Key {key.kid} has no private material to store")
            return private_key_to_pem(key.private_key)
    raise ValueError(f"Unknown key family: {key.family}")


def _to_material(
    entity: SigningKeyEntity, fernet_key: str
) -> SymmetricKey | RSAKey | ECDSAKey:
    secret = decrypt_private_key(entity.encrypted_secret, fernet_key)
    match KeyFamily(entity.family):
        case KeyFamily.HMAC:
            return SymmetricKey(
                kid=entity.kid, algorithm=entity.algorithm, secret=base64url_decode(secret)
            )
        case KeyFamily.RSA:
            return rsa_key(secret, entity.kid, entity.algorithm)
        case KeyFamily.EC:
            return ecdsa_key(secret, entity.kid)
    raise ValueError(f"Unknown key family: {entity.family}")


async def get_active_key(session: AsyncSession) -> SigningKeyEntity | None:
    """Return the current default signing key."""
    stmt = select(SigningKeyEntity).where(SigningKeyEntity.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_all_keys(session: AsyncSession) -> list[SigningKeyEntity]:
    """Return every stored key, oldest first."""
    stmt = select(SigningKeyEntity).order_by(
        SigningKeyEntity.created_at, SigningKeyEntity.kid
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def store_key(
    session: AsyncSession,
    key: SymmetricKey | RSAKey | ECDSAKey,
    fernet_key: str,
    *,
    active: bool = False,
) -> SigningKeyEntity:
    """Persist key material, encrypted at rest."""
    if active:
        await deactivate_all(session)
    public_pem = None if key.family is KeyFamily.HMAC else public_key_to_pem(key.public_key)
    entity = SigningKeyEntity(
        kid=key.kid,
        family=key.family.value,
        algorithm=key.algorithm,
        encrypted_secret=encrypt_private_key(_secret_text(key), fernet_key),
        public_key_pem=public_pem,
        is_active=active,
    )
    session.add(entity)
    await session.flush()
    return entity


async def deactivate_all(session: AsyncSession) -> None:
    """Mark all existing keys as verify-only (pre-rotation)."""
    stmt = (
        update(SigningKeyEntity)
        .where(SigningKeyEntity.is_active.is_(True))
        .values(is_active=False, rotated_at=datetime.now(UTC))
    )
    await session.execute(stmt)
    await session.flush()


async def load_key_set(session: AsyncSession, fernet_key: str) -> KeySet:
    """Rebuild the KeySet; the active row becomes the default signer."""
    key_set = KeySet()
    for entity in await get_all_keys(session):
        key_set = key_set.adding(_to_material(entity, fernet_key), make_default=entity.is_active)
    return key_set


def _generate(family: KeyFamily, curve: str) -> RSAKey | ECDSAKey:
    if family is KeyFamily.RSA:
        keypair = generate_rsa_keypair()
        return rsa_key(keypair.private_key_pem, keypair.kid)
    if family is KeyFamily.EC:
        keypair = generate_ec_keypair(curve)
        return ecdsa_key(keypair.private_key_pem, keypair.kid)
    raise ValueError("Only asymmetric keys are generated")


async def ensure_key_set(
    session: AsyncSession,
    fernet_key: str,
    family: KeyFamily = KeyFamily.RSA,
    curve: str = "P-256",
) -> KeySet:
    """Load the stored KeySet, generating a first signing key when empty."""
    if await get_active_key(session) is None:
        key = _generate(family, curve)
        await store_key(session, key, fernet_key, active=True)
        logger.info("signing_key_generated", kid=key.kid, algorithm=key.algorithm)
    return await load_key_set(session, fernet_key)


async def rotate_signing_key(
    session: AsyncSession,
    fernet_key: str,
    family: KeyFamily = KeyFamily.RSA,
    curve: str = "P-256",
) -> KeySet:
    """Generate a new default signer; previous keys keep verifying."""
    key = _generate(family, curve)
    await store_key(session, key, fernet_key, active=True)
    logger.info("signing_key_rotated", kid=key.kid, algorithm=key.algorithm)
    return await load_key_set(session, fernet_key)


async def retire_key(session: AsyncSession, kid: str) -> bool:
    """Delete a non-default key once no live token can reference it."""
    stmt = delete(SigningKeyEntity).where(
        SigningKeyEntity.kid == kid, SigningKeyEntity.is_active.is_(False)
    )
    result = await session.execute(stmt)
    await session.flush()
    retired = result.rowcount == 1
    if retired:
        logger.info("signing_key_retired", kid=kid)
    return retired
