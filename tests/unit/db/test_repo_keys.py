"""Tests for signing key repository operations."""

import pytest
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.ext.asyncio import AsyncSession

from oauthkit.crypto.key_set import (
    HMAC_MIN_SECRET_BYTES,
    RSAKey,
    ecdsa_key,
    hmac_key,
    rsa_key,
)
from oauthkit.crypto.keys import decrypt_private_key, generate_ec_keypair
from oauthkit.crypto.types import KeyFamily, SigningKeyData
from oauthkit.db.repo_keys import (
    deactivate_all,
    ensure_key_set,
    get_active_key,
    get_all_keys,
    load_key_set,
    retire_key,
    rotate_signing_key,
    store_key,
)

FERNET_KEY = Fernet.generate_key().decode()


class TestStoreKey:
    """Tests for store_key and get_active_key."""

    async def test_persists_active_key(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        stored = await store_key(
            db_session, rsa_key(rsa_keypair.private_key_pem, "k1"), FERNET_KEY, active=True
        )
        assert stored.family == KeyFamily.RSA.value
        fetched = await get_active_key(db_session)
        assert fetched is not None
        assert fetched.kid == "k1"
        assert fetched.public_key_pem is not None

    async def test_encrypted_at_rest(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        stored = await store_key(db_session, rsa_key(rsa_keypair.private_key_pem), FERNET_KEY)
        assert "PRIVATE KEY" not in stored.encrypted_secret
        assert "PRIVATE KEY" in decrypt_private_key(stored.encrypted_secret, FERNET_KEY)

    async def test_active_replaces_previous(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        await store_key(
            db_session, rsa_key(rsa_keypair.private_key_pem, "old"), FERNET_KEY, active=True
        )
        await store_key(
            db_session, hmac_key("s" * HMAC_MIN_SECRET_BYTES, "new"), FERNET_KEY, active=True
        )
        active = await get_active_key(db_session)
        assert active is not None
        assert active.kid == "new"
        assert len(await get_all_keys(db_session)) == 2

    async def test_verify_only_key_rejected(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        full = rsa_key(rsa_keypair.private_key_pem, "k1")
        verify_only = RSAKey(kid="k1", public_key=full.public_key)
        with pytest.raises(ValueError, match="no private material"):
            await store_key(db_session, verify_only, FERNET_KEY)

    async def test_none_when_empty(self, db_session: AsyncSession) -> None:
        assert await get_active_key(db_session) is None
        assert await get_all_keys(db_session) == []


class TestDeactivateAll:
    """Tests for deactivate_all."""

    async def test_deactivates_active_keys(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        await store_key(
            db_session, rsa_key(rsa_keypair.private_key_pem, "k1"), FERNET_KEY, active=True
        )
        await deactivate_all(db_session)
        assert await get_active_key(db_session) is None
        (entity,) = await get_all_keys(db_session)
        assert entity.rotated_at is not None


class TestLoadKeySet:
    """Tests for load_key_set."""

    async def test_all_families_round_trip(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        secret = "s" * HMAC_MIN_SECRET_BYTES
        await store_key(db_session, hmac_key(secret, "h1"), FERNET_KEY)
        await store_key(db_session, rsa_key(rsa_keypair.private_key_pem, "r1"), FERNET_KEY)
        ec = generate_ec_keypair("P-384")
        await store_key(db_session, ecdsa_key(ec.private_key_pem, "e1"), FERNET_KEY, active=True)

        key_set = await load_key_set(db_session, FERNET_KEY)
        assert key_set.default_kid == "e1"
        assert {entry.kid for entry in key_set.entries} == {"h1", "r1", "e1"}
        hmac_entry = key_set.get("h1")
        assert hmac_entry is not None
        assert hmac_entry.family is KeyFamily.HMAC
        assert hmac_entry.secret == secret.encode()
        assert key_set.get("e1").algorithm == "ES384"
        assert {jwk.kid for jwk in key_set.public_jwks().keys} == {"r1", "e1"}

    async def test_wrong_fernet_key(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        await store_key(db_session, rsa_key(rsa_keypair.private_key_pem), FERNET_KEY)
        with pytest.raises(InvalidToken):
            await load_key_set(db_session, Fernet.generate_key().decode())


class TestEnsureKeySet:
    """Tests for ensure_key_set."""

    async def test_generates_when_empty(self, db_session: AsyncSession) -> None:
        key_set = await ensure_key_set(db_session, FERNET_KEY, KeyFamily.EC)
        assert key_set.default is not None
        assert key_set.default.algorithm == "ES256"
        assert len(await get_all_keys(db_session)) == 1

    async def test_reuses_existing(
        self, db_session: AsyncSession, rsa_keypair: SigningKeyData
    ) -> None:
        await store_key(
            db_session, rsa_key(rsa_keypair.private_key_pem, "k1"), FERNET_KEY, active=True
        )
        key_set = await ensure_key_set(db_session, FERNET_KEY)
        assert key_set.default_kid == "k1"
        assert len(key_set.entries) == 1


class TestRotation:
    """Tests for rotate_signing_key and retire_key."""

    async def test_rotate_keeps_old_key_for_verification(self, db_session: AsyncSession) -> None:
        first = await ensure_key_set(db_session, FERNET_KEY, KeyFamily.EC)
        rotated = await rotate_signing_key(db_session, FERNET_KEY, KeyFamily.EC)
        assert rotated.default_kid != first.default_kid
        assert rotated.get(first.default_kid) is not None

    async def test_retire_old_key(self, db_session: AsyncSession) -> None:
        first = await ensure_key_set(db_session, FERNET_KEY, KeyFamily.EC)
        await rotate_signing_key(db_session, FERNET_KEY, KeyFamily.EC)
        assert await retire_key(db_session, first.default_kid)
        key_set = await load_key_set(db_session, FERNET_KEY)
        assert key_set.get(first.default_kid) is None
        assert len(key_set.entries) == 1

    async def test_default_key_cannot_be_retired(self, db_session: AsyncSession) -> None:
        key_set = await ensure_key_set(db_session, FERNET_KEY, KeyFamily.EC)
        assert not await retire_key(db_session, key_set.default_kid)
        assert not await retire_key(db_session, "missing")
