"""Shared test fixtures for oauthkit."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from oauthkit.core.app import create_app
from oauthkit.core.clock import ManualClock
from oauthkit.core.server import OAuthServer
from oauthkit.core.settings import AuthSettings
from oauthkit.crypto.client_secrets import hash_client_secret
from oauthkit.crypto.key_set import KeySet
from oauthkit.crypto.keys import generate_rsa_keypair
from oauthkit.crypto.types import SigningKeyData
from oauthkit.db.base import BaseEntity
from oauthkit.db.engine import SessionFactory
from oauthkit.oauth.clients import StaticClientRegistry

ISSUER = "https://as.example"
CLIENT_ID = "client-1"
CLIENT_SECRET = "client-1-secret"
START = 1_700_000_000.0


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for test settings."""
    monkeypatch.setenv("AUTH_ISSUER_URL", ISSUER)
    monkeypatch.setenv("AUTH_LOG_JSON", "false")


@pytest.fixture(scope="session")
def rsa_keypair() -> SigningKeyData:
    """One RSA keypair for the whole run; generation is slow."""
    return generate_rsa_keypair()


@pytest.fixture(scope="session")
def client_secret_hash() -> str:
    return hash_client_secret(CLIENT_SECRET)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def key_set(rsa_keypair: SigningKeyData) -> KeySet:
    return KeySet.rsa(rsa_keypair.private_key_pem, rsa_keypair.kid)


@pytest.fixture
def settings() -> AuthSettings:
    return AuthSettings(issuer_url=ISSUER)


@pytest.fixture
def server(
    settings: AuthSettings,
    key_set: KeySet,
    clock: ManualClock,
    client_secret_hash: str,
) -> OAuthServer:
    """In-memory server with one registered client."""
    return OAuthServer.build(
        settings,
        key_set,
        clients=StaticClientRegistry({CLIENT_ID: client_secret_hash}),
        clock=clock,
    )


@pytest.fixture
async def client(server: OAuthServer) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client bound to the in-memory server."""
    app = create_app(server)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
        yield ac


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[SessionFactory]:
    """File-backed SQLite so concurrent sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'oauthkit.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """A session with an open transaction, rolled back afterwards."""
    async with session_factory() as session:
        yield session
        await session.rollback()
