"""Tests for the application factory and its lifespan."""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from oauthkit.core.app import create_app
from oauthkit.core.clock import ManualClock
from oauthkit.core.errors import storage_unavailable
from oauthkit.core.server import OAuthServer
from oauthkit.core.settings import AuthSettings
from oauthkit.crypto.key_set import KeySet
from oauthkit.dpop.nonce import InMemoryNonceManager
from oauthkit.dpop.proof import ProofSigner
from oauthkit.dpop.validator import DPoPRequest
from oauthkit.oauth.storage import InMemoryTokenStorage
from oauthkit.oauth.types import TokenRecord

ISSUER = "https://as.example"
HTTP_OK = 200
HTTP_UNAUTHORIZED = 401
HTTP_SERVICE_UNAVAILABLE = 503


class _CountingServer(OAuthServer):
    sweeps = 0

    async def cleanup(self) -> dict[str, int]:
        self.sweeps += 1
        return await super().cleanup()


class _FailingSweepServer(OAuthServer):
    sweeps = 0

    async def cleanup(self) -> dict[str, int]:
        self.sweeps += 1
        raise storage_unavailable()


class _UnreachableStorage(InMemoryTokenStorage):
    async def get_access_token(self, token_id: str) -> TokenRecord | None:
        raise ConnectionResetError


class TestDefaultApp:
    """create_app() without an explicit server."""

    async def test_memory_backend_serves_one_key(self) -> None:
        app = create_app()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
            resp = await ac.get("/oauth/jwks")
            metadata = (await ac.get("/.well-known/oauth-authorization-server")).json()
        assert resp.status_code == HTTP_OK
        assert len(resp.json()["keys"]) == 1
        assert metadata["issuer"] == ISSUER

    async def test_nonce_route_mounted(self) -> None:
        transport = ASGITransport(app=create_app())
        async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
            resp = await ac.get("/oauth/dpop_nonce")
        assert resp.status_code == HTTP_OK


class TestLifespan:
    """Startup and shutdown of the background sweeper."""

    async def test_enters_and_exits(self, server: OAuthServer) -> None:
        app = create_app(server)
        async with app.router.lifespan_context(app):
            assert app.state.oauth_server is server

    async def test_sweeper_runs(self, key_set: KeySet, clock: ManualClock) -> None:
        settings = AuthSettings(issuer_url=ISSUER, cleanup_interval_seconds=0.01)
        server = _CountingServer.build(settings, key_set, clock=clock)
        app = create_app(server)
        async with app.router.lifespan_context(app):
            await asyncio.sleep(0.1)
        assert server.sweeps > 0

    async def test_sweeper_survives_outage(self, key_set: KeySet, clock: ManualClock) -> None:
        settings = AuthSettings(issuer_url=ISSUER, cleanup_interval_seconds=0.01)
        server = _FailingSweepServer.build(settings, key_set, clock=clock)
        app = create_app(server)
        async with app.router.lifespan_context(app):
            await asyncio.sleep(0.1)
        assert server.sweeps > 1


class TestServerCleanup:
    """OAuthServer.cleanup() sweeps expired tokens and DPoP state."""

    async def test_counts(self, server: OAuthServer, clock: ManualClock) -> None:
        await server.dpop.nonces.issue()
        await server.dpop.registry.put("K1", {"kty": "EC"}, "client-1", expires_at=clock() + 10)
        await server.dpop.bindings.bind("jti-1", "K1", expires_at=clock() + 10)
        clock.advance(600)
        assert await server.cleanup() == {"tokens": 0, "nonces": 1, "keys": 1, "bindings": 1}
        assert await server.cleanup() == {"tokens": 0, "nonces": 0, "keys": 0, "bindings": 0}

    async def test_without_dpop(
        self, settings: AuthSettings, key_set: KeySet, clock: ManualClock
    ) -> None:
        server = OAuthServer.build(settings, key_set, clock=clock, enable_dpop=False)
        assert await server.cleanup() == {"tokens": 0}

    async def test_expired_tokens_leave_the_live_set(
        self, server: OAuthServer, settings: AuthSettings, clock: ManualClock
    ) -> None:
        _access, refresh = await server.tokens.issue_access_and_refresh("client-1", "user-1")
        clock.advance(settings.refresh_token_ttl)
        swept = await server.cleanup()
        assert swept["tokens"] == 2
        assert await server.tokens.storage.all_refresh_tokens() == {}
        assert await server.tokens.storage.get_refresh_token(refresh.token_id) is None


class TestServerWiring:
    """OAuthServer.build() keeps the backends it is given."""

    async def test_injected_empty_nonce_manager_is_used(
        self, settings: AuthSettings, key_set: KeySet, clock: ManualClock
    ) -> None:
        mine = InMemoryNonceManager(ttl=30, clock=clock)
        server = OAuthServer.build(settings, key_set, nonces=mine, clock=clock)
        assert server.dpop.nonces is mine
        nonce = await mine.issue()
        signer = ProofSigner.generate()
        proof = signer.token_request_proof(server.token_endpoint, nonce=nonce.value, now=clock())
        request = DPoPRequest(method="POST", uri=server.token_endpoint)
        claims = await server.dpop.validator.validate(proof, request, register_key=True)
        assert claims.nonce == nonce.value

    async def test_nonce_endpoint_reports_injected_ttl(
        self, settings: AuthSettings, key_set: KeySet, clock: ManualClock
    ) -> None:
        server = OAuthServer.build(
            settings, key_set, nonces=InMemoryNonceManager(ttl=30, clock=clock), clock=clock
        )
        transport = ASGITransport(app=create_app(server))
        async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
            resp = await ac.get("/oauth/dpop_nonce")
        assert resp.json()["expires_in"] == 30


class TestResourceErrors:
    """Exception handlers for protected resources."""

    async def test_storage_outage_is_503(
        self, settings: AuthSettings, key_set: KeySet, clock: ManualClock
    ) -> None:
        server = OAuthServer.build(
            settings, key_set, storage=_UnreachableStorage(), clock=clock
        )
        access = await server.tokens.issue_access_only("client-1")
        transport = ASGITransport(app=create_app(server))
        async with AsyncClient(transport=transport, base_url=ISSUER) as ac:
            resp = await ac.get(
                "/oauth/tokeninfo", headers={"Authorization": f"Bearer {access.token}"}
            )
        assert resp.status_code == HTTP_SERVICE_UNAVAILABLE
        assert resp.json()["error"] == "server_error"
        assert "www-authenticate" not in resp.headers

    @pytest.mark.parametrize("token", ["a.b.c", "not-a-jwt"])
    async def test_undecodable_token_is_401(self, client: AsyncClient, token: str) -> None:
        resp = await client.get("/oauth/tokeninfo", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.headers["www-authenticate"].startswith("Bearer ")
