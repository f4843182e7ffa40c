"""Tests for the protected token-info resource."""

import pytest
from httpx import AsyncClient

from oauthkit.core.clock import ManualClock
from oauthkit.core.server import OAuthServer
from oauthkit.dpop.proof import ProofSigner

ISSUER = "https://as.example"
TOKEN_URL = f"{ISSUER}/oauth/token"
TOKENINFO_URL = f"{ISSUER}/oauth/tokeninfo"
CLIENT_ID = "client-1"
CLIENT_SECRET = "client-1-secret"

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401


@pytest.fixture
def signer() -> ProofSigner:
    return ProofSigner.generate()


@pytest.fixture
async def bearer_token(server: OAuthServer) -> str:
    access = await server.tokens.issue_access_only(CLIENT_ID, "user-1", ["read"])
    return access.token


@pytest.fixture
async def dpop_token(client: AsyncClient, signer: ProofSigner, clock: ManualClock) -> str:
    resp = await client.post(
        "/oauth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "scope": "read",
        },
        headers={"DPoP": signer.token_request_proof(TOKEN_URL, now=clock())},
    )
    assert resp.json()["token_type"] == "DPoP"
    return resp.json()["access_token"]


class TestBearerAccess:
    """Unbound tokens use the Bearer scheme."""

    async def test_live_token(self, client: AsyncClient, bearer_token: str) -> None:
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {bearer_token}"}
        )
        assert resp.status_code == HTTP_OK
        data = resp.json()
        assert data["active"] is True
        assert data["client_id"] == CLIENT_ID
        assert data["sub"] == "user-1"
        assert data["scope"] == "read"
        assert data["token_type"] == "Bearer"
        assert "cnf" not in data

    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.get("/oauth/tokeninfo")
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_token"
        assert resp.headers["www-authenticate"].startswith('Bearer error="invalid_token"')

    async def test_revoked_token(
        self, client: AsyncClient, server: OAuthServer, bearer_token: str
    ) -> None:
        await server.tokens.revoke(bearer_token)
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {bearer_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_token"

    async def test_expired_token(
        self, client: AsyncClient, bearer_token: str, clock: ManualClock
    ) -> None:
        clock.advance(3600)
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {bearer_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json() == {
            "error": "invalid_token",
            "error_description": "The access token is invalid",
        }

    async def test_garbage_token(self, client: AsyncClient) -> None:
        resp = await client.get("/oauth/tokeninfo", headers={"Authorization": "Bearer abc"})
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_token"

    async def test_unbound_token_with_dpop_scheme(
        self, client: AsyncClient, bearer_token: str
    ) -> None:
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"DPoP {bearer_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED

    async def test_unknown_scheme(self, client: AsyncClient, bearer_token: str) -> None:
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Basic {bearer_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED


class TestDPoPAccess:
    """Bound tokens need the DPoP scheme and a proof by the bound key."""

    async def test_valid_proof(
        self, client: AsyncClient, dpop_token: str, signer: ProofSigner, clock: ManualClock
    ) -> None:
        proof = signer.resource_proof("GET", TOKENINFO_URL, dpop_token, now=clock())
        resp = await client.get(
            "/oauth/tokeninfo",
            headers={"Authorization": f"DPoP {dpop_token}", "DPoP": proof},
        )
        assert resp.status_code == HTTP_OK
        data = resp.json()
        assert data["token_type"] == "DPoP"
        assert data["cnf"] == {"kid": signer.kid}

    async def test_bearer_scheme_refused(self, client: AsyncClient, dpop_token: str) -> None:
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {dpop_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_token"

    async def test_missing_proof(self, client: AsyncClient, dpop_token: str) -> None:
        resp = await client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"DPoP {dpop_token}"}
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_dpop_proof"
        assert resp.headers["www-authenticate"].startswith('DPoP error="invalid_dpop_proof"')

    async def test_proof_by_other_key(
        self,
        client: AsyncClient,
        server: OAuthServer,
        dpop_token: str,
        clock: ManualClock,
    ) -> None:
        other = ProofSigner.generate()
        await server.dpop.registry.put(other.kid, other.public_jwk, CLIENT_ID)
        proof = other.resource_proof("GET", TOKENINFO_URL, dpop_token, now=clock())
        resp = await client.get(
            "/oauth/tokeninfo",
            headers={"Authorization": f"DPoP {dpop_token}", "DPoP": proof},
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_dpop_proof"

    async def test_proof_for_other_uri(
        self, client: AsyncClient, dpop_token: str, signer: ProofSigner, clock: ManualClock
    ) -> None:
        proof = signer.resource_proof("GET", f"{ISSUER}/elsewhere", dpop_token, now=clock())
        resp = await client.get(
            "/oauth/tokeninfo",
            headers={"Authorization": f"DPoP {dpop_token}", "DPoP": proof},
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_dpop_proof"

    async def test_proof_without_ath(
        self, client: AsyncClient, dpop_token: str, signer: ProofSigner, clock: ManualClock
    ) -> None:
        proof = signer.resource_proof("GET", TOKENINFO_URL, "not-this-token", now=clock())
        resp = await client.get(
            "/oauth/tokeninfo",
            headers={"Authorization": f"DPoP {dpop_token}", "DPoP": proof},
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_dpop_proof"

    async def test_revocation_unbinds(
        self,
        client: AsyncClient,
        server: OAuthServer,
        dpop_token: str,
        signer: ProofSigner,
        clock: ManualClock,
    ) -> None:
        await client.post("/oauth/revoke", data={"token": dpop_token})
        proof = signer.resource_proof("GET", TOKENINFO_URL, dpop_token, now=clock())
        resp = await client.get(
            "/oauth/tokeninfo",
            headers={"Authorization": f"DPoP {dpop_token}", "DPoP": proof},
        )
        assert resp.status_code == HTTP_UNAUTHORIZED
        assert resp.json()["error"] == "invalid_token"
