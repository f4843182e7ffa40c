"""Tests for the static client registry."""

from oauthkit.oauth.clients import StaticClientRegistry


class TestStaticClientRegistry:
    """Tests for client_secret_post authentication."""

    def test_authenticates_known_client(self, client_secret_hash: str) -> None:
        registry = StaticClientRegistry({"client-1": client_secret_hash})
        assert registry.authenticate("client-1", "client-1-secret")

    def test_wrong_secret(self, client_secret_hash: str) -> None:
        registry = StaticClientRegistry({"client-1": client_secret_hash})
        assert not registry.authenticate("client-1", "nope")

    def test_unknown_client(self) -> None:
        assert not StaticClientRegistry().authenticate("ghost", "anything")

    def test_register(self, client_secret_hash: str) -> None:
        registry = StaticClientRegistry()
        registry.register("client-2", client_secret_hash)
        assert "client-2" in registry
        assert registry.authenticate("client-2", "client-1-secret")
