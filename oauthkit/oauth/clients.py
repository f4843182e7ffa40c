"""Static client registry for client_secret_post authentication."""

from collections.abc import Mapping

import structlog

from oauthkit.crypto.client_secrets import verify_client_secret

logger = structlog.get_logger()


class StaticClientRegistry:
    """Maps client ids to Argon2id hashes of their secrets."""

    def __init__(self, secret_hashes: Mapping[str, str] | None = None) -> None:
        self._hashes = dict(secret_hashes or {})

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._hashes

    def register(self, client_id: str, secret_hash: str) -> None:
        self._hashes[client_id] = secret_hash

    def authenticate(self, client_id: str, client_secret: str) -> bool:
        """Check a client_secret_post credential pair."""
        secret_hash = self._hashes.get(client_id)
        if secret_hash is None:
            logger.info("client_auth_failed", client_id=client_id, reason="unknown_client")
            return False
        if not verify_client_secret(client_secret, secret_hash):
            logger.info("client_auth_failed", client_id=client_id, reason="bad_secret")
            return False
        return True
