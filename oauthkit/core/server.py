"""Wiring of the token engine, DPoP extension, and client registry."""

import structlog

from oauthkit.core.clock import Clock, system_clock
from oauthkit.core.settings import AuthSettings
from oauthkit.crypto.key_set import KeySet
from oauthkit.crypto.token_codec import TokenCodec
from oauthkit.db.engine import SessionFactory
from oauthkit.db.repo_dpop import SqlBindingStore, SqlKeyRegistry, SqlNonceManager
from oauthkit.db.repo_tokens import SqlTokenStorage
from oauthkit.dpop.bindings import AccessTokenBindingStore, InMemoryBindingStore
from oauthkit.dpop.extension import DPoPExtension
from oauthkit.dpop.nonce import InMemoryNonceManager, NonceManager
from oauthkit.dpop.registry import InMemoryKeyRegistry, KeyRegistry
from oauthkit.dpop.validator import DPoPValidator
from oauthkit.oauth.clients import StaticClientRegistry
from oauthkit.oauth.discovery import ServerMetadata, build_metadata
from oauthkit.oauth.extensions import TokenExtension
from oauthkit.oauth.storage import InMemoryTokenStorage, TokenStorage
from oauthkit.oauth.token_manager import TokenManager

logger = structlog.get_logger()


class OAuthServer:
    """Everything one issuer needs to serve requests."""

    def __init__(
        self,
        settings: AuthSettings,
        tokens: TokenManager,
        clients: StaticClientRegistry,
        dpop: DPoPExtension | None = None,
    ) -> None:
        self.settings = settings
        self.tokens = tokens
        self.clients = clients
        self.dpop = dpop

    @classmethod
    def build(
        cls,
        settings: AuthSettings,
        key_set: KeySet,
        *,
        storage: TokenStorage | None = None,
        nonces: NonceManager | None = None,
        registry: KeyRegistry | None = None,
        bindings: AccessTokenBindingStore | None = None,
        clients: StaticClientRegistry | None = None,
        clock: Clock = system_clock,
        enable_dpop: bool = True,
    ) -> "OAuthServer":
        """Assemble a server; missing backends default to in-memory ones."""
        codec = TokenCodec(key_set, clock=clock, leeway_seconds=settings.clock_leeway_seconds)
        dpop = None
        extensions: list[TokenExtension] = []
        if enable_dpop:
            # Explicit None checks: an empty in-memory store is falsy.
            if nonces is None:
                nonces = InMemoryNonceManager(settings.dpop_nonce_ttl, clock=clock)
            if registry is None:
                registry = InMemoryKeyRegistry(clock=clock)
            if bindings is None:
                bindings = InMemoryBindingStore(clock=clock)
            validator = DPoPValidator(
                codec,
                registry,
                nonces,
                bindings,
                max_proof_lifetime=settings.dpop_max_proof_lifetime,
                require_nonce=settings.dpop_require_nonce,
                storage_timeout=settings.storage_timeout_seconds,
            )
            dpop = DPoPExtension(
                validator,
                nonces,
                registry,
                bindings,
                issuer=settings.issuer,
                storage_timeout=settings.storage_timeout_seconds,
            )
            extensions.append(dpop)
        if storage is None:
            storage = InMemoryTokenStorage()
        if clients is None:
            clients = StaticClientRegistry(settings.client_secrets)
        tokens = TokenManager(
            codec,
            storage,
            issuer=settings.issuer,
            access_token_ttl=settings.access_token_ttl,
            refresh_token_ttl=settings.refresh_token_ttl,
            storage_timeout=settings.storage_timeout_seconds,
            extensions=extensions,
            clock=clock,
        )
        return cls(settings, tokens, clients, dpop)

    @classmethod
    def build_sql(
        cls,
        settings: AuthSettings,
        key_set: KeySet,
        factory: SessionFactory,
        *,
        clients: StaticClientRegistry | None = None,
        clock: Clock = system_clock,
    ) -> "OAuthServer":
        """Assemble a server whose state lives in the database."""
        return cls.build(
            settings,
            key_set,
            storage=SqlTokenStorage(factory),
            nonces=SqlNonceManager(factory, settings.dpop_nonce_ttl, clock=clock),
            registry=SqlKeyRegistry(factory, clock=clock),
            bindings=SqlBindingStore(factory, clock=clock),
            clients=clients,
            clock=clock,
        )

    @property
    def codec(self) -> TokenCodec:
        return self.tokens.codec

    @property
    def extensions(self) -> tuple[TokenExtension, ...]:
        return self.tokens.extensions

    @property
    def token_endpoint(self) -> str:
        return f"{self.settings.issuer}/oauth/token"

    def metadata(self) -> ServerMetadata:
        return build_metadata(self.settings.issuer, self.extensions)

    async def cleanup(self) -> dict[str, int]:
        """Sweep expired tokens and, with DPoP on, expired DPoP state."""
        swept = {"tokens": await self.tokens.cleanup()}
        if self.dpop is not None:
            swept.update(await self.dpop.cleanup())
        logger.debug("expired_state_swept", **swept)
        return swept
