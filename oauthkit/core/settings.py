"""Application settings loaded from environment variables."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from oauthkit.crypto.types import KeyFamily

ACCESS_TOKEN_TTL_DEFAULT = 3600
REFRESH_TOKEN_TTL_DEFAULT = 2_592_000
STORAGE_TIMEOUT_DEFAULT = 5.0
DPOP_NONCE_TTL_DEFAULT = 300
DPOP_MAX_PROOF_LIFETIME_DEFAULT = 300
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings for the SQL storage backends."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "oauthkit"
    password: str = "oauthkit"
    database: str = "oauthkit"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class AuthSettings(BaseSettings):
    """Token engine, DPoP, and client settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    issuer_url: str = "http://localhost:8000"
    signing_key_encryption_key: str = ""
    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT
    storage_timeout_seconds: float = STORAGE_TIMEOUT_DEFAULT
    clock_leeway_seconds: int = 0

    dpop_nonce_ttl: int = DPOP_NONCE_TTL_DEFAULT
    dpop_max_proof_lifetime: int = DPOP_MAX_PROOF_LIFETIME_DEFAULT
    dpop_require_nonce: bool = False
    cleanup_interval_seconds: float = 60.0

    # "memory" keeps everything in-process; "sql" uses DatabaseSettings
    storage_backend: Literal["memory", "sql"] = "memory"
    signing_key_family: KeyFamily = KeyFamily.RSA

    # client_id -> Argon2id hash of the client secret
    client_secrets: dict[str, str] = {}

    log_level: str = "INFO"
    log_json: bool | None = None

    @property
    def issuer(self) -> str:
        return self.issuer_url.rstrip("/")
