"""Authorization server metadata (RFC 8414) builder."""

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict

from oauthkit.oauth.extensions import TokenExtension, collect_metadata


class ServerMetadata(BaseModel):
    """/.well-known/oauth-authorization-server response."""

    model_config = ConfigDict(extra="allow")

    issuer: str
    token_endpoint: str
    jwks_uri: str
    revocation_endpoint: str
    grant_types_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    revocation_endpoint_auth_methods_supported: list[str]


def build_metadata(
    issuer: str,
    extensions: Sequence[TokenExtension] = (),
) -> ServerMetadata:
    """Build the metadata document; extensions add their own members."""
    extra: dict[str, Any] = collect_metadata(extensions)
    return ServerMetadata(
        issuer=issuer,
        token_endpoint=f"{issuer}/oauth/token",
        jwks_uri=f"{issuer}/oauth/jwks",
        revocation_endpoint=f"{issuer}/oauth/revoke",
        grant_types_supported=["client_credentials", "refresh_token"],
        token_endpoint_auth_methods_supported=["client_secret_post"],
        revocation_endpoint_auth_methods_supported=["none"],
        **extra,
    )
