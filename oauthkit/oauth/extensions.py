"""Capability-flagged extension hooks for the token engine.

Extensions are passed to the TokenManager as an ordered tuple. Each one
declares the hook points it takes part in through boolean flags; hooks
whose flag is off are never called.
"""

from collections.abc import Sequence
from typing import Any

from fastapi import APIRouter

from oauthkit.oauth.types import AccessToken, IssuanceContext, TokenKind, TokenResponse


class TokenExtension:
    """Base class for token engine extensions. Every hook is a no-op."""

    extension_id: str = ""
    extension_name: str = ""
    specification_version: str = ""

    observes_issuance: bool = False
    observes_revocation: bool = False
    modifies_token_response: bool = False
    adds_endpoints: bool = False

    async def on_access_token_issued(
        self, token: AccessToken, context: IssuanceContext
    ) -> None:
        """Called after an access token has been stored in the live set."""

    async def on_token_revoked(self, token_id: str, kind: TokenKind) -> None:
        """Called after a token identifier has left the live set."""

    def modify_token_response(
        self, response: TokenResponse, context: IssuanceContext
    ) -> TokenResponse:
        return response

    def router(self) -> APIRouter | None:
        return None

    def metadata(self) -> dict[str, Any]:
        """Authorization server metadata contributed by this extension."""
        return {}


def check_extensions(extensions: Sequence[TokenExtension]) -> tuple[TokenExtension, ...]:
    """Freeze the extension list, rejecting duplicate identifiers."""
    seen: set[str] = set()
    for extension in extensions:
        if extension.extension_id in seen:
            raise ValueError(f"Duplicate extension: {extension.extension_id}")
        seen.add(extension.extension_id)
    return tuple(extensions)


def collect_metadata(extensions: Sequence[TokenExtension]) -> dict[str, Any]:
    """Merge extension metadata in registration order."""
    merged: dict[str, Any] = {}
    for extension in extensions:
        merged.update(extension.metadata())
    return merged


def apply_response_hooks(
    extensions: Sequence[TokenExtension],
    response: TokenResponse,
    context: IssuanceContext,
) -> TokenResponse:
    for extension in extensions:
        if extension.modifies_token_response:
            response = extension.modify_token_response(response, context)
    return response
