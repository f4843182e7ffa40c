"""Token payloads, issuance records, and token endpoint responses."""

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class TokenKind(StrEnum):
    """Value of the ``token_type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"


class TokenPayload(BaseModel):
    """Signed wire payload shared by access and refresh tokens."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    iss: str
    sub: str = ""
    aud: list[str]
    exp: int
    iat: int
    jti: str
    scope: str | None = None
    client_id: str
    token_type: TokenKind

    @property
    def scopes(self) -> list[str]:
        return self.scope.split(" ") if self.scope else []

    @property
    def user_id(self) -> str | None:
        return self.sub or None

    def to_claims(self) -> dict[str, Any]:
        """Claims dict handed to the codec; ``scope`` omitted when unset."""
        return self.model_dump(mode="json", exclude_none=True)


class TokenRecord(BaseModel):
    """Issuance metadata persisted in the live set."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    kind: TokenKind
    client_id: str
    user_id: str | None = None
    scopes: list[str] = Field(default_factory=list)
    issued_at: int
    expires_at: int

    @classmethod
    def from_payload(cls, payload: TokenPayload) -> "TokenRecord":
        return cls(
            token_id=payload.jti,
            kind=payload.token_type,
            client_id=payload.client_id,
            user_id=payload.user_id,
            scopes=payload.scopes,
            issued_at=payload.iat,
            expires_at=payload.exp,
        )


class SignedToken(BaseModel):
    """A signed token string together with its decoded payload."""

    model_config = ConfigDict(frozen=True)

    kind: ClassVar[TokenKind]

    token: str
    payload: TokenPayload

    @property
    def token_id(self) -> str:
        return self.payload.jti

    @property
    def expires_in(self) -> int:
        return self.payload.exp - self.payload.iat


class AccessToken(SignedToken):
    """Access token handle."""

    kind: ClassVar[TokenKind] = TokenKind.ACCESS


class RefreshToken(SignedToken):
    """Refresh token handle."""

    kind: ClassVar[TokenKind] = TokenKind.REFRESH


class IssuanceContext(BaseModel):
    """Per-request facts that issuance extensions may act on."""

    model_config = ConfigDict(frozen=True)

    dpop_key_id: str | None = None


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None
