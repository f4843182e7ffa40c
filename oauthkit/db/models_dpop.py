"""SQLAlchemy models for DPoP nonces, registered keys, and token bindings.

Timestamps are Unix epoch floats so that the injectable clock drives
expiry in SQL exactly as it does in memory.
"""

from typing import Any

from sqlalchemy import JSON, Boolean, Float, Index, String, false
from sqlalchemy.orm import Mapped, mapped_column

from oauthkit.db.base import BaseEntity


class DPoPNonceEntity(BaseEntity):
    """Issued nonce; ``consumed`` flips false to true exactly once."""

    __tablename__ = "dpop_nonces"
    __table_args__ = (Index("ix_dpop_nonces_expires_at", "expires_at"),)

    value: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)
    consumed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )


class DPoPKeyEntity(BaseEntity):
    """Public JWK a client declared for DPoP proofs."""

    __tablename__ = "dpop_keys"

    kid: Mapped[str] = mapped_column(String(255), primary_key=True)
    jwk: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)


class TokenBindingEntity(BaseEntity):
    """Access token identifier bound to a DPoP key identifier."""

    __tablename__ = "dpop_token_bindings"

    token_id: Mapped[str] = mapped_column(String(48), primary_key=True)
    kid: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)
