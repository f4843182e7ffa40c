"""SQLAlchemy model for the live token set."""

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from oauthkit.db.base import BaseEntity


class LiveTokenEntity(BaseEntity):
    """Issuance record of a non-revoked access or refresh token."""

    __tablename__ = "live_tokens"
    __table_args__ = (Index("ix_live_tokens_expires_at", "expires_at"),)

    token_id: Mapped[str] = mapped_column(String(48), primary_key=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    issued_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
