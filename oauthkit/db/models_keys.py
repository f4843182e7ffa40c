"""SQLAlchemy model for token signing keys."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, func, true
from sqlalchemy.orm import Mapped, mapped_column

from oauthkit.db.base import BaseEntity


class SigningKeyEntity(BaseEntity):
    """HMAC, RSA or ECDSA signing key; secret material is Fernet-encrypted."""

    __tablename__ = "signing_keys"

    kid: Mapped[str] = mapped_column(String(64), primary_key=True)
    family: Mapped[str] = mapped_column(String(8), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(10), nullable=False)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    public_key_pem: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    rotated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
