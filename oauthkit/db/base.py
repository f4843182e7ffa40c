"""Declarative base for oauthkit SQLAlchemy models."""

from sqlalchemy.orm import DeclarativeBase


class BaseEntity(DeclarativeBase):
    """Base class for all oauthkit database entities."""
