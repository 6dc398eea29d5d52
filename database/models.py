"""
SQLAlchemy ORM models for users and their calendar connectors.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

CALENDAR_PROVIDERS = ("orange", "microsoft", "google")

_JSON = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(String(16), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    connectors = relationship("CalendarConnector", back_populates="user", cascade="all, delete-orphan")


class CalendarConnector(Base):
    """
    One user's link to one external calendar provider.

    ``access_token`` and ``refresh_token`` hold Fernet ciphertext (see
    ``connectors.encryption``).  For Orange the access token is the HTTP
    Basic credential and ``expires_at`` stays NULL.
    """

    __tablename__ = "calendar_connectors"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_connectors_user_provider"),
    )

    connector_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(16), nullable=False)
    account_id = Column(String(256))
    account_label = Column(String(256))
    access_token = Column(Text, nullable=False, default="")
    refresh_token = Column(Text)
    token_type = Column(String(16), default="Bearer")
    scope = Column(Text, default="")
    expires_in = Column(Integer)
    expires_at = Column(DateTime(timezone=True))
    is_valid = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    provider_meta = Column(_JSON, default=dict)
    error_message = Column(Text)
    connected_at = Column(DateTime(timezone=True), default=_utcnow)
    last_refreshed = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    version = Column(Integer, nullable=False)

    user = relationship("User", back_populates="connectors")

    __mapper_args__ = {"version_id_col": version}
