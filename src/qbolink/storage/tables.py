"""
Connection tables — stored credentials and pending OAuth states.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from qbolink.storage.database import Base, UTCDateTime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRow(Base):
    __tablename__ = "quickbooks_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Encoded through the token store's SecretCodec.
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    refresh_token_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_quickbooks_tokens_user_active", "user_id", "is_active"),
        Index("ix_quickbooks_tokens_realm", "realm_id"),
    )


class OAuthStateRow(Base):
    __tablename__ = "quickbooks_oauth_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
