"""
Connection models — stored credentials, OAuth handshake state, token pairs.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenPair(BaseModel):
    """Tokens returned by the Intuit token endpoint.

    ``refresh_token`` and the lifetimes are optional: a refresh response may
    omit them, in which case the stored values are kept.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    token_type: str = "bearer"

    @classmethod
    def from_oauth_response(cls, data: dict[str, Any]) -> TokenPair:
        """Parse a standard OAuth2 token response (plus Intuit's refresh expiry)."""
        expires_in = data.get("expires_in")
        refresh_expires_in = data.get("x_refresh_token_expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            refresh_expires_in=int(refresh_expires_in) if refresh_expires_in is not None else None,
            token_type=data.get("token_type", "bearer"),
        )


class AccountMetadata(BaseModel):
    """Company information for the connected QuickBooks realm."""

    company_name: str | None = None
    company_email: str | None = None
    country: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_company_info(cls, info: dict[str, Any]) -> AccountMetadata:
        email = info.get("Email") or {}
        return cls(
            company_name=info.get("CompanyName"),
            company_email=email.get("Address") if isinstance(email, dict) else None,
            country=info.get("Country"),
            raw=info,
        )


class Credential(BaseModel):
    """A user's QuickBooks connection: token pair plus expiry bookkeeping.

    Token values are plaintext here; encoding at rest is the token store's job.
    """

    id: int | None = None
    user_id: str
    realm_id: str
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    is_active: bool = True
    company_name: str | None = None
    company_email: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_access_token_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.access_token_expires_at

    def is_refresh_token_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.refresh_token_expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        """Active and holding an unexpired access token."""
        return self.is_active and not self.is_access_token_expired(now)

    def can_be_refreshed(self, now: datetime | None = None) -> bool:
        return self.is_active and not self.is_refresh_token_expired(now)

    def apply_tokens(
        self,
        tokens: TokenPair,
        *,
        now: datetime,
        access_lifetime: int,
    ) -> Credential:
        """Return a copy updated with freshly issued tokens.

        The refresh token and its expiry only change when the provider
        issued new ones.
        """
        update: dict[str, Any] = {
            "access_token": tokens.access_token,
            "access_token_expires_at": now + timedelta(seconds=tokens.expires_in or access_lifetime),
        }
        if tokens.refresh_token:
            update["refresh_token"] = tokens.refresh_token
        if tokens.refresh_expires_in:
            update["refresh_token_expires_at"] = now + timedelta(seconds=tokens.refresh_expires_in)
        return self.model_copy(update=update)


class OAuthState(BaseModel):
    """Single-use anti-replay token binding an authorization attempt to a user."""

    state_token: str
    user_id: str
    expires_at: datetime
    created_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at
