"""
qbolink configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class Environment(str, Enum):
    """QuickBooks API environment."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"


class OAuthConfig(BaseModel):
    """OAuth 2.0 client settings from the Intuit developer dashboard."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = Field(default="http://localhost:8000/quickbooks/callback")
    scope: str = Field(default="com.intuit.quickbooks.accounting")
    environment: Environment = Environment.SANDBOX
    state_ttl_minutes: int = Field(default=60, ge=1, description="Lifetime of a pending OAuth state")


class TokenConfig(BaseModel):
    """Token lifetimes and storage policy."""

    access_token_lifetime: int = Field(default=3600, ge=1, description="Seconds (1 hour)")
    refresh_token_lifetime: int = Field(default=8726400, ge=1, description="Seconds (101 days)")
    auto_refresh: bool = True
    encryption: bool = True
    encryption_key: str | None = Field(default=None, description="Secret used to derive the token cipher key")


class ApiConfig(BaseModel):
    """QuickBooks API request settings."""

    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    retry_attempts: int = Field(default=3, ge=1, description="Attempts for idempotent reads")
    minor_version: str | None = "65"
    log_requests: bool = False


_DEFAULT_MESSAGES: dict[str, str] = {
    "no_token": "You are not connected to QuickBooks. Please connect your account.",
    "token_inactive": "Invalid QuickBooks token. Please reconnect to your QuickBooks account.",
    "refresh_token_expired": "Your QuickBooks connection has expired. Please reconnect to continue.",
    "refresh_failed": "Your QuickBooks connection has expired. Please reconnect to continue.",
    "invalid_state": "The QuickBooks authorization request is invalid or has expired. Please connect again.",
    "missing_parameters": "QuickBooks did not return the expected authorization details. Please connect again.",
    "oauth_error": "QuickBooks authorization was not completed. Please try again.",
    "api_error": "An error occurred while communicating with QuickBooks. Please try again.",
    "callback_error": "Failed to connect to QuickBooks. Please try again.",
}


class ErrorConfig(BaseModel):
    """User-facing error policy."""

    show_detailed_errors: bool = False
    log_errors: bool = True
    messages: dict[str, str] = Field(default_factory=lambda: dict(_DEFAULT_MESSAGES))


class QBOLinkConfig(BaseModel):
    """Root configuration for qbolink."""

    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    errors: ErrorConfig = Field(default_factory=ErrorConfig)

    database_url: str = Field(default="sqlite:///qbolink.db")
    success_redirect: str = Field(default="/dashboard")
    connect_redirect: str = Field(default="/quickbooks/connect")

    @property
    def sandbox(self) -> bool:
        return self.oauth.environment == Environment.SANDBOX

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> QBOLinkConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_oauth = {
            "client_id": os.environ.get("QBOLINK_CLIENT_ID"),
            "client_secret": os.environ.get("QBOLINK_CLIENT_SECRET"),
            "redirect_uri": os.environ.get("QBOLINK_REDIRECT_URI"),
            "environment": os.environ.get("QBOLINK_ENVIRONMENT"),
        }
        env_oauth = {k: v for k, v in env_oauth.items() if v}
        if env_oauth:
            oauth = data.get("oauth", {})
            oauth.update(env_oauth)
            data["oauth"] = oauth

        env_key = os.environ.get("QBOLINK_ENCRYPTION_KEY")
        if env_key:
            tokens = data.get("tokens", {})
            tokens["encryption_key"] = env_key
            data["tokens"] = tokens

        env_db = os.environ.get("QBOLINK_DATABASE_URL")
        if env_db:
            data["database_url"] = env_db

        env_detailed = os.environ.get("QBOLINK_SHOW_DETAILED_ERRORS")
        if env_detailed:
            errors = data.get("errors", {})
            errors["show_detailed_errors"] = env_detailed.lower() in ("1", "true", "yes")
            data["errors"] = errors

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
