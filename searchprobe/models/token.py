"""
Domain models for OAuth token persistence.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenRecord(BaseModel):
    """Token set stored for one principal; replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    refresh_token: str = ""
    expires_on: datetime = Field(..., description="Absolute UTC expiry of the access token.")
    scope: str = ""
    tenant_id: str = ""
    client_id: str = ""

    @field_validator("expires_on")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        """True while the access token is usable for longer than ``window``."""
        return self.expires_on > now + window


class CredentialStatus(str, Enum):
    """Coarse token state reported per principal."""

    NO_TOKEN = "No Token"
    NO_REFRESH_TOKEN = "No Refresh Token"
    ACTIVE = "Active"
    EXPIRED_REFRESHABLE = "Expired (has refresh token)"


__all__ = ["CredentialStatus", "TokenRecord"]
