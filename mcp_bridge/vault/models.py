# mcp_bridge/vault/models.py
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderCredential(BaseModel):
    """Plaintext provider credential as handed out by the vault. Never log it."""

    access_token: str
    refresh_token: str
    provider_user_id: str
    provider_expires_at: datetime = Field(
        description="When the provider access token stops working. Drives refresh only."
    )

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> float:
        now = now or _utcnow()
        return (self.provider_expires_at - now).total_seconds()

    def needs_refresh(self, margin_seconds: int, now: Optional[datetime] = None) -> bool:
        return self.seconds_until_expiry(now) < margin_seconds

    def __repr__(self) -> str:
        return (
            f"ProviderCredential(provider_user_id={self.provider_user_id!r}, "
            f"provider_expires_at={self.provider_expires_at.isoformat()!r})"
        )

    __str__ = __repr__


class StoredCredential(BaseModel):
    """Encrypted at-rest form of a ProviderCredential."""

    encrypted_access_token: str
    encrypted_refresh_token: str
    provider_user_id: str
    provider_expires_at: datetime
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
