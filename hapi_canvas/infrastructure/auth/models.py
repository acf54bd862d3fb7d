"""
Credential models.

Secrets are excluded from ``repr`` so a record can be logged or printed
without leaking the bearer or refresh token.
"""

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CanvasUser(BaseModel):
    """User block returned with a Canvas OAuth token."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    email: str | None = None


class TokenExchangeResult(BaseModel):
    """Canvas ``/login/oauth2/token`` response (authorization or refresh grant)."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(repr=False)
    token_type: str = "Bearer"
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int | None = Field(default=None, description="Lifetime in seconds")
    user: CanvasUser | None = None

    def expires_at(self, now: datetime) -> datetime | None:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=self.expires_in)


class CredentialRecord(BaseModel):
    """
    The credential on file for one (user, Canvas instance) pair.

    ``is_valid`` is cleared when a refresh fails; the user must then
    re-authorize before the record is usable again.
    """

    user_id: str
    instance_url: str
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    canvas_user_id: str | None = None
    is_valid: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class AccessToken(BaseModel):
    """What get_token() hands to callers."""

    token: str = Field(repr=False)
    expires_at: datetime | None = None
