"""OAuth2 session models."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

DEFAULT_EXPIRES_IN_SECONDS = 300


class TokenResponse(BaseModel):
    """Successful response body of an OpenID Connect token endpoint."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN_SECONDS
    token_type: str | None = None

    class Config:
        extra = "ignore"

    @field_validator("expires_in", mode="before")
    @classmethod
    def default_expires_in(cls, value: object) -> object:
        # Providers may omit the lifetime or send null/0.
        return value or DEFAULT_EXPIRES_IN_SECONDS


class Session(BaseModel):
    """An authenticated session with the identity provider.

    Attributes:
        access_token: Bearer token presented to the cluster API
        refresh_token: Token used for the refresh_token grant, if issued
        expires_at: Absolute expiry as epoch milliseconds
    """

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_at: int

    @classmethod
    def from_token_response(
        cls,
        token: TokenResponse,
        now_ms: int,
        fallback_refresh_token: str | None = None,
    ) -> "Session":
        """Build a session from a token response received at ``now_ms``."""
        return cls(
            access_token=token.access_token,
            refresh_token=token.refresh_token or fallback_refresh_token,
            expires_at=now_ms + token.expires_in * 1000,
        )

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at / 1000, tz=UTC)
