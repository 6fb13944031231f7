# dispatch_engine/models/domain/oauth_domain.py
"""
Access token domain model for the calendar token broker.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel


class AccessToken(BaseModel):
    """Short-lived bearer credential held in the broker's cache."""

    access_token: str
    token_type: str = "Bearer"
    scope: str = ""
    expires_at: datetime

    @classmethod
    def from_credentials(cls, credentials, default_expires_in: int = 3600) -> "AccessToken":
        """Build from google-auth credentials, whose ``expiry`` is naive UTC."""
        expiry = credentials.expiry
        if expiry is None:
            expires_at = datetime.now(UTC) + timedelta(seconds=default_expires_in)
        else:
            expires_at = expiry.replace(tzinfo=UTC)
        return cls(
            access_token=credentials.token,
            scope=" ".join(credentials.scopes or []),
            expires_at=expires_at,
        )

    def is_valid(self, buffer_seconds: int = 60) -> bool:
        """Check the token stays valid for at least ``buffer_seconds`` more."""
        return datetime.now(UTC) + timedelta(seconds=buffer_seconds) < self.expires_at
