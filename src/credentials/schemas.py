"""Schemas for stored account credentials and their token lifecycle."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class TokenStatus(str, Enum):
    """Token lifecycle phase for one account."""

    VALID = "valid"
    REFRESHING = "refreshing"
    FAILED = "failed"


class AuthenticationError(Exception):
    """Raised when an account has no usable access token."""

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"account {account_id}: {reason}")


@dataclass
class CredentialState:
    """OAuth credentials of one Reddit account.

    Attributes:
        account_id: Stable account identifier.
        access_token: Current bearer token.
        refresh_token: Refresh token, or None when the account cannot refresh.
        expires_at: Expiry of ``access_token``; None means it does not expire.
    """

    account_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def expires_within(self, now: datetime, margin_seconds: float) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= now + timedelta(seconds=margin_seconds)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
