# src/token_lifecycle/credential.py

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Credential:
    """
    One stored Google OAuth credential, as read from a single backend.

    `expires_at` is in epoch seconds. None means the expiry is unknown and the
    token must be treated as expired.
    """

    subject_key: str
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[int] = None
    scope: Optional[str] = None

    # Backend metadata, populated where the backend stores it
    user_id: Optional[str] = None
    provider_subject: Optional[str] = None
    email: Optional[str] = None
    updated_at: Optional[float] = None

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def seconds_remaining(self, now: float) -> Optional[int]:
        if self.expires_at is None:
            return None
        return int(self.expires_at - now)


@dataclass
class CredentialUpdate:
    """
    Partial update merged into a stored credential.

    Fields left as None are not touched by CredentialStore.write, so a refresh
    response without a refresh_token can never erase the stored one.
    """

    access_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[int] = None
    refresh_token: Optional[str] = field(default=None, repr=False)
    scope: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            self.access_token is None
            and self.expires_at is None
            and self.refresh_token is None
            and self.scope is None
        )


@dataclass
class TokenGrant:
    """Successful response of a refresh-token grant."""

    access_token: str = field(repr=False)
    expires_in: int
    obtained_at: float
    scope: Optional[str] = None
    refresh_token: Optional[str] = field(default=None, repr=False)

    @property
    def expires_at(self) -> int:
        # Measured from when the response arrived, not when the request was sent
        return int(self.obtained_at) + int(self.expires_in)

    def to_update(self) -> CredentialUpdate:
        return CredentialUpdate(
            access_token=self.access_token,
            expires_at=self.expires_at,
            refresh_token=self.refresh_token or None,
            scope=self.scope or None,
        )


@dataclass
class TokenBundle:
    """A valid access token together with where it came from."""

    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[int] = None
    store_name: str = ""
    subject_key: str = ""
    refreshed: bool = False


@dataclass
class TokenInfo:
    """Redacted view of a stored credential; never carries token values."""

    store_name: str
    subject_key: str
    user_id: Optional[str]
    provider_subject: Optional[str]
    email: Optional[str]
    scope: Optional[str]
    expires_at: Optional[int]
    seconds_remaining: Optional[int]
    has_access_token: bool
    has_refresh_token: bool
    is_fresh: bool

    def to_dict(self) -> dict:
        return {
            "store": self.store_name,
            "subject_key": self.subject_key,
            "user_id": self.user_id,
            "google_sub": self.provider_subject,
            "email": self.email,
            "scope": self.scope,
            "expires_at": self.expires_at,
            "seconds_remaining": self.seconds_remaining,
            "has_access_token": self.has_access_token,
            "has_refresh_token": self.has_refresh_token,
            "is_fresh": self.is_fresh,
        }


@dataclass
class RefreshOutcome:
    """Per-credential result of a bulk refresh."""

    store_name: str
    subject_key: str
    status: str  # success / error
    expires_at: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    email: Optional[str] = None
    provider_subject: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "store": self.store_name,
            "subject_key": self.subject_key,
            "email": self.email,
            "google_sub": self.provider_subject,
            "status": self.status,
            "expires_at": self.expires_at,
            "error": self.error_kind,
            "details": self.error_message,
        }
