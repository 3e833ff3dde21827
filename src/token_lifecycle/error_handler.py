import logging
from typing import Optional

lib_logger = logging.getLogger("token_lifecycle")

RECONNECT_MESSAGE = "Google account disconnected. Please reconnect your Google account."


def mask_credential(credential: Optional[str]) -> str:
    """
    Mask a token or key for safe display in logs and error messages.

    Shows the last 6 characters (e.g., "...xyz123"); short values are fully hidden.
    """
    if not credential:
        return "<none>"
    if len(credential) > 12:
        return f"...{credential[-6:]}"
    return "***"


class LifecycleError(Exception):
    """
    Base class for every failure surfaced by the token lifecycle manager.

    Attributes:
        kind: Stable machine-readable identifier of the failure
        retryable: True if the caller may retry the same call with backoff
        reauth_required: True if the user must re-run the Google consent flow
        http_status: Status a route handler should answer with
    """

    kind: str = "lifecycle_error"
    retryable: bool = False
    reauth_required: bool = False
    http_status: int = 500

    def __init__(self, message: str = ""):
        self.message = message or self.kind
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "reauth_required": self.reauth_required,
        }
        if self.reauth_required:
            payload["reconnect_message"] = RECONNECT_MESSAGE
        return payload


class AccountNotFoundError(LifecycleError):
    """Resolution failed, or the account exists but belongs to another user."""

    kind = "account_not_found"
    http_status = 404

    def __init__(self, account_id: Optional[str] = None, message: str = ""):
        self.account_id = account_id
        super().__init__(
            message
            or (
                f"Google account '{account_id}' not found"
                if account_id
                else "No Google account could be resolved for this request"
            )
        )


class CredentialNotFoundError(LifecycleError):
    """No stored credential exists at the resolved location(s)."""

    kind = "credential_not_found"
    reauth_required = True
    http_status = 404

    def __init__(self, subject_key: Optional[str] = None, message: str = ""):
        self.subject_key = subject_key
        super().__init__(message or "No stored Google credential found")


class NoRefreshTokenError(LifecycleError):
    """The access token is stale or missing and there is no refresh token to renew it."""

    kind = "no_refresh_token"
    reauth_required = True
    http_status = 409

    def __init__(self, subject_key: Optional[str] = None, message: str = ""):
        self.subject_key = subject_key
        super().__init__(
            message or "Access token expired and no refresh token is available"
        )


class RefreshRejectedError(LifecycleError):
    """
    Google explicitly refused the refresh token (revoked, expired, wrong client).

    The refresh token should be treated as permanently unusable.

    Attributes:
        provider_code: The `error` field of Google's response (e.g. "invalid_grant")
        description: The optional `error_description` field
        status_code: HTTP status returned by the token endpoint
    """

    kind = "refresh_rejected"
    reauth_required = True
    http_status = 409

    def __init__(
        self,
        provider_code: str,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.provider_code = provider_code
        self.description = description
        self.status_code = status_code
        detail = f": {description}" if description else ""
        super().__init__(f"Refresh token rejected by Google ({provider_code}){detail}")

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["provider_code"] = self.provider_code
        return payload


class RefreshTransportError(LifecycleError):
    """Network failure, timeout or unparseable response from the token endpoint."""

    kind = "refresh_transport"
    retryable = True
    http_status = 503

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message or "Could not reach the Google token endpoint")


class PersistenceError(LifecycleError):
    """
    The refreshed token could not be written back to its store.

    The access token is still valid and is carried on the exception so the
    current request can proceed with it; the next call will refresh again.
    """

    kind = "persistence"
    http_status = 500

    def __init__(
        self,
        access_token: str,
        expires_at: Optional[int] = None,
        store_name: Optional[str] = None,
        subject_key: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.access_token = access_token
        self.expires_at = expires_at
        self.store_name = store_name
        self.subject_key = subject_key
        self.cause = cause
        super().__init__(
            f"Refreshed token could not be persisted to '{store_name}': {cause}"
        )

    def to_dict(self) -> dict:
        # The cause may carry database details; keep them out of responses.
        payload = super().to_dict()
        payload["message"] = "Refreshed token could not be persisted"
        return payload


class StoreUnavailableError(LifecycleError):
    """A credential store could not be read (database locked, unreachable, corrupt)."""

    kind = "store_unavailable"
    retryable = True
    http_status = 503

    def __init__(self, store_name: str, cause: Optional[BaseException] = None):
        self.store_name = store_name
        self.cause = cause
        super().__init__(f"Credential store '{store_name}' unavailable: {cause}")


def is_reauth_required(error: BaseException) -> bool:
    """True if the error means the user has to reconnect their Google account."""
    return isinstance(error, LifecycleError) and error.reauth_required


def is_retryable(error: BaseException) -> bool:
    """True if the caller may retry the same call with its usual backoff."""
    return isinstance(error, LifecycleError) and error.retryable
