from typing import TYPE_CHECKING

from .credential import Credential, CredentialUpdate, TokenBundle, TokenGrant, TokenInfo
from .error_handler import (
    AccountNotFoundError,
    CredentialNotFoundError,
    LifecycleError,
    NoRefreshTokenError,
    PersistenceError,
    RefreshRejectedError,
    RefreshTransportError,
    StoreUnavailableError,
)
from .manager import TokenLifecycleManager
from .refresh_coordinator import RefreshCoordinator
from .settings import LifecycleSettings
from .store_resolver import (
    AccountHint,
    AccountIdHint,
    AmbientHint,
    StoreResolver,
    SubjectHint,
    UserHint,
)
from .token_refresher import GoogleTokenRefresher

# For type checkers, import the sync helper statically
# At runtime, it's lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .sync import sync_account_tokens

__all__ = [
    "TokenLifecycleManager",
    "LifecycleSettings",
    "StoreResolver",
    "RefreshCoordinator",
    "GoogleTokenRefresher",
    "AccountHint",
    "AccountIdHint",
    "SubjectHint",
    "UserHint",
    "AmbientHint",
    "Credential",
    "CredentialUpdate",
    "TokenBundle",
    "TokenGrant",
    "TokenInfo",
    "LifecycleError",
    "AccountNotFoundError",
    "CredentialNotFoundError",
    "NoRefreshTokenError",
    "RefreshRejectedError",
    "RefreshTransportError",
    "PersistenceError",
    "StoreUnavailableError",
    "sync_account_tokens",
]


def __getattr__(name):
    """Lazy-load the account sync helper."""
    if name == "sync_account_tokens":
        from .sync import sync_account_tokens

        return sync_account_tokens
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
