# src/token_lifecycle/stores/__init__.py

from .base import CredentialStore
from .cookie_store import CookieCredentialStore, CookieJar, StarletteCookieJar
from .sql_store import (
    AccountTableStore,
    GoogleTokensStore,
    LegacyGoogleAccountStore,
    SqliteCredentialStore,
)

__all__ = [
    "CredentialStore",
    "CookieCredentialStore",
    "CookieJar",
    "StarletteCookieJar",
    "SqliteCredentialStore",
    "AccountTableStore",
    "GoogleTokensStore",
    "LegacyGoogleAccountStore",
]
