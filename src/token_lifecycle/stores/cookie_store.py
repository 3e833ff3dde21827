# src/token_lifecycle/stores/cookie_store.py
"""
Cookie-backed credential store.

Tokens obtained during the admin sign-in flow are kept in three httpOnly
cookies on the browser session. Reads come from the incoming request; writes
are set on the outgoing response of the same exchange.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..credential import Credential, CredentialUpdate
from ..error_handler import CredentialNotFoundError
from .base import CredentialStore

lib_logger = logging.getLogger("token_lifecycle")

ACCESS_TOKEN_COOKIE = "google_access_token"
REFRESH_TOKEN_COOKIE = "google_refresh_token"
TOKEN_EXPIRY_COOKIE = "google_token_expiry"

ACCESS_TOKEN_MAX_AGE = 60 * 60 * 24 * 7  # 7 days
REFRESH_TOKEN_MAX_AGE = 60 * 60 * 24 * 30  # 30 days

COOKIE_SESSION_PREFIX = "cookie-session"


class CookieJar(ABC):
    """The cookie operations available on the current HTTP exchange."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(
        self,
        name: str,
        value: str,
        *,
        httponly: bool,
        secure: bool,
        samesite: str,
        max_age: int,
        path: str,
    ) -> None:
        pass


class StarletteCookieJar(CookieJar):
    """
    CookieJar over a Starlette/FastAPI request and the response being built for it.

    Values set during the exchange shadow the request's cookies, so a read that
    follows a write sees the new token.
    """

    def __init__(self, request, response=None):
        self._request = request
        self._response = response
        self._pending: Dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        if name in self._pending:
            return self._pending[name]
        return self._request.cookies.get(name)

    def set(self, name, value, *, httponly, secure, samesite, max_age, path) -> None:
        if self._response is None:
            raise RuntimeError(
                f"Cannot set cookie '{name}': no response bound to this request"
            )
        self._response.set_cookie(
            key=name,
            value=value,
            max_age=max_age,
            path=path,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        )
        self._pending[name] = value


def _parse_expiry(raw: Optional[str]) -> Optional[int]:
    """Parse the expiry cookie; older sign-in paths stored milliseconds."""
    if not raw:
        return None
    try:
        value = int(float(raw))
    except (ValueError, OverflowError):
        lib_logger.warning(f"Ignoring malformed {TOKEN_EXPIRY_COOKIE} cookie value")
        return None
    if value > 10**11:
        value //= 1000
    return value


class CookieCredentialStore(CredentialStore):
    """
    Credential held in the browser session cookies.

    The subject key identifies the session by a digest of its refresh token
    (or access token when no refresh token is present), so that two browser
    sessions never share a single-flight refresh.
    """

    NAME = "cookies"

    def __init__(self, jar: CookieJar, secure: bool = False):
        self._jar = jar
        self._secure = secure

    def current_subject_key(self) -> Optional[str]:
        anchor = self._jar.get(REFRESH_TOKEN_COOKIE) or self._jar.get(ACCESS_TOKEN_COOKIE)
        if not anchor:
            return None
        digest = hashlib.sha256(anchor.encode("utf-8")).hexdigest()[:16]
        return f"{COOKIE_SESSION_PREFIX}:{digest}"

    async def read(self, subject_key: str) -> Credential:
        access_token = self._jar.get(ACCESS_TOKEN_COOKIE)
        refresh_token = self._jar.get(REFRESH_TOKEN_COOKIE)
        if not access_token and not refresh_token:
            raise CredentialNotFoundError(subject_key, "No Google token cookies on this session")
        return Credential(
            subject_key=subject_key,
            access_token=access_token or None,
            refresh_token=refresh_token or None,
            expires_at=_parse_expiry(self._jar.get(TOKEN_EXPIRY_COOKIE)),
        )

    def _set(self, name: str, value: str, max_age: int) -> None:
        self._jar.set(
            name,
            value,
            httponly=True,
            secure=self._secure,
            samesite="lax",
            max_age=max_age,
            path="/",
        )

    async def write(self, subject_key: str, update: CredentialUpdate) -> None:
        if update.access_token is not None:
            self._set(ACCESS_TOKEN_COOKIE, update.access_token, ACCESS_TOKEN_MAX_AGE)
        if update.expires_at is not None:
            self._set(TOKEN_EXPIRY_COOKIE, str(int(update.expires_at)), ACCESS_TOKEN_MAX_AGE)
        if update.refresh_token is not None:
            self._set(REFRESH_TOKEN_COOKIE, update.refresh_token, REFRESH_TOKEN_MAX_AGE)
        # Scope is not kept in cookies
