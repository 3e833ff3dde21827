# src/token_lifecycle/store_resolver.py

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from .error_handler import AccountNotFoundError, CredentialNotFoundError
from .stores.base import CredentialStore
from .stores.cookie_store import CookieCredentialStore, CookieJar
from .stores.sql_store import (
    AccountTableStore,
    GoogleTokensStore,
    LegacyGoogleAccountStore,
)

lib_logger = logging.getLogger("token_lifecycle")


@dataclass(frozen=True)
class AccountIdHint:
    """A specific linked account, optionally scoped to the calling user."""

    account_id: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class SubjectHint:
    """A user's credential for one Google identity (Google `sub`)."""

    user_id: str
    provider_subject: str


@dataclass(frozen=True)
class UserHint:
    """Whichever Google credential the user touched most recently."""

    user_id: str


@dataclass(frozen=True)
class AmbientHint:
    """The tokens carried by the current browser session's cookies."""

    cookies: CookieJar = field(compare=False, repr=False)


AccountHint = Union[AccountIdHint, SubjectHint, UserHint, AmbientHint]

# Most specific first
_HINT_PRIORITY = {AccountIdHint: 0, SubjectHint: 1, UserHint: 2, AmbientHint: 3}


@dataclass(frozen=True)
class StoreTarget:
    """One (store, subject key) location to probe for a credential."""

    store: CredentialStore
    subject_key: str

    @property
    def flight_key(self):
        return (self.store.name, self.subject_key)

    def __str__(self) -> str:
        return f"{self.store.name}:{self.subject_key}"


class StoreResolver:
    """
    Turns caller identity hints into the ordered list of locations to read.

    Rules, in priority order:
        1. AccountIdHint -> the Account row (or, if enabled, the legacy
           GoogleAccount row). When a user id is given the row must belong to
           that user; a mismatch is AccountNotFoundError and never falls through
           to another location.
        2. SubjectHint -> the GoogleTokens row for (user, sub).
        3. UserHint -> the user's most recently updated GoogleTokens row.
        4. AmbientHint -> the session cookies.

    Several hints may be passed together; their locations are concatenated in
    priority order so the manager can fall back when a location is empty.
    """

    def __init__(
        self,
        account_store: AccountTableStore,
        tokens_store: GoogleTokensStore,
        legacy_store: Optional[LegacyGoogleAccountStore] = None,
        secure_cookies: bool = False,
    ):
        self.account_store = account_store
        self.tokens_store = tokens_store
        self.legacy_store = legacy_store
        self.secure_cookies = secure_cookies

    async def resolve(
        self, hint: Union[AccountHint, Sequence[AccountHint]]
    ) -> List[StoreTarget]:
        hints = list(hint) if isinstance(hint, (list, tuple)) else [hint]
        if not hints:
            raise AccountNotFoundError(message="No identity hint supplied")

        targets: List[StoreTarget] = []
        for item in sorted(hints, key=self._priority):
            target = await self._resolve_one(item)
            if target is not None and target not in targets:
                targets.append(target)

        if not targets:
            raise AccountNotFoundError()
        return targets

    @staticmethod
    def _priority(hint: AccountHint) -> int:
        try:
            return _HINT_PRIORITY[type(hint)]
        except KeyError:
            raise TypeError(f"Unsupported account hint: {hint!r}") from None

    async def _resolve_one(self, hint: AccountHint) -> Optional[StoreTarget]:
        if isinstance(hint, AccountIdHint):
            return await self._resolve_account(hint)

        if isinstance(hint, SubjectHint):
            return StoreTarget(
                self.tokens_store,
                GoogleTokensStore.make_subject_key(hint.user_id, hint.provider_subject),
            )

        if isinstance(hint, UserHint):
            subject_key = await self.tokens_store.most_recent_key_for_user(hint.user_id)
            if subject_key is None:
                lib_logger.debug(f"No GoogleTokens rows for user '{hint.user_id}'")
                return None
            return StoreTarget(self.tokens_store, subject_key)

        if isinstance(hint, AmbientHint):
            store = CookieCredentialStore(hint.cookies, secure=self.secure_cookies)
            subject_key = store.current_subject_key()
            if subject_key is None:
                lib_logger.debug("No Google token cookies on this session")
                return None
            return StoreTarget(store, subject_key)

        raise TypeError(f"Unsupported account hint: {hint!r}")

    async def _resolve_account(self, hint: AccountIdHint) -> StoreTarget:
        candidates = [self.account_store]
        if self.legacy_store is not None:
            candidates.append(self.legacy_store)

        for store in candidates:
            try:
                owner = await store.lookup_owner(hint.account_id)
            except CredentialNotFoundError:
                continue

            if hint.user_id is not None and owner != hint.user_id:
                # Same answer as a missing row so account ids cannot be probed
                lib_logger.warning(
                    f"Ownership check failed for account '{hint.account_id}' in {store.name}"
                )
                raise AccountNotFoundError(hint.account_id)
            return StoreTarget(store, hint.account_id)

        raise AccountNotFoundError(hint.account_id)
