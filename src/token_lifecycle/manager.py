# src/token_lifecycle/manager.py

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple, Union

import httpx

from .credential import (
    Credential,
    RefreshOutcome,
    TokenBundle,
    TokenInfo,
)
from .error_handler import (
    CredentialNotFoundError,
    LifecycleError,
    NoRefreshTokenError,
    PersistenceError,
)
from .failure_logger import log_lifecycle_failure
from .refresh_coordinator import RefreshCoordinator
from .settings import DEFAULT_FRESHNESS_BUFFER_SECONDS, LifecycleSettings
from .store_resolver import AccountHint, StoreResolver, StoreTarget
from .stores.base import CredentialStore
from .stores.sql_store import (
    AccountTableStore,
    GoogleTokensStore,
    LegacyGoogleAccountStore,
)
from .token_refresher import GoogleTokenRefresher

lib_logger = logging.getLogger("token_lifecycle")

HintArg = Union[AccountHint, Sequence[AccountHint]]


class TokenLifecycleManager:
    """
    Hands out currently valid Google access tokens.

    One call walks: resolve the hint to store locations, read the first
    credential found, return it if fresh, otherwise refresh it (once per key
    in this process) and write the result back to the same store.

    Only the write after a successful refresh has side effects, so a caller
    may retry any failed call from scratch. The manager itself never retries.
    """

    def __init__(
        self,
        resolver: StoreResolver,
        refresher: GoogleTokenRefresher,
        coordinator: Optional[RefreshCoordinator] = None,
        freshness_buffer_seconds: int = DEFAULT_FRESHNESS_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.refresher = refresher
        self.coordinator = coordinator or RefreshCoordinator()
        self.freshness_buffer_seconds = freshness_buffer_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: LifecycleSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> "TokenLifecycleManager":
        """Wire the table stores, resolver and refresher described by settings."""
        resolver = StoreResolver(
            account_store=AccountTableStore(settings.db_path, clock=clock),
            tokens_store=GoogleTokensStore(settings.db_path, clock=clock),
            legacy_store=(
                LegacyGoogleAccountStore(settings.db_path, clock=clock)
                if settings.enable_legacy_accounts
                else None
            ),
            secure_cookies=settings.secure_cookies,
        )
        refresher = GoogleTokenRefresher(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            token_uri=settings.token_uri,
            timeout=settings.refresh_timeout,
            http_client=http_client,
            clock=clock,
        )
        return cls(
            resolver,
            refresher,
            freshness_buffer_seconds=settings.freshness_buffer_seconds,
            clock=clock,
        )

    # --- freshness ----------------------------------------------------------

    def is_fresh(self, credential: Credential, now: Optional[float] = None) -> bool:
        """True if the stored access token can be handed out without a refresh."""
        now = self._clock() if now is None else now
        if not credential.access_token or credential.expires_at is None:
            return False
        return credential.expires_at > now + self.freshness_buffer_seconds

    # --- public API ---------------------------------------------------------

    async def get_access_token(self, hint: HintArg) -> str:
        """
        Return a valid access token for the credential identified by hint.

        Raises:
            AccountNotFoundError: Nothing resolved, or the account belongs to another user
            CredentialNotFoundError: No credential stored at any resolved location
            NoRefreshTokenError: Token stale and no refresh token to renew it
            RefreshRejectedError: Google refused the refresh token
            RefreshTransportError: Token endpoint unreachable; retry with backoff
            PersistenceError: Refresh succeeded but could not be stored; the
                token is on the exception and is usable for this request
        """
        bundle = await self.get_credentials(hint)
        return bundle.access_token

    async def get_credentials(self, hint: HintArg) -> TokenBundle:
        """Like get_access_token, but also report the refresh token, expiry and origin."""
        target, credential = await self._read_first(hint)

        if self.is_fresh(credential):
            return self._bundle(target, credential)

        if not credential.refresh_token:
            error = NoRefreshTokenError(target.subject_key)
            log_lifecycle_failure(error, target.store.name, target.subject_key)
            raise error

        return await self._refresh_once(target, credential, force=False)

    async def force_refresh(self, hint: HintArg) -> TokenBundle:
        """Refresh the resolved credential regardless of its expiry."""
        target, credential = await self._read_first(hint)
        if not credential.refresh_token:
            error = NoRefreshTokenError(target.subject_key)
            log_lifecycle_failure(error, target.store.name, target.subject_key)
            raise error
        return await self._refresh_once(target, credential, force=True)

    async def describe(self, hint: HintArg) -> TokenInfo:
        """Redacted status of the resolved credential, without any network call."""
        target, credential = await self._read_first(hint)
        now = self._clock()
        return TokenInfo(
            store_name=target.store.name,
            subject_key=target.subject_key,
            user_id=credential.user_id,
            provider_subject=credential.provider_subject,
            email=credential.email,
            scope=credential.scope,
            expires_at=credential.expires_at,
            seconds_remaining=credential.seconds_remaining(now),
            has_access_token=bool(credential.access_token),
            has_refresh_token=credential.has_refresh_token,
            is_fresh=self.is_fresh(credential, now),
        )

    async def refresh_all(self, store: CredentialStore) -> List[RefreshOutcome]:
        """
        Force-refresh every credential in store that has a refresh token.

        Runs sequentially to stay clear of the token endpoint's rate limits and
        never raises for an individual credential; each gets an outcome.
        """
        credentials = await store.list_refreshable()
        lib_logger.info(f"Refreshing {len(credentials)} credential(s) in {store.name}")

        outcomes: List[RefreshOutcome] = []
        for credential in credentials:
            target = StoreTarget(store, credential.subject_key)
            try:
                bundle = await self._refresh_once(target, credential, force=True)
            except LifecycleError as e:
                outcomes.append(
                    RefreshOutcome(
                        store.name,
                        credential.subject_key,
                        "error",
                        # A persistence failure still produced a token
                        expires_at=getattr(e, "expires_at", None),
                        error_kind=e.kind,
                        error_message=e.message,
                        email=credential.email,
                        provider_subject=credential.provider_subject,
                    )
                )
            else:
                outcomes.append(
                    RefreshOutcome(
                        store.name,
                        credential.subject_key,
                        "success",
                        expires_at=bundle.expires_at,
                        email=credential.email,
                        provider_subject=credential.provider_subject,
                    )
                )

        succeeded = sum(1 for o in outcomes if o.status == "success")
        lib_logger.info(
            f"Bulk refresh of {store.name} finished: {succeeded}/{len(outcomes)} succeeded"
        )
        return outcomes

    # --- internals ----------------------------------------------------------

    async def _read_first(self, hint: HintArg) -> Tuple[StoreTarget, Credential]:
        targets = await self.resolver.resolve(hint)
        for target in targets:
            try:
                credential = await target.store.read(target.subject_key)
            except CredentialNotFoundError:
                lib_logger.debug(f"No credential at {target}; trying next location")
                continue
            return target, credential

        error = CredentialNotFoundError(
            targets[-1].subject_key,
            f"No stored Google credential at {', '.join(str(t) for t in targets)}",
        )
        log_lifecycle_failure(error, targets[-1].store.name, targets[-1].subject_key)
        raise error

    def _bundle(
        self, target: StoreTarget, credential: Credential, refreshed: bool = False
    ) -> TokenBundle:
        return TokenBundle(
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
            store_name=target.store.name,
            subject_key=target.subject_key,
            refreshed=refreshed,
        )

    async def _refresh_once(
        self, target: StoreTarget, credential: Credential, force: bool
    ) -> TokenBundle:
        # Persist inside the flight so every waiter sees the stored result
        return await self.coordinator.do_once(
            target.flight_key,
            lambda: self._refresh_and_persist(target, credential, force),
        )

    async def _refresh_and_persist(
        self, target: StoreTarget, credential: Credential, force: bool
    ) -> TokenBundle:
        store, subject_key = target.store, target.subject_key

        if not force:
            # Another flight may have finished between our read and now
            try:
                current = await store.read(subject_key)
            except CredentialNotFoundError:
                current = credential
            if self.is_fresh(current):
                lib_logger.debug(f"{target} was refreshed concurrently; reusing it")
                return self._bundle(target, current)
            if current.refresh_token:
                credential = current

        lib_logger.debug(f"Refreshing Google access token for {target} (forced: {force})")
        try:
            grant = await self.refresher.refresh(credential.refresh_token)
        except LifecycleError as e:
            log_lifecycle_failure(e, store.name, subject_key, credential.refresh_token)
            raise

        update = grant.to_update()
        try:
            await store.write(subject_key, update)
        except Exception as e:
            error = PersistenceError(
                access_token=grant.access_token,
                expires_at=grant.expires_at,
                store_name=store.name,
                subject_key=subject_key,
                cause=e,
            )
            log_lifecycle_failure(error, store.name, subject_key, credential.refresh_token)
            raise error from e

        lib_logger.info(
            f"Refreshed Google access token for {target}; valid for {grant.expires_in}s"
        )
        return TokenBundle(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=grant.expires_at,
            store_name=store.name,
            subject_key=subject_key,
            refreshed=True,
        )
