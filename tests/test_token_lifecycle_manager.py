"""
Tests for the token lifecycle manager: freshness, refresh, persistence and
single-flight behaviour across the credential stores.
"""
import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from token_lifecycle import (
    AccountIdHint,
    AccountNotFoundError,
    AmbientHint,
    CredentialNotFoundError,
    NoRefreshTokenError,
    PersistenceError,
    RefreshRejectedError,
    RefreshTransportError,
    SubjectHint,
    TokenGrant,
    UserHint,
)
from token_lifecycle.stores.cookie_store import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    TOKEN_EXPIRY_COOKIE,
)
from tests.fixtures.credential_rows import (
    NOW,
    DictCookieJar,
    fetch_row,
    insert_account,
    insert_google_tokens,
    insert_legacy_account,
    token_response,
)


class SlowRefresher:
    """Refresher stub that blocks until released and counts its calls."""

    def __init__(self, clock, access_token="new", expires_in=3600, refresh_token=None):
        self.clock = clock
        self.calls = []
        self.release = asyncio.Event()
        self.access_token = access_token
        self.expires_in = expires_in
        self.refresh_token = refresh_token

    async def refresh(self, refresh_token):
        self.calls.append(refresh_token)
        await self.release.wait()
        return TokenGrant(
            access_token=self.access_token,
            expires_in=self.expires_in,
            obtained_at=self.clock(),
            refresh_token=self.refresh_token,
        )


def account_row(db_path, account_id="acc-1"):
    return fetch_row(db_path, "Account", '"id" = ?', (account_id,))


class TestFreshTokens:

    @pytest.mark.asyncio
    async def test_fresh_token_returned_without_network(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", expires_at=NOW + 3600)

        token = await manager.get_access_token(AccountIdHint("acc-1", user_id="u1"))

        assert token == "A"
        assert token_endpoint.call_count == 0

    @pytest.mark.asyncio
    async def test_token_inside_buffer_is_refreshed(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", expires_at=NOW + 30)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        token = await manager.get_access_token(AccountIdHint("acc-1"))

        assert token == "B"
        assert token_endpoint.call_count == 1

    @pytest.mark.asyncio
    async def test_expiry_exactly_at_buffer_is_stale(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", expires_at=NOW + 60)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        assert await manager.get_access_token(AccountIdHint("acc-1")) == "B"

    @pytest.mark.asyncio
    async def test_unknown_expiry_is_refreshed(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", expires_at=None)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        assert await manager.get_access_token(AccountIdHint("acc-1")) == "B"


class TestRefreshAndPersist:

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_persisted(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="old", refresh_token="rt1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B", expires_in=3599))

        bundle = await manager.get_credentials(AccountIdHint("acc-1", user_id="u1"))

        assert bundle.access_token == "B"
        assert bundle.expires_at == NOW + 3599
        assert bundle.refresh_token == "rt1"
        assert bundle.refreshed
        assert bundle.store_name == "account"
        row = account_row(db_path)
        assert row["access_token"] == "B"
        assert row["expires_at"] == NOW + 3599
        assert row["refresh_token"] == "rt1"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", refresh_token="rt1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(
            200, json=token_response("B", refresh_token="rt2")
        )

        bundle = await manager.get_credentials(AccountIdHint("acc-1"))

        assert bundle.refresh_token == "rt2"
        assert account_row(db_path)["refresh_token"] == "rt2"

    @pytest.mark.asyncio
    async def test_next_call_uses_persisted_token(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        await manager.get_access_token(AccountIdHint("acc-1"))
        token = await manager.get_access_token(AccountIdHint("acc-1"))

        assert token == "B"
        assert token_endpoint.call_count == 1

    @pytest.mark.asyncio
    async def test_google_tokens_row_refreshed_in_place(self, manager, db_path, token_endpoint, clock):
        insert_google_tokens(db_path, "u1", "111", expires_at=NOW - 10, updated_at=NOW - 100)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        assert await manager.get_access_token(SubjectHint("u1", "111")) == "B"

        row = fetch_row(db_path, "GoogleTokens", '"google_sub" = ?', ("111",))
        assert row["access_token"] == "B"
        assert row["updated_at"] == clock.now

    @pytest.mark.asyncio
    async def test_legacy_account_refreshed(self, manager, db_path, token_endpoint):
        insert_legacy_account(db_path, "g-1", "a@example.com", user_id="u1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        assert await manager.get_access_token(AccountIdHint("g-1", user_id="u1")) == "B"

        row = fetch_row(db_path, "GoogleAccount", '"id" = ?', ("g-1",))
        assert row["accessToken"] == "B"

    @pytest.mark.asyncio
    async def test_cookie_session_refresh_sets_cookies(self, manager, token_endpoint):
        jar = DictCookieJar({
            ACCESS_TOKEN_COOKIE: "old",
            REFRESH_TOKEN_COOKIE: "rt-cookie",
            TOKEN_EXPIRY_COOKIE: str(NOW - 10),
        })
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        token = await manager.get_access_token([UserHint("u1"), AmbientHint(jar)])

        assert token == "B"
        assert jar.cookies[ACCESS_TOKEN_COOKIE] == "B"
        assert jar.cookies[TOKEN_EXPIRY_COOKIE] == str(NOW + 3600)
        assert jar.cookies[REFRESH_TOKEN_COOKIE] == "rt-cookie"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_expiry", ["inf", "1e400"])
    async def test_unparseable_cookie_expiry_is_refreshed(self, manager, token_endpoint, raw_expiry):
        jar = DictCookieJar({
            ACCESS_TOKEN_COOKIE: "A",
            REFRESH_TOKEN_COOKIE: "rt",
            TOKEN_EXPIRY_COOKIE: raw_expiry,
        })
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        token = await manager.get_access_token(AmbientHint(jar))

        assert token == "B"
        assert jar.cookies[TOKEN_EXPIRY_COOKIE] == str(NOW + 3600)


class TestFailures:

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", refresh_token=None, expires_at=NOW - 10)

        with pytest.raises(NoRefreshTokenError) as excinfo:
            await manager.get_access_token(AccountIdHint("acc-1"))

        assert excinfo.value.reauth_required
        assert token_endpoint.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_expiry_without_refresh_token(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", refresh_token=None, expires_at=None)

        with pytest.raises(NoRefreshTokenError):
            await manager.get_access_token(AccountIdHint("acc-1"))

    @pytest.mark.asyncio
    async def test_rejected_refresh_leaves_row_untouched(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="old", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(RefreshRejectedError) as excinfo:
            await manager.get_access_token(AccountIdHint("acc-1"))

        assert excinfo.value.reauth_required
        row = account_row(db_path)
        assert row["access_token"] == "old"
        assert row["refresh_token"] == "rt1"
        assert row["expires_at"] == NOW - 10

    @pytest.mark.asyncio
    async def test_transport_failure_is_retryable(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(503)

        with pytest.raises(RefreshTransportError) as excinfo:
            await manager.get_access_token(AccountIdHint("acc-1"))
        assert excinfo.value.retryable

    @pytest.mark.asyncio
    async def test_wrong_owner_makes_no_network_call(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u2", expires_at=NOW - 10)

        with pytest.raises(AccountNotFoundError):
            await manager.get_access_token(AccountIdHint("acc-1", user_id="u1"))
        assert token_endpoint.call_count == 0

    @pytest.mark.asyncio
    async def test_no_credential_anywhere(self, manager):
        with pytest.raises(CredentialNotFoundError):
            await manager.get_access_token(SubjectHint("u1", "111"))

    @pytest.mark.asyncio
    async def test_persistence_failure_carries_token(self, manager, db_path, token_endpoint, account_store):
        insert_account(db_path, "acc-1", "u1", access_token="old", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))
        account_store.write = AsyncMock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(PersistenceError) as excinfo:
            await manager.get_access_token(AccountIdHint("acc-1"))

        error = excinfo.value
        assert error.access_token == "B"
        assert error.expires_at == NOW + 3600
        assert not error.retryable
        assert "database is locked" not in error.to_dict()["message"]
        assert account_row(db_path)["access_token"] == "old"

    @pytest.mark.asyncio
    async def test_failures_written_to_failure_log(self, manager, db_path, token_endpoint, failure_log_dir):
        insert_account(db_path, "acc-1", "u1", refresh_token="refresh-token-value-123456", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(RefreshRejectedError):
            await manager.get_access_token(AccountIdHint("acc-1"))

        log_text = (failure_log_dir / "token_failures.log").read_text()
        assert "refresh_rejected" in log_text
        assert "refresh-token-value-123456" not in log_text
        assert "...123456" in log_text


class TestSingleFlightRefresh:

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, manager, db_path, clock):
        insert_account(db_path, "acc-1", "u1", expires_at=NOW - 10)
        manager.refresher = SlowRefresher(clock, access_token="B")

        tasks = [
            asyncio.create_task(manager.get_access_token(AccountIdHint("acc-1", user_id="u1")))
            for _ in range(10)
        ]
        while not manager.refresher.calls:
            await asyncio.sleep(0.01)
        # Give the remaining callers time to join the flight
        await asyncio.sleep(0.05)
        manager.refresher.release.set()
        tokens = await asyncio.gather(*tasks)

        assert tokens == ["B"] * 10
        assert manager.refresher.calls == ["rt1"]
        assert manager.coordinator.in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_failure_shared(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", expires_at=NOW - 10)
        token_endpoint.return_value = httpx.Response(400, json={"error": "invalid_grant"})

        results = await asyncio.gather(
            *[manager.get_access_token(AccountIdHint("acc-1")) for _ in range(5)],
            return_exceptions=True,
        )

        assert all(isinstance(r, RefreshRejectedError) for r in results)

    @pytest.mark.asyncio
    async def test_distinct_accounts_refresh_independently(self, manager, db_path, clock):
        insert_account(db_path, "acc-1", "u1", refresh_token="rt-a", expires_at=NOW - 10)
        insert_account(db_path, "acc-2", "u1", refresh_token="rt-b", expires_at=NOW - 10)
        manager.refresher = SlowRefresher(clock)
        manager.refresher.release.set()

        await asyncio.gather(
            manager.get_access_token(AccountIdHint("acc-1")),
            manager.get_access_token(AccountIdHint("acc-2")),
        )

        assert sorted(manager.refresher.calls) == ["rt-a", "rt-b"]

    @pytest.mark.asyncio
    async def test_late_caller_reuses_token_persisted_by_previous_flight(self, manager, db_path, clock):
        insert_account(db_path, "acc-1", "u1", expires_at=NOW - 10)
        manager.refresher = SlowRefresher(clock, access_token="B")
        manager.refresher.release.set()
        target, stale = await manager._read_first(AccountIdHint("acc-1"))

        await manager.get_access_token(AccountIdHint("acc-1"))
        # A caller holding the pre-refresh read re-checks inside its own flight
        bundle = await manager._refresh_once(target, stale, force=False)

        assert bundle.access_token == "B"
        assert not bundle.refreshed
        assert manager.refresher.calls == ["rt1"]


class TestForceRefreshAndDescribe:

    @pytest.mark.asyncio
    async def test_force_refresh_ignores_freshness(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="A", expires_at=NOW + 3600)
        token_endpoint.return_value = httpx.Response(200, json=token_response("B"))

        bundle = await manager.force_refresh(AccountIdHint("acc-1", user_id="u1"))

        assert bundle.access_token == "B"
        assert bundle.refreshed
        assert token_endpoint.call_count == 1

    @pytest.mark.asyncio
    async def test_force_refresh_without_refresh_token(self, manager, db_path):
        insert_account(db_path, "acc-1", "u1", refresh_token=None, expires_at=NOW + 3600)

        with pytest.raises(NoRefreshTokenError):
            await manager.force_refresh(AccountIdHint("acc-1"))

    @pytest.mark.asyncio
    async def test_describe_is_redacted(self, manager, db_path, token_endpoint):
        insert_account(db_path, "acc-1", "u1", access_token="secret-access", expires_at=NOW + 3600)

        info = (await manager.describe(AccountIdHint("acc-1", user_id="u1"))).to_dict()

        assert info["store"] == "account"
        assert info["is_fresh"] is True
        assert info["seconds_remaining"] == 3600
        assert info["has_refresh_token"] is True
        assert "secret-access" not in repr(info)
        assert "rt1" not in repr(info)
        assert token_endpoint.call_count == 0


class TestRefreshAll:

    @pytest.mark.asyncio
    async def test_per_row_outcomes(self, manager, db_path, account_store, token_endpoint):
        insert_account(db_path, "acc-1", "u1", refresh_token="rt-good", expires_at=NOW + 3600)
        insert_account(db_path, "acc-2", "u2", refresh_token="rt-bad")
        insert_account(db_path, "acc-3", "u3", refresh_token=None)

        def respond(request):
            if b"rt-bad" in request.content:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json=token_response("B"))

        token_endpoint.side_effect = respond

        outcomes = await manager.refresh_all(account_store)

        by_key = {o.subject_key: o for o in outcomes}
        assert set(by_key) == {"acc-1", "acc-2"}
        assert by_key["acc-1"].status == "success"
        assert by_key["acc-1"].expires_at == NOW + 3600
        assert by_key["acc-2"].status == "error"
        assert by_key["acc-2"].error_kind == "refresh_rejected"
        # Account rows carry no email; the Google subject is reported separately
        assert by_key["acc-1"].email is None
        assert by_key["acc-1"].to_dict()["google_sub"] == "sub-acc-1"
        assert account_row(db_path, "acc-1")["access_token"] == "B"
        assert account_row(db_path, "acc-2")["access_token"] == "old-access"
