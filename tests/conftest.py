"""
Pytest configuration and fixtures for the test suite.
"""
import os
import sys

import pytest
import respx

# Add src directory (and the project root, for tests.fixtures) to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from token_lifecycle import (  # noqa: E402
    GoogleTokenRefresher,
    RefreshCoordinator,
    StoreResolver,
    TokenLifecycleManager,
)
from token_lifecycle.failure_logger import configure_failure_logger  # noqa: E402
from token_lifecycle.settings import GOOGLE_TOKEN_URI  # noqa: E402
from token_lifecycle.stores import (  # noqa: E402
    AccountTableStore,
    GoogleTokensStore,
    LegacyGoogleAccountStore,
)
from tests.fixtures.credential_rows import FakeClock  # noqa: E402


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


@pytest.fixture(autouse=True)
def failure_log_dir(tmp_path):
    """Keep token_failures.log inside the test's temporary directory."""
    logs_dir = tmp_path / "logs"
    configure_failure_logger(logs_dir)
    yield logs_dir
    configure_failure_logger(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    """SQLite database with the Account, GoogleTokens and GoogleAccount tables."""
    path = str(tmp_path / "dashboard.db")
    for store_cls in (AccountTableStore, GoogleTokensStore, LegacyGoogleAccountStore):
        store_cls(path).ensure_schema()
    return path


@pytest.fixture
def account_store(db_path, clock):
    return AccountTableStore(db_path, clock=clock)


@pytest.fixture
def tokens_store(db_path, clock):
    return GoogleTokensStore(db_path, clock=clock)


@pytest.fixture
def legacy_store(db_path, clock):
    return LegacyGoogleAccountStore(db_path, clock=clock)


@pytest.fixture
def resolver(account_store, tokens_store, legacy_store):
    return StoreResolver(account_store, tokens_store, legacy_store)


@pytest.fixture
def refresher(clock):
    return GoogleTokenRefresher(
        client_id="client-id",
        client_secret="client-secret",
        timeout=5.0,
        clock=clock,
    )


@pytest.fixture
def manager(resolver, refresher, clock):
    return TokenLifecycleManager(
        resolver, refresher, coordinator=RefreshCoordinator(), clock=clock
    )


@pytest.fixture
def token_endpoint():
    """Mocked Google token endpoint; configure the returned route per test."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock.post(GOOGLE_TOKEN_URI)
