"""
Global pytest configuration and fixtures for the ledger-sync test suite.
"""

import os

# Set test environment variables before settings are loaded
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only-32-chars"
os.environ["QUICKBOOKS_CLIENT_ID"] = "qbo-client-id"
os.environ["QUICKBOOKS_CLIENT_SECRET"] = "qbo-client-secret"
os.environ["QUICKBOOKS_REDIRECT_URI"] = "http://localhost:8001/callback/quickbooks"
os.environ["XERO_CLIENT_ID"] = "xero-client-id"
os.environ["XERO_CLIENT_SECRET"] = "xero-client-secret"
os.environ["XERO_REDIRECT_URI"] = "http://localhost:8001/callback/xero"

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from ledger_sync.core.database import (  # noqa: E402
    create_engine,
    create_session_factory,
    init_models,
)
from ledger_sync.domains.external_accounting.auth.credential_store import (  # noqa: E402
    CredentialStore,
)
from ledger_sync.domains.ledger.store import LocalStore  # noqa: E402

# Import fixtures from fixture modules
from tests.fixtures.ledger_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.quickbooks_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.xero_fixtures import *  # noqa: F403, F401, E402


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> LocalStore:
    return LocalStore(session_factory)


@pytest.fixture
def credential_store(session_factory: async_sessionmaker[AsyncSession]) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list:
    """Record retry back-off delays instead of sleeping."""
    delays: list = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(
        "ledger_sync.domains.external_accounting.base.data_service.asyncio.sleep",
        fake_sleep,
    )
    return delays
