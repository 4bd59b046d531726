"""Shared fixtures for attendmint tests."""

from __future__ import annotations

import pytest

from attendmint.engine import TicketingEngine
from attendmint.interfaces.identity import StaticIdentity
from attendmint.models.config import EngineConfig, MintMode
from attendmint.services.minting import MintingOrchestrator
from attendmint.storage.sqlite import SQLiteStore

from tests.factories import ORGANIZER
from tests.mocks import MockContentStorage, MockMinter


def make_test_config(**overrides) -> EngineConfig:
    """Build an EngineConfig suitable for testing."""
    defaults = dict(
        mint_mode=MintMode.ON_DEMAND,
        db_path=":memory:",
        ipfs_api_url="http://127.0.0.1:5001",
        upload_timeout=2.0,
        mint_timeout=2.0,
        claim_lease=300,
        max_concurrent_mints=3,
        mint_worker_interval=3600,
        external_url_base="https://tickets.example.com",
    )
    defaults.update(overrides)
    return EngineConfig(**defaults)


@pytest.fixture
def test_config():
    """Default EngineConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStore."""
    s = SQLiteStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_storage():
    return MockContentStorage(succeed=True)


@pytest.fixture
def mock_minter():
    return MockMinter()


@pytest.fixture
def identity():
    """Acting user; tests switch users by assigning ``identity.user_id``."""
    return StaticIdentity(ORGANIZER)


@pytest.fixture
def orchestrator(store, mock_storage, mock_minter):
    """MintingOrchestrator over the in-memory store and mocks."""
    return MintingOrchestrator(
        store,
        mock_storage,
        mock_minter,
        external_url_base="https://tickets.example.com",
        upload_timeout=2.0,
        mint_timeout=2.0,
    )


@pytest.fixture
async def engine(test_config, store, mock_storage, mock_minter, identity):
    """Fully wired TicketingEngine with mocked capabilities."""
    return TicketingEngine(
        test_config,
        identity,
        store=store,
        storage=mock_storage,
        minter=mock_minter,
    )
