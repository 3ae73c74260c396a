"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from purger.staging import SqliteStagingRepository
from tests.fakes import FakeTableClient


@pytest.fixture
def fake_table_client() -> FakeTableClient:
    """In-memory remote table."""
    return FakeTableClient()


@pytest.fixture
def sqlite_staging(tmp_path: Path) -> SqliteStagingRepository:
    """SQLite staging repository in a temporary directory."""
    return SqliteStagingRepository(tmp_path / "databases" / "staging.db", "purge_acct_SystemAlerts")


@pytest.fixture
def recent_timestamp() -> datetime:
    """A timestamp that is never older than the cutoff."""
    return datetime.now(timezone.utc) + timedelta(days=1)
