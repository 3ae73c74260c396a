"""Unit tests for the staging repositories."""

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from purger.exceptions import DatabaseError, StagingStoreError
from purger.models import RemoteRow, StagingRow
from purger.staging import PostgresStagingRepository, SqliteStagingRepository


class TestSqliteStagingRepository:
    """Tests against a real SQLite file."""

    @pytest.mark.asyncio
    async def test_missing_table_reads_as_empty(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        assert await sqlite_staging.exists() is False
        assert await sqlite_staging.count_rows() == 0
        assert await sqlite_staging.has_rows() is False
        assert await sqlite_staging.get_rows(10) == []

    @pytest.mark.asyncio
    async def test_insert_creates_table_and_counts(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.insert([StagingRow("A", "1"), StagingRow("B", "2")])

        assert await sqlite_staging.exists() is True
        assert await sqlite_staging.count_rows() == 2
        assert await sqlite_staging.has_rows() is True

    @pytest.mark.asyncio
    async def test_insert_accepts_remote_rows(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.insert([RemoteRow("A", "1", None)])

        assert await sqlite_staging.get_rows(10) == [StagingRow("A", "1")]

    @pytest.mark.asyncio
    async def test_get_rows_orders_by_partition_and_limits(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.insert(
            [StagingRow("C", "1"), StagingRow("A", "1"), StagingRow("B", "1"), StagingRow("A", "2")]
        )

        rows = await sqlite_staging.get_rows(3)

        assert len(rows) == 3
        assert [row.partition_key for row in rows] == ["A", "A", "B"]

    @pytest.mark.asyncio
    async def test_delete_removes_only_given_rows(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.insert([StagingRow("A", "1"), StagingRow("A", "2"), StagingRow("B", "1")])

        await sqlite_staging.delete([StagingRow("A", "1"), StagingRow("B", "1")])

        assert await sqlite_staging.get_rows(10) == [StagingRow("A", "2")]

    @pytest.mark.asyncio
    async def test_delete_on_missing_table_is_noop(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.delete([StagingRow("A", "1")])

        assert await sqlite_staging.exists() is False

    @pytest.mark.asyncio
    async def test_empty_insert_and_delete_do_not_touch_disk(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.insert([])
        await sqlite_staging.delete([])

        assert not sqlite_staging.db_path.exists()

    @pytest.mark.asyncio
    async def test_drop_table(self, sqlite_staging: SqliteStagingRepository) -> None:
        await sqlite_staging.insert([StagingRow("A", "1")])

        await sqlite_staging.drop_table()

        assert await sqlite_staging.exists() is False
        assert await sqlite_staging.count_rows() == 0

    @pytest.mark.asyncio
    async def test_drop_missing_table_is_not_an_error(
        self, sqlite_staging: SqliteStagingRepository
    ) -> None:
        await sqlite_staging.drop_table()
        await sqlite_staging.drop_table()

        assert await sqlite_staging.exists() is False

    @pytest.mark.asyncio
    async def test_targets_are_isolated(self, tmp_path: Path) -> None:
        """Two targets sharing one file use separate tables."""
        db_path = tmp_path / "staging.db"
        first = SqliteStagingRepository(db_path, "purge_acct_TableOne")
        second = SqliteStagingRepository(db_path, "purge_acct_TableTwo")

        await first.insert([StagingRow("A", "1")])
        await second.drop_table()

        assert await first.count_rows() == 1
        assert await second.count_rows() == 0

    @pytest.mark.asyncio
    async def test_staging_survives_new_repository_instance(self, tmp_path: Path) -> None:
        """Staged rows are durable across restarts."""
        db_path = tmp_path / "staging.db"
        await SqliteStagingRepository(db_path, "purge_acct_T1").insert([StagingRow("A", "1")])

        restarted = SqliteStagingRepository(db_path, "purge_acct_T1")

        assert await restarted.get_rows(10) == [StagingRow("A", "1")]

    def test_rejects_unsafe_table_name(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            SqliteStagingRepository(tmp_path / "staging.db", "x; DROP TABLE y")

    @pytest.mark.asyncio
    async def test_sqlite_errors_are_wrapped(self, tmp_path: Path) -> None:
        # A directory where the database file should be makes connect() fail.
        db_path = tmp_path / "staging.db"
        db_path.mkdir()
        repository = SqliteStagingRepository(db_path, "purge_acct_T1")

        with pytest.raises(StagingStoreError, match="Failed to insert into staging table") as exc_info:
            await repository.insert([StagingRow("A", "1")])

        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        assert exc_info.value.context["table"] == "purge_acct_T1"


def make_db_manager() -> MagicMock:
    """Database manager mock with a transaction() context yielding a connection mock."""
    manager = MagicMock()
    manager.fetchval = AsyncMock()
    manager.fetch = AsyncMock()
    manager.execute = AsyncMock()
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.executemany = AsyncMock()

    @asynccontextmanager
    async def transaction():
        yield conn

    manager.transaction = transaction
    manager.conn = conn
    return manager


class TestPostgresStagingRepository:
    """Tests for the PostgreSQL backend with a mocked database manager."""

    @pytest.mark.asyncio
    async def test_exists_uses_to_regclass(self) -> None:
        manager = make_db_manager()
        manager.fetchval.return_value = True
        repository = PostgresStagingRepository(manager, "purge_acct_T1", schema_name="staging")

        assert await repository.exists() is True
        manager.fetchval.assert_awaited_once_with(
            "SELECT to_regclass($1) IS NOT NULL", '"staging"."purge_acct_T1"'
        )

    @pytest.mark.asyncio
    async def test_count_rows_missing_table(self) -> None:
        manager = make_db_manager()
        manager.fetchval.return_value = False
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        assert await repository.count_rows() == 0
        assert manager.fetchval.await_count == 1

    @pytest.mark.asyncio
    async def test_count_rows(self) -> None:
        manager = make_db_manager()
        manager.fetchval.side_effect = [True, 42]
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        assert await repository.count_rows() == 42
        assert await_args_contains(manager.fetchval, 'SELECT COUNT(1) FROM "public"."purge_acct_T1"')

    @pytest.mark.asyncio
    async def test_get_rows(self) -> None:
        manager = make_db_manager()
        manager.fetchval.return_value = True
        manager.fetch.return_value = [
            {"partition_key": "A", "row_key": "1"},
            {"partition_key": "B", "row_key": "2"},
        ]
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        rows = await repository.get_rows(5)

        assert rows == [StagingRow("A", "1"), StagingRow("B", "2")]
        query, limit = manager.fetch.await_args.args
        assert "ORDER BY partition_key ASC LIMIT $1" in query
        assert limit == 5

    @pytest.mark.asyncio
    async def test_insert_creates_table_in_same_transaction(self) -> None:
        manager = make_db_manager()
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        await repository.insert([StagingRow("A", "1"), StagingRow("A", "2")])

        statements = [call.args[0] for call in manager.conn.execute.await_args_list]
        assert any("CREATE TABLE IF NOT EXISTS" in s for s in statements)
        query, values = manager.conn.executemany.await_args.args
        assert query.startswith('INSERT INTO "public"."purge_acct_T1"')
        assert values == [("A", "1"), ("A", "2")]

    @pytest.mark.asyncio
    async def test_delete_uses_single_statement(self) -> None:
        manager = make_db_manager()
        manager.fetchval.return_value = True
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        await repository.delete([StagingRow("A", "1"), StagingRow("B", "2")])

        query, partition_keys, row_keys = manager.execute.await_args.args
        assert "unnest($1::text[], $2::text[])" in query
        assert partition_keys == ["A", "B"]
        assert row_keys == ["1", "2"]

    @pytest.mark.asyncio
    async def test_drop_table(self) -> None:
        manager = make_db_manager()
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        await repository.drop_table()

        manager.execute.assert_awaited_once_with('DROP TABLE IF EXISTS "public"."purge_acct_T1"')

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self) -> None:
        manager = make_db_manager()
        manager.execute.side_effect = DatabaseError("connection lost")
        repository = PostgresStagingRepository(manager, "purge_acct_T1")

        with pytest.raises(StagingStoreError, match="Failed to drop staging table"):
            await repository.drop_table()


def await_args_contains(mock: AsyncMock, query: str) -> bool:
    return any(call.args and call.args[0] == query for call in mock.await_args_list)
