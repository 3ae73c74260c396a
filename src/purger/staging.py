"""Local staging store: a durable buffer of row identifiers pending remote deletion."""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from purger.database import DatabaseManager
from purger.exceptions import StagingStoreError
from purger.models import Row, StagingRow
from utils import safe_identifier
from utils.logging import get_logger


class StagingRepository(ABC):
    """Durable queue of rows waiting for their remote delete.

    Each bulk insert and bulk delete is applied in a single local transaction.
    """

    table_name: str

    @abstractmethod
    async def exists(self) -> bool:
        """Return True if the staging table exists."""

    @abstractmethod
    async def count_rows(self) -> int:
        """Return the number of staged rows."""

    async def has_rows(self) -> bool:
        """Return True if at least one row is staged."""
        return await self.count_rows() > 0

    @abstractmethod
    async def get_rows(self, limit: int) -> list[StagingRow]:
        """Return up to ``limit`` staged rows ordered by partition key."""

    @abstractmethod
    async def insert(self, rows: Iterable[Row]) -> None:
        """Stage rows in one transaction."""

    @abstractmethod
    async def delete(self, rows: Iterable[Row]) -> None:
        """Remove rows from staging in one transaction."""

    @abstractmethod
    async def drop_table(self) -> None:
        """Drop the staging table. Issuing it on a missing table is not an error."""


class SqliteStagingRepository(StagingRepository):
    """Staging store kept in a local SQLite file, one table per target."""

    def __init__(
        self,
        db_path: Path,
        table_name: str,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize SQLite staging repository.

        Args:
            db_path: Path of the SQLite database file (created on first write)
            table_name: Staging table name for this target
            logger: Optional logger instance
        """
        self.db_path = Path(db_path)
        self.table_name = table_name
        self.logger = logger or get_logger("staging")
        self._table = safe_identifier(table_name)
        self._index = safe_identifier(f"idx_{table_name}_keys")

    async def _run(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        # sqlite3 blocks, so every operation runs in the default executor with
        # its own short-lived connection.
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except sqlite3.Error as e:
            raise StagingStoreError(
                f"Failed to {operation} staging table: {e}",
                context={"table": self.table_name, "path": str(self.db_path)},
            ) from e

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _table_exists(self, conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self.table_name,),
        ).fetchone()
        return row is not None

    def _create_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} "
            "(partition_key TEXT NOT NULL, row_key TEXT NOT NULL)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS {self._index} ON {self._table} (partition_key, row_key)"
        )

    def _exists_sync(self) -> bool:
        if not self.db_path.exists():
            return False
        with closing(self._connect()) as conn:
            return self._table_exists(conn)

    def _count_sync(self) -> int:
        if not self.db_path.exists():
            return 0
        with closing(self._connect()) as conn:
            if not self._table_exists(conn):
                return 0
            (count,) = conn.execute(f"SELECT COUNT(1) FROM {self._table}").fetchone()
            return int(count)

    def _get_rows_sync(self, limit: int) -> list[StagingRow]:
        if not self.db_path.exists():
            return []
        with closing(self._connect()) as conn:
            if not self._table_exists(conn):
                return []
            cursor = conn.execute(
                f"SELECT partition_key, row_key FROM {self._table} "
                "ORDER BY partition_key ASC LIMIT ?",
                (limit,),
            )
            return [StagingRow(partition_key=pk, row_key=rk) for pk, rk in cursor.fetchall()]

    def _insert_sync(self, values: list[tuple[str, str]]) -> None:
        with closing(self._connect()) as conn:
            with conn:
                self._create_table(conn)
                conn.executemany(
                    f"INSERT INTO {self._table} (partition_key, row_key) VALUES (?, ?)",
                    values,
                )

    def _delete_sync(self, values: list[tuple[str, str]]) -> None:
        if not self.db_path.exists():
            return
        with closing(self._connect()) as conn:
            if not self._table_exists(conn):
                return
            with conn:
                conn.executemany(
                    f"DELETE FROM {self._table} WHERE partition_key = ? AND row_key = ?",
                    values,
                )

    def _drop_sync(self) -> None:
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(f"DROP TABLE IF EXISTS {self._table}")

    async def exists(self) -> bool:
        return await self._run("inspect", self._exists_sync)

    async def count_rows(self) -> int:
        return await self._run("count", self._count_sync)

    async def get_rows(self, limit: int) -> list[StagingRow]:
        return await self._run("read", self._get_rows_sync, limit)

    async def insert(self, rows: Iterable[Row]) -> None:
        values = [(row.partition_key, row.row_key) for row in rows]
        if not values:
            return
        await self._run("insert into", self._insert_sync, values)
        self.logger.debug("Rows staged", table=self.table_name, count=len(values))

    async def delete(self, rows: Iterable[Row]) -> None:
        values = [(row.partition_key, row.row_key) for row in rows]
        if not values:
            return
        await self._run("delete from", self._delete_sync, values)
        self.logger.debug("Rows unstaged", table=self.table_name, count=len(values))

    async def drop_table(self) -> None:
        self.logger.info("Dropping staging table", table=self.table_name)
        await self._run("drop", self._drop_sync)


class PostgresStagingRepository(StagingRepository):
    """Staging store kept in a PostgreSQL table, for hosts without durable local disk."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        table_name: str,
        schema_name: str = "public",
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize PostgreSQL staging repository.

        Args:
            db_manager: Connected database manager
            table_name: Staging table name for this target
            schema_name: Schema holding the staging table
            logger: Optional logger instance
        """
        self.db_manager = db_manager
        self.table_name = table_name
        self.schema_name = schema_name
        self.logger = logger or get_logger("staging")
        self._qualified = safe_identifier(f"{schema_name}.{table_name}")
        self._index = safe_identifier(f"idx_{table_name}_keys")

    def _error(self, operation: str, error: Exception) -> StagingStoreError:
        return StagingStoreError(
            f"Failed to {operation} staging table: {error}",
            context={"table": self.table_name, "schema": self.schema_name},
        )

    async def exists(self) -> bool:
        try:
            return bool(
                await self.db_manager.fetchval(
                    "SELECT to_regclass($1) IS NOT NULL", self._qualified
                )
            )
        except Exception as e:
            raise self._error("inspect", e) from e

    async def count_rows(self) -> int:
        if not await self.exists():
            return 0
        try:
            count = await self.db_manager.fetchval(f"SELECT COUNT(1) FROM {self._qualified}")
            return int(count or 0)
        except Exception as e:
            raise self._error("count", e) from e

    async def get_rows(self, limit: int) -> list[StagingRow]:
        if not await self.exists():
            return []
        try:
            records = await self.db_manager.fetch(
                f"SELECT partition_key, row_key FROM {self._qualified} "
                "ORDER BY partition_key ASC LIMIT $1",
                limit,
            )
        except Exception as e:
            raise self._error("read", e) from e
        return [
            StagingRow(partition_key=record["partition_key"], row_key=record["row_key"])
            for record in records
        ]

    async def insert(self, rows: Iterable[Row]) -> None:
        values = [(row.partition_key, row.row_key) for row in rows]
        if not values:
            return
        try:
            async with self.db_manager.transaction() as conn:
                await conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {self._qualified} "
                    "(partition_key TEXT NOT NULL, row_key TEXT NOT NULL)"
                )
                await conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {self._index} "
                    f"ON {self._qualified} (partition_key, row_key)"
                )
                await conn.executemany(
                    f"INSERT INTO {self._qualified} (partition_key, row_key) VALUES ($1, $2)",
                    values,
                )
        except Exception as e:
            raise self._error("insert into", e) from e
        self.logger.debug("Rows staged", table=self.table_name, count=len(values))

    async def delete(self, rows: Iterable[Row]) -> None:
        values = [(row.partition_key, row.row_key) for row in rows]
        if not values or not await self.exists():
            return
        partition_keys = [pk for pk, _ in values]
        row_keys = [rk for _, rk in values]
        try:
            await self.db_manager.execute(
                f"DELETE FROM {self._qualified} WHERE (partition_key, row_key) IN "
                "(SELECT * FROM unnest($1::text[], $2::text[]))",
                partition_keys,
                row_keys,
            )
        except Exception as e:
            raise self._error("delete from", e) from e
        self.logger.debug("Rows unstaged", table=self.table_name, count=len(values))

    async def drop_table(self) -> None:
        self.logger.info("Dropping staging table", table=self.table_name, schema=self.schema_name)
        try:
            await self.db_manager.execute(f"DROP TABLE IF EXISTS {self._qualified}")
        except Exception as e:
            raise self._error("drop", e) from e
