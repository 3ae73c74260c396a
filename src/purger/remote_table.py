"""Remote table access: filtered paginated reads and bounded batch deletes."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import structlog
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from purger.exceptions import RemoteTableError
from purger.metrics import PurgerMetrics
from purger.models import ContinuationToken, RemoteRow, Row, group_by_partition
from utils.logging import get_logger

# Azure Table batch transactions accept at most 100 entities, all in one partition.
MAX_BATCH_SIZE = 100

DEFAULT_PAGE_SIZE = 1000

_SELECTED_COLUMNS = ["PartitionKey", "RowKey", "Timestamp"]


class DeleteOutcome(Enum):
    """Classified result of one batch delete transaction."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


@dataclass
class BatchDeleteResult:
    """Outcome of one single-partition sub-chunk delete."""

    partition_key: str
    size: int
    outcome: DeleteOutcome
    error: Optional[BaseException] = None


def classify_delete_error(error: BaseException) -> DeleteOutcome:
    """Decide whether a delete failure means the row was already gone.

    Args:
        error: Exception raised by the batch transaction

    Returns:
        DeleteOutcome.NOT_FOUND for "row not found" failures, FAILURE otherwise
    """
    if isinstance(error, ResourceNotFoundError):
        return DeleteOutcome.NOT_FOUND
    if isinstance(error, HttpResponseError):
        if error.status_code == 404:
            return DeleteOutcome.NOT_FOUND
        if getattr(error, "error_code", None) == "ResourceNotFound":
            return DeleteOutcome.NOT_FOUND
    return DeleteOutcome.FAILURE


def chunk_rows(rows: Iterable[Row], size: int = MAX_BATCH_SIZE) -> list[list[Row]]:
    """Split rows into single-partition chunks of at most ``size`` entries.

    Rows are grouped by partition key first, so mixed input is always safe.

    Args:
        rows: Rows to split, in any partition order
        size: Maximum chunk size

    Returns:
        List of chunks; each chunk holds rows of exactly one partition
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")

    chunks: list[list[Row]] = []
    for partition_rows in group_by_partition(rows).values():
        for start in range(0, len(partition_rows), size):
            chunks.append(partition_rows[start : start + size])
    return chunks


def calculate_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    """Calculate the eligibility cutoff: midnight UTC today minus the retention window.

    Args:
        retention_days: Retention window in days
        now: Current time (defaults to datetime.now(timezone.utc))

    Returns:
        Timezone-aware cutoff datetime
    """
    now = now or datetime.now(timezone.utc)
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=retention_days)


class RemoteTableRepository(ABC):
    """Read and delete access to the rows of one remote table."""

    @abstractmethod
    async def has_rows(self) -> bool:
        """Return True if at least one row is older than the cutoff."""

    @abstractmethod
    async def get_rows(
        self,
        continuation_token: Optional[ContinuationToken] = None,
        page_size: Optional[int] = None,
    ) -> tuple[list[RemoteRow], Optional[ContinuationToken]]:
        """Return the next page of eligible rows and the token for the page after it."""

    @abstractmethod
    async def delete(self, rows: Iterable[Row]) -> list[BatchDeleteResult]:
        """Delete rows in bounded single-partition batches."""


class AzureTableRepository(RemoteTableRepository):
    """Azure Table Storage implementation on top of the async TableClient."""

    def __init__(
        self,
        table_client: Any,
        retention_days: int = 30,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_concurrent_batches: int = 16,
        metrics: Optional[PurgerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the repository.

        Args:
            table_client: ``azure.data.tables.aio.TableClient`` for the target table
            retention_days: Rows older than this many days are eligible
            page_size: Default rows per page for get_rows
            max_concurrent_batches: Maximum batch transactions in flight
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.table_client = table_client
        self.retention_days = retention_days
        self.page_size = page_size
        self.max_concurrent_batches = max_concurrent_batches
        self.metrics = metrics
        self.logger = logger or get_logger("remote_table")

    @property
    def table_name(self) -> str:
        """Name of the remote table (for logs and error context)."""
        return str(getattr(self.table_client, "table_name", "unknown"))

    def _query(
        self,
        continuation_token: Optional[ContinuationToken],
        page_size: int,
    ) -> Any:
        # Cutoff is recomputed per query so eligibility tracks the current date.
        cutoff = calculate_cutoff(self.retention_days)
        return self.table_client.query_entities(
            "Timestamp lt @cutoff",
            parameters={"cutoff": cutoff},
            select=_SELECTED_COLUMNS,
            results_per_page=page_size,
        ).by_page(continuation_token=continuation_token)

    async def has_rows(self) -> bool:
        """Check the table for eligible rows using single-row pages.

        Empty pages that still carry a continuation token are followed; only
        an empty page without a token means no row is left.

        Returns:
            True if at least one row is older than the cutoff

        Raises:
            RemoteTableError: If the query fails
        """
        continuation_token: Optional[ContinuationToken] = None
        while True:
            rows, continuation_token = await self.get_rows(continuation_token, page_size=1)
            if rows:
                return True
            if continuation_token is None:
                return False

    async def get_rows(
        self,
        continuation_token: Optional[ContinuationToken] = None,
        page_size: Optional[int] = None,
    ) -> tuple[list[RemoteRow], Optional[ContinuationToken]]:
        """Read one page of rows older than the cutoff.

        An empty page with a non-null token is possible; only a null token
        means the scan is exhausted.

        Args:
            continuation_token: Token from the previous page, None for a fresh scan
            page_size: Upper bound of rows in the page (defaults to the configured size)

        Returns:
            Tuple of (rows, next continuation token or None)

        Raises:
            RemoteTableError: If the query fails
            ValueError: If page_size is not positive
        """
        effective_page_size = page_size if page_size is not None else self.page_size
        if effective_page_size <= 0:
            raise ValueError(f"Page size must be positive, got {effective_page_size}")
        try:
            pages = self._query(continuation_token, effective_page_size)
            try:
                page = await pages.__anext__()
            except StopAsyncIteration:
                return [], None
            rows = [self._to_remote_row(entity) async for entity in page]
            next_token = pages.continuation_token
        except Exception as e:
            raise RemoteTableError(
                f"Failed to read rows from remote table: {e}",
                context={"table": self.table_name, "page_size": effective_page_size},
            ) from e

        self.logger.debug(
            "Remote page read",
            table=self.table_name,
            count=len(rows),
            has_more=next_token is not None,
        )
        return rows, next_token

    @staticmethod
    def _to_remote_row(entity: Any) -> RemoteRow:
        metadata = getattr(entity, "metadata", None) or {}
        return RemoteRow(
            partition_key=entity["PartitionKey"],
            row_key=entity["RowKey"],
            timestamp=metadata.get("timestamp"),
        )

    async def delete(self, rows: Iterable[Row]) -> list[BatchDeleteResult]:
        """Delete rows using concurrent single-partition batch transactions.

        Every sub-chunk is awaited before this returns, even when one of them
        fails. Sub-chunks that already succeeded stay deleted.

        Args:
            rows: Rows to delete, possibly spanning several partitions

        Returns:
            One result per sub-chunk, in chunk order

        Raises:
            RemoteTableError: If any sub-chunk failed with something other than "not found"
        """
        chunks = chunk_rows(rows)
        if not chunks:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent_batches)

        async def delete_with_semaphore(chunk: Sequence[Row]) -> BatchDeleteResult:
            async with semaphore:
                return await self._delete_batch(chunk)

        results = await asyncio.gather(*(delete_with_semaphore(chunk) for chunk in chunks))

        failures = [result for result in results if result.outcome is DeleteOutcome.FAILURE]
        if failures:
            first = failures[0]
            raise RemoteTableError(
                f"Batch delete failed: {first.error}",
                context={
                    "table": self.table_name,
                    "failed_batches": len(failures),
                    "total_batches": len(results),
                    "partition_key": first.partition_key,
                },
            ) from first.error

        return list(results)

    async def _delete_batch(self, chunk: Sequence[Row]) -> BatchDeleteResult:
        partition_key = chunk[0].partition_key
        operations = [
            ("delete", {"PartitionKey": row.partition_key, "RowKey": row.row_key})
            for row in chunk
        ]

        try:
            await self.table_client.submit_transaction(operations)
            outcome = DeleteOutcome.SUCCESS
            error: Optional[BaseException] = None
        except Exception as e:
            outcome = classify_delete_error(e)
            error = e

        if outcome is DeleteOutcome.SUCCESS:
            self.logger.debug(
                "Batch deleted", table=self.table_name, partition_key=partition_key, count=len(chunk)
            )
        elif outcome is DeleteOutcome.NOT_FOUND:
            # Another actor or an earlier interrupted run already removed a row.
            self.logger.debug(
                "Batch delete hit missing row, ignoring",
                table=self.table_name,
                partition_key=partition_key,
                count=len(chunk),
            )
        else:
            self.logger.warning(
                "Batch delete failed",
                table=self.table_name,
                partition_key=partition_key,
                count=len(chunk),
                error=str(error),
            )

        if self.metrics:
            self.metrics.record_delete_batch(outcome.value)

        return BatchDeleteResult(
            partition_key=partition_key,
            size=len(chunk),
            outcome=outcome,
            error=error,
        )
