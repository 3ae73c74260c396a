"""Drain one bounded slice of the staging store into remote deletes."""

import time
from typing import Optional

import structlog

from purger.metrics import PurgerMetrics
from purger.models import group_by_partition
from purger.remote_table import RemoteTableRepository
from purger.staging import StagingRepository
from utils.logging import get_logger


class RowProcessor:
    """Deletes staged rows from the remote table, then unstages them."""

    def __init__(
        self,
        staging: StagingRepository,
        remote: RemoteTableRepository,
        metrics: Optional[PurgerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize row processor.

        Args:
            staging: Staging repository to drain
            remote: Remote table repository to delete from
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.staging = staging
        self.remote = remote
        self.metrics = metrics
        self.logger = logger or get_logger("row_processor")

    async def process(self, max_batch_rows: int) -> int:
        """Process up to ``max_batch_rows`` staged rows.

        Rows are grouped by partition and deleted remotely one group at a
        time. Staging is only cleaned up after every group's delete completed,
        so a remote failure leaves the whole slice staged for the next call.

        Args:
            max_batch_rows: Maximum rows read from staging

        Returns:
            Number of rows removed from staging

        Raises:
            RemoteTableError: If a remote delete failed (staging is left untouched)
            StagingStoreError: If the staging store failed
        """
        start = time.monotonic()
        rows = await self.staging.get_rows(max_batch_rows)
        if not rows:
            self.logger.debug("No staged rows to process")
            return 0

        groups = group_by_partition(rows)
        self.logger.info(
            "Deleting staged rows from the remote table",
            count=len(rows),
            partitions=len(groups),
        )

        for partition_key, partition_rows in groups.items():
            await self.remote.delete(partition_rows)
            self.logger.debug(
                "Partition deleted", partition_key=partition_key, count=len(partition_rows)
            )

        await self.staging.delete(rows)
        self.logger.info("Staged rows removed", count=len(rows))

        if self.metrics:
            self.metrics.record_rows_deleted(len(rows))
            self.metrics.record_duration("process", time.monotonic() - start)
        return len(rows)
