"""Refill the staging store from the remote table, up to a capacity bound."""

import time
from typing import Optional

import structlog

from purger.metrics import PurgerMetrics
from purger.models import ContinuationToken
from purger.remote_table import RemoteTableRepository
from purger.staging import StagingRepository
from utils.logging import get_logger


class Downloader:
    """Pages eligible rows out of the remote table into staging."""

    def __init__(
        self,
        remote: RemoteTableRepository,
        staging: StagingRepository,
        page_size: Optional[int] = None,
        metrics: Optional[PurgerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize downloader.

        Args:
            remote: Remote table repository
            staging: Staging repository to fill
            page_size: Rows requested per page (None for the repository default)
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.remote = remote
        self.staging = staging
        self.page_size = page_size
        self.metrics = metrics
        self.logger = logger or get_logger("downloader")

    async def download(self, max_staging_capacity: int) -> bool:
        """Download rows until staging holds ``max_staging_capacity`` rows.

        Every call starts a fresh remote scan; the continuation token only
        lives for the duration of the call.

        Args:
            max_staging_capacity: Stop paging once staging holds this many rows

        Returns:
            False if the remote table had no eligible rows, True otherwise
        """
        if not await self.remote.has_rows():
            self.logger.info("No eligible rows in the remote table, nothing to download")
            return False

        start = time.monotonic()
        continuation_token: Optional[ContinuationToken] = None
        pages = 0
        staged = 0

        while True:
            staged_count = await self.staging.count_rows()
            if staged_count >= max_staging_capacity:
                break

            self.logger.info(
                "Retrieving rows from the remote table",
                staging_rows=staged_count,
                capacity=max_staging_capacity,
            )

            rows, continuation_token = await self.remote.get_rows(
                continuation_token, page_size=self.page_size
            )
            pages += 1

            if not rows:
                self.logger.debug("Remote returned an empty page, stopping download")
                break

            await self.staging.insert([row.to_staging_row() for row in rows])
            staged += len(rows)
            if self.metrics:
                self.metrics.record_rows_staged(len(rows))

            if continuation_token is None:
                self.logger.info("Remote scan exhausted, stopping download")
                break

        self.logger.info("Download finished", pages=pages, rows_staged=staged)
        if self.metrics:
            self.metrics.record_duration("download", time.monotonic() - start)
        return True
