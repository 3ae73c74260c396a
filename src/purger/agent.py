"""Control loop that alternates between draining staging and refilling it."""

from enum import Enum
from typing import Optional

import structlog

from purger.downloader import Downloader
from purger.metrics import PurgerMetrics
from purger.remote_table import RemoteTableRepository
from purger.row_processor import RowProcessor
from purger.staging import StagingRepository
from utils.logging import get_logger

DEFAULT_DRAIN_CHUNK_SIZE = 10_000
DEFAULT_MAX_STAGING_ROWS = 1_000_000


class AgentState(Enum):
    """Where the agent is in its loop."""

    DRAINING = "draining"
    CHECKING_REMOTE = "checking_remote"
    DOWNLOADING = "downloading"
    TERMINATED = "terminated"


class PurgeAgent:
    """Drives the staged deletion of one (account, table) target.

    Termination is decided only by observing that both the staging store
    and the remote table are empty.
    """

    def __init__(
        self,
        processor: RowProcessor,
        staging: StagingRepository,
        remote: RemoteTableRepository,
        downloader: Downloader,
        drain_chunk_size: int = DEFAULT_DRAIN_CHUNK_SIZE,
        max_staging_rows: int = DEFAULT_MAX_STAGING_ROWS,
        metrics: Optional[PurgerMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize agent.

        Args:
            processor: Drains staging into remote deletes
            staging: Staging repository of this target
            remote: Remote table repository of this target
            downloader: Refills staging from the remote table
            drain_chunk_size: Rows handed to each processor call
            max_staging_rows: Staging capacity passed to the downloader
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.processor = processor
        self.staging = staging
        self.remote = remote
        self.downloader = downloader
        self.drain_chunk_size = drain_chunk_size
        self.max_staging_rows = max_staging_rows
        self.metrics = metrics
        self.logger = logger or get_logger("agent")
        self.state = AgentState.DRAINING
        self.rows_deleted = 0

    async def execute(self) -> int:
        """Run iterations until there is no work left.

        Returns:
            Number of iterations run
        """
        iterations = 0
        while True:
            iterations += 1
            if not await self.iteration():
                break
        self.logger.info(
            "Purge finished", iterations=iterations, rows_deleted=self.rows_deleted
        )
        return iterations

    async def iteration(self) -> bool:
        """Drain staging, then either download more rows or terminate.

        Returns:
            True if rows were downloaded and another iteration is needed,
            False once staging and remote are both empty
        """
        self.state = AgentState.DRAINING
        while await self.staging.has_rows():
            self.rows_deleted += await self.processor.process(self.drain_chunk_size)
            if self.metrics:
                self.metrics.set_staging_rows(await self.staging.count_rows())

        self.state = AgentState.CHECKING_REMOTE
        self.logger.info("Staging is empty, checking the remote table for rows left")

        if not await self.remote.has_rows():
            self.logger.info("No eligible rows left in the remote table")
            await self.staging.drop_table()
            self.state = AgentState.TERMINATED
            return False

        self.state = AgentState.DOWNLOADING
        await self.downloader.download(self.max_staging_rows)
        if self.metrics:
            self.metrics.set_staging_rows(await self.staging.count_rows())
        return True
