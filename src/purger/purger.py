"""Purge orchestrator: runs one agent per configured (account, table) target."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from azure.core.credentials import AzureNamedKeyCredential
from azure.data.tables.aio import TableClient
from prometheus_client import CollectorRegistry

from purger.agent import PurgeAgent
from purger.config import PurgerConfig, StorageAccountConfig
from purger.database import DatabaseManager
from purger.downloader import Downloader
from purger.exceptions import StagingStoreError
from purger.metrics import PurgerMetrics
from purger.remote_table import AzureTableRepository
from purger.row_processor import RowProcessor
from purger.staging import (
    PostgresStagingRepository,
    SqliteStagingRepository,
    StagingRepository,
)
from utils import staging_table_name
from utils.logging import get_logger

TableClientFactory = Callable[[StorageAccountConfig, str], Any]
StagingFactory = Callable[[StorageAccountConfig, str], StagingRepository]


def create_table_client(account: StorageAccountConfig, table_name: str) -> TableClient:
    """Create an async Azure TableClient authenticated with the account key."""
    credential = AzureNamedKeyCredential(account.name, account.get_key())
    return TableClient(
        endpoint=account.table_endpoint,
        table_name=table_name,
        credential=credential,
    )


class Purger:
    """Purges every configured target, one after another."""

    def __init__(
        self,
        config: PurgerConfig,
        dry_run: bool = False,
        logger: Optional[structlog.BoundLogger] = None,
        metrics: Optional[PurgerMetrics] = None,
        table_client_factory: Optional[TableClientFactory] = None,
        staging_factory: Optional[StagingFactory] = None,
    ) -> None:
        """Initialize purger.

        Args:
            config: Purger configuration
            dry_run: If True, only report which targets have eligible rows
            logger: Optional logger instance
            metrics: Optional metrics collector (built from config when omitted)
            table_client_factory: Builds the remote TableClient for a target
            staging_factory: Builds the staging repository for a target
        """
        self.config = config
        self.dry_run = dry_run
        self.logger = logger or get_logger("purger")
        self.table_client_factory = table_client_factory or create_table_client
        self._staging_factory = staging_factory
        self._db_manager: Optional[DatabaseManager] = None

        if metrics is not None:
            self.metrics: Optional[PurgerMetrics] = metrics
        elif config.monitoring.metrics_enabled:
            self.metrics = PurgerMetrics(logger=self.logger, registry=CollectorRegistry())
            try:
                self.metrics.start_metrics_server(port=config.monitoring.metrics_port)
            except Exception as e:
                self.logger.warning(
                    "Failed to start metrics server (non-critical)",
                    port=config.monitoring.metrics_port,
                    error=str(e),
                )
        else:
            self.metrics = None

    def _create_staging(
        self, account: StorageAccountConfig, table_name: str, logger: structlog.BoundLogger
    ) -> StagingRepository:
        if self._staging_factory is not None:
            return self._staging_factory(account, table_name)

        name = staging_table_name(account.name, table_name)
        staging_config = self.config.staging
        if staging_config.storage_type == "postgresql":
            if self._db_manager is None or staging_config.postgresql is None:
                raise StagingStoreError(
                    "PostgreSQL staging requested but no connection is open",
                    context={"account": account.name, "table": table_name},
                )
            return PostgresStagingRepository(
                self._db_manager,
                name,
                schema_name=staging_config.postgresql.schema_name,
                logger=logger,
            )
        return SqliteStagingRepository(staging_config.sqlite_path, name, logger=logger)

    async def purge(self) -> dict[str, Any]:
        """Purge all configured targets.

        A failing target is logged and recorded; the remaining targets still run.

        Returns:
            Dictionary with purge statistics
        """
        self.logger.info("Starting purge", dry_run=self.dry_run)

        stats: dict[str, Any] = {
            "targets_processed": 0,
            "targets_failed": 0,
            "rows_deleted": 0,
            "iterations": 0,
            "dry_run": self.dry_run,
            "start_time": datetime.now(timezone.utc).isoformat(),
            "target_stats": [],
        }

        uses_postgres = (
            not self.dry_run
            and self._staging_factory is None
            and self.config.staging.storage_type == "postgresql"
        )
        if uses_postgres and self.config.staging.postgresql is not None:
            self._db_manager = DatabaseManager(self.config.staging.postgresql, logger=self.logger)
            await self._db_manager.connect()

        try:
            for account in self.config.storage_accounts:
                for table_name in account.tables:
                    await self._purge_target_with_stats(account, table_name, stats)
        finally:
            if self._db_manager is not None:
                await self._db_manager.disconnect()
                self._db_manager = None

        stats["end_time"] = datetime.now(timezone.utc).isoformat()

        if stats["targets_failed"] == 0:
            final_status = "success"
        elif stats["targets_processed"] > 0:
            final_status = "partial"
        else:
            final_status = "failure"
        stats["status"] = final_status

        if self.metrics:
            self.metrics.record_run_status(final_status)

        self.logger.info(
            "Purge completed",
            status=final_status,
            targets_processed=stats["targets_processed"],
            targets_failed=stats["targets_failed"],
            rows_deleted=stats["rows_deleted"],
        )
        return stats

    async def _purge_target_with_stats(
        self, account: StorageAccountConfig, table_name: str, stats: dict[str, Any]
    ) -> None:
        target_stats: dict[str, Any] = {
            "account": account.name,
            "table": table_name,
            "success": False,
            "rows_deleted": 0,
            "iterations": 0,
            "start_time": datetime.now(timezone.utc).isoformat(),
        }
        logger = self.logger.bind(account=account.name, table=table_name)
        start = time.monotonic()

        try:
            await self._purge_target(account, table_name, target_stats, logger)
            target_stats["success"] = True
            stats["targets_processed"] += 1
            stats["rows_deleted"] += target_stats["rows_deleted"]
            stats["iterations"] += target_stats["iterations"]
            if self.metrics:
                self.metrics.record_target_status("success")
        except Exception as e:
            target_stats["error"] = str(e)
            stats["targets_failed"] += 1
            if self.metrics:
                self.metrics.record_target_status("failure")
            logger.error("Target purge failed", error=str(e), exc_info=True)
        finally:
            target_stats["end_time"] = datetime.now(timezone.utc).isoformat()
            stats["target_stats"].append(target_stats)
            if self.metrics:
                self.metrics.record_duration("target", time.monotonic() - start)

    async def _purge_target(
        self,
        account: StorageAccountConfig,
        table_name: str,
        target_stats: dict[str, Any],
        logger: structlog.BoundLogger,
    ) -> None:
        defaults = self.config.defaults
        logger.info("Processing target")

        async with self.table_client_factory(account, table_name) as table_client:
            remote = AzureTableRepository(
                table_client,
                retention_days=defaults.retention_days,
                page_size=defaults.page_size,
                max_concurrent_batches=defaults.max_concurrent_batches,
                metrics=self.metrics,
                logger=logger,
            )

            if self.dry_run:
                eligible = await remote.has_rows()
                target_stats["has_eligible_rows"] = eligible
                logger.info("DRY RUN - eligibility checked", has_eligible_rows=eligible)
                return

            staging = self._create_staging(account, table_name, logger)
            downloader = Downloader(
                remote,
                staging,
                page_size=defaults.page_size,
                metrics=self.metrics,
                logger=logger,
            )
            processor = RowProcessor(staging, remote, metrics=self.metrics, logger=logger)
            agent = PurgeAgent(
                processor,
                staging,
                remote,
                downloader,
                drain_chunk_size=defaults.drain_chunk_size,
                max_staging_rows=defaults.max_staging_rows,
                metrics=self.metrics,
                logger=logger,
            )

            target_stats["iterations"] = await agent.execute()
            target_stats["rows_deleted"] = agent.rows_deleted
