"""Main entry point for the purger CLI."""

import asyncio
import sys
import uuid
from pathlib import Path
from typing import Optional

import click

from purger.config import load_config
from purger.exceptions import ConfigurationError
from utils.logging import configure_logging
from utils.output import print_summary


@click.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Only report which tables have rows to purge, delete nothing",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
@click.option(
    "--account",
    help="Process only the specified storage account",
)
@click.option(
    "--table",
    help="Process only the specified table",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs",
)
def main(
    config: Path,
    dry_run: bool,
    verbose: bool,
    account: Optional[str],
    table: Optional[str],
    log_level: str,
    log_format: str,
) -> None:
    """Purge stale rows from Azure Table Storage.

    Row identifiers older than the retention window are staged in a local
    store, then deleted from the remote table in batches of at most 100
    rows per partition.
    """
    effective_log_level = "DEBUG" if verbose else log_level
    logger = configure_logging(
        log_level=effective_log_level,
        log_format=log_format,
        correlation_id=str(uuid.uuid4()),
    )
    logger = logger.bind(component="main")

    try:
        logger.debug("Loading configuration", config_path=str(config))
        purger_config = load_config(config)

        if dry_run:
            logger.info("DRY RUN MODE - No rows will be deleted")

        if account or table:
            filtered_accounts = []
            for account_config in purger_config.storage_accounts:
                if account and account_config.name != account:
                    continue
                if table:
                    account_config.tables = [t for t in account_config.tables if t == table]
                    if not account_config.tables:
                        continue
                filtered_accounts.append(account_config)
            purger_config.storage_accounts = filtered_accounts

        if not purger_config.storage_accounts:
            logger.warning("No storage accounts/tables to process after filtering")
            return

        from purger.purger import Purger

        purger = Purger(purger_config, dry_run=dry_run, logger=logger)
        stats = asyncio.run(purger.purge())

        if log_format == "console":
            print_summary(stats, title="Purge Summary")

        if stats["targets_failed"]:
            sys.exit(1)

    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
