"""Azure Table Purger - Staged deletion of stale rows from Azure Table Storage."""

__version__ = "0.1.0"

__all__ = [
    "Purger",
    "PurgeAgent",
    "Downloader",
    "RowProcessor",
    "AzureTableRepository",
    "SqliteStagingRepository",
    "PostgresStagingRepository",
]
