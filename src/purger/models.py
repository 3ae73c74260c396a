"""Row identities flowing between the remote table and the staging store."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

# Opaque cursor handed back by a paginated query. None means no further pages.
ContinuationToken = dict[str, Any]


@dataclass(frozen=True)
class RemoteRow:
    """A row eligible for deletion, as read from the remote table."""

    partition_key: str
    row_key: str
    timestamp: Optional[datetime] = None

    def to_staging_row(self) -> "StagingRow":
        """Drop the timestamp; staging only keeps what a delete needs."""
        return StagingRow(partition_key=self.partition_key, row_key=self.row_key)


@dataclass(frozen=True)
class StagingRow:
    """A durable record that a remote row was observed eligible for deletion."""

    partition_key: str
    row_key: str


Row = Union[RemoteRow, StagingRow]


def group_by_partition(rows: Iterable[Row]) -> dict[str, list[Row]]:
    """Group rows by partition key.

    Partitions keep the order in which they were first seen, and rows keep
    their input order inside each partition.

    Args:
        rows: Rows to group (may mix partitions in any order)

    Returns:
        Mapping of partition key to the rows sharing it
    """
    groups: dict[str, list[Row]] = {}
    for row in rows:
        groups.setdefault(row.partition_key, []).append(row)
    return groups
