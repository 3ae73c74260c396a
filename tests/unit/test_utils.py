"""Unit tests for shared utilities and CLI output helpers."""

import click
import pytest
from click.testing import CliRunner

from utils import safe_identifier, staging_table_name
from utils.output import format_duration, print_summary


def test_safe_identifier_quotes() -> None:
    assert safe_identifier("purge_acct_SystemAlerts") == '"purge_acct_SystemAlerts"'


def test_safe_identifier_schema_qualified() -> None:
    assert safe_identifier("public.purge_acct_T1") == '"public"."purge_acct_T1"'


@pytest.mark.parametrize("name", ["1table", "drop table", 'x"y', ""])
def test_safe_identifier_rejects(name: str) -> None:
    with pytest.raises(ValueError, match="Invalid SQL identifier"):
        safe_identifier(name)


def test_staging_table_name_is_a_safe_identifier() -> None:
    name = staging_table_name("1prodlogs", "SystemAlerts")
    assert name == "purge_1prodlogs_SystemAlerts"
    assert safe_identifier(name) == f'"{name}"'


def test_format_duration() -> None:
    assert format_duration("2024-01-01T00:00:00+00:00", "2024-01-01T01:02:03+00:00") == "01:02:03"
    assert format_duration("2024-01-01T00:00:00Z", "2024-01-01T00:00:09Z") == "00:00:09"


def test_print_summary_lists_failures() -> None:
    stats = {
        "targets_processed": 1,
        "targets_failed": 1,
        "rows_deleted": 12345,
        "iterations": 3,
        "start_time": "2024-01-01T00:00:00+00:00",
        "end_time": "2024-01-01T00:00:30+00:00",
        "target_stats": [
            {"account": "prodlogs01", "table": "SystemAlerts", "success": True},
            {
                "account": "prodlogs01",
                "table": "AuditEvents",
                "success": False,
                "error": "Batch delete failed",
            },
        ],
    }

    @click.command()
    def command() -> None:
        print_summary(stats, title="Purge Summary")

    result = CliRunner().invoke(command)

    assert result.exit_code == 0
    assert "12,345" in result.output
    assert "prodlogs01/AuditEvents: Batch delete failed" in result.output
    assert "prodlogs01/SystemAlerts" not in result.output
    assert "00:00:30" in result.output
