"""Utility functions for formatted CLI output."""

from datetime import datetime
from typing import Any

import click


def print_header(title: str, width: int = 70, color: str = "cyan") -> None:
    """Print a formatted header.

    Args:
        title: Header title
        width: Header width
        color: Header color
    """
    click.echo()
    click.echo(click.style("=" * width, fg=color))
    click.echo(click.style(title, fg=color, bold=True))
    click.echo(click.style("=" * width, fg=color))
    click.echo()


def print_section(title: str, color: str = "yellow") -> None:
    """Print a section title."""
    click.echo(click.style(f"\n{title}:", fg=color, bold=True))


def print_key_value(
    key: str, value: Any, key_color: str = "white", value_color: str = "cyan"
) -> None:
    """Print a key-value pair."""
    click.echo(
        click.style(f"  {key}: ", fg=key_color) + click.style(str(value), fg=value_color, bold=True)
    )


def format_duration(start_time: str, end_time: str) -> str:
    """Format the time between two ISO timestamps as HH:MM:SS."""
    start = datetime.fromisoformat(start_time.replace("Z", "+00:00"))
    end = datetime.fromisoformat(end_time.replace("Z", "+00:00"))
    duration = max((end - start).total_seconds(), 0)
    hours = int(duration // 3600)
    minutes = int((duration % 3600) // 60)
    seconds = int(duration % 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def print_summary(stats: dict[str, Any], title: str = "Summary") -> None:
    """Print a formatted summary of a purge run.

    Args:
        stats: Statistics dictionary returned by Purger.purge()
        title: Summary title
    """
    print_header(title)

    print_section("Targets")
    print_key_value("Processed", stats.get("targets_processed", 0))
    print_key_value("Failed", stats.get("targets_failed", 0))

    print_section("Rows")
    print_key_value("Deleted", f"{stats.get('rows_deleted', 0):,}")
    print_key_value("Iterations", stats.get("iterations", 0))

    failed = [t for t in stats.get("target_stats", []) if not t.get("success")]
    if failed:
        print_section("Failures", color="red")
        for target in failed:
            print_key_value(
                f"{target['account']}/{target['table']}",
                target.get("error", "unknown error"),
                value_color="red",
            )

    if stats.get("start_time") and stats.get("end_time"):
        print_section("Duration")
        print_key_value("Total Time", format_duration(stats["start_time"], stats["end_time"]))

    click.echo()
