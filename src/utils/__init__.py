"""Azure Table Purger - Shared utilities."""

import re


def safe_identifier(name: str) -> str:
    """Validate and quote a SQL identifier for the staging store.

    Works for both SQLite and PostgreSQL, which share double-quote identifier
    quoting. Schema-qualified names (``schema.table``) are quoted per part.

    Args:
        name: SQL identifier (table name, schema name)

    Returns:
        Safely quoted identifier (e.g., '"public"."acct_table"')

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if "." in name:
        schema, table = name.split(".", 1)
        return f"{safe_identifier(schema)}.{safe_identifier(table)}"

    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        raise ValueError(
            f"Invalid SQL identifier: {name!r}. "
            "Only letters, digits, and underscores are allowed."
        )

    return f'"{name}"'


def staging_table_name(account_name: str, table_name: str) -> str:
    """Name of the staging table that buffers one (account, table) target.

    Account names may start with a digit, so the name carries a prefix to stay
    a valid unquoted identifier.
    """
    return f"purge_{account_name}_{table_name}"
