"""Custom exception hierarchy for the purger."""

from typing import Any, Optional


class PurgerError(Exception):
    """Base exception for all purger errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize purger error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(PurgerError):
    """Configuration-related errors."""

    pass


class RemoteTableError(PurgerError):
    """Failures talking to the remote table store (anything but 'not found' on delete)."""

    pass


class StagingStoreError(PurgerError):
    """Local staging store failures (read, insert, delete, drop)."""

    pass


class DatabaseError(PurgerError):
    """PostgreSQL connection and query errors."""

    pass
