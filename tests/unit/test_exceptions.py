"""Unit tests for exception classes."""

from purger.exceptions import (
    ConfigurationError,
    DatabaseError,
    PurgerError,
    RemoteTableError,
    StagingStoreError,
)


def test_purger_error_basic() -> None:
    """Test basic PurgerError."""
    error = PurgerError("Test error")
    assert str(error) == "Test error"
    assert error.message == "Test error"
    assert error.correlation_id is None
    assert error.context == {}


def test_purger_error_with_correlation_id() -> None:
    """Test PurgerError with correlation ID."""
    error = PurgerError("Test error", correlation_id="abc123")
    assert "abc123" in str(error)
    assert error.correlation_id == "abc123"


def test_purger_error_with_context() -> None:
    """Test PurgerError with context."""
    error = RemoteTableError("Batch delete failed", context={"table": "SystemAlerts"})
    assert error.context == {"table": "SystemAlerts"}
    assert "SystemAlerts" in str(error)


def test_error_hierarchy() -> None:
    """Test exception hierarchy."""
    assert issubclass(ConfigurationError, PurgerError)
    assert issubclass(RemoteTableError, PurgerError)
    assert issubclass(StagingStoreError, PurgerError)
    assert issubclass(DatabaseError, PurgerError)
