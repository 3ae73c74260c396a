"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from purger.exceptions import ConfigurationError


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a nested structure."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


class DefaultsConfig(BaseModel):
    """Tunables shared by every target."""

    retention_days: int = Field(
        default=30,
        description="Rows whose Timestamp is older than this many days are purged",
        gt=0,
        lt=36500,
    )
    page_size: int = Field(
        default=1000,
        description="Maximum rows requested per remote page (Azure caps pages at 1000)",
        gt=0,
        le=1000,
    )
    max_staging_rows: int = Field(
        default=1_000_000,
        description="Staging capacity; downloads stop once the buffer holds this many rows",
        gt=0,
    )
    drain_chunk_size: int = Field(
        default=10_000,
        description="Rows read from staging per processing call",
        gt=0,
    )
    max_concurrent_batches: int = Field(
        default=16,
        description="Maximum batch delete transactions in flight at once",
        gt=0,
        le=256,
    )


class PostgresStagingConfig(BaseModel):
    """PostgreSQL staging backend connection settings."""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port", gt=0, lt=65536)
    name: str = Field(description="Database name")
    user: str = Field(description="Database user")
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing database password (preferred)",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password (development only - use password_env in production)",
    )
    schema_name: str = Field(default="public", description="Schema for staging tables", alias="schema")
    pool_size: int = Field(default=2, description="Connection pool size", gt=0, le=50)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def validate_password_source(self) -> "PostgresStagingConfig":
        """Validate that exactly one password source is provided."""
        if not self.password_env and not self.password:
            raise ValueError("Either 'password_env' or 'password' must be provided.")
        if self.password_env and self.password:
            raise ValueError("Cannot specify both 'password_env' and 'password'.")
        return self

    def get_password(self) -> str:
        """Get password from environment variable or config file.

        Raises:
            ValueError: If password cannot be retrieved
        """
        if self.password_env:
            password = os.getenv(self.password_env)
            if not password:
                raise ValueError(f"Environment variable {self.password_env} not set")
            return password
        if self.password:
            import warnings

            warnings.warn(
                f"Using password from config file for staging database '{self.name}'. "
                f"This is not recommended for production. Use 'password_env' instead.",
                UserWarning,
                stacklevel=2,
            )
            return self.password
        raise ValueError("No password source configured")


class StagingConfig(BaseModel):
    """Local staging store configuration."""

    storage_type: str = Field(
        default="sqlite",
        description="Staging backend (sqlite, postgresql)",
    )
    directory: str = Field(
        default="./databases",
        description="Directory holding the SQLite staging file",
    )
    file_name: str = Field(default="staging.db", description="SQLite staging file name")
    postgresql: Optional[PostgresStagingConfig] = Field(
        default=None,
        description="PostgreSQL connection settings (required for storage_type=postgresql)",
    )

    @field_validator("storage_type")
    @classmethod
    def validate_storage_type(cls, v: str) -> str:
        """Validate storage type."""
        if v not in ("sqlite", "postgresql"):
            raise ValueError("storage_type must be 'sqlite' or 'postgresql'")
        return v

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "StagingConfig":
        """Require connection settings for the PostgreSQL backend."""
        if self.storage_type == "postgresql" and self.postgresql is None:
            raise ValueError("staging.postgresql must be set when storage_type is 'postgresql'")
        return self

    @property
    def sqlite_path(self) -> Path:
        """Full path of the SQLite staging file."""
        return Path(self.directory) / self.file_name


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    metrics_enabled: bool = Field(default=False, description="Enable Prometheus metrics")
    metrics_port: int = Field(
        default=8000,
        description="Port for Prometheus metrics endpoint",
        gt=0,
        lt=65536,
    )


class StorageAccountConfig(BaseModel):
    """One Azure storage account and the tables to purge in it."""

    name: str = Field(description="Storage account name")
    key_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing the account key (preferred)",
    )
    key: Optional[str] = Field(
        default=None,
        description="Account key (development only - use key_env in production)",
    )
    endpoint: Optional[str] = Field(
        default=None,
        description="Table service endpoint (null for https://<name>.table.core.windows.net)",
    )
    tables: list[str] = Field(description="Tables to purge", min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Azure account names are 3-24 lowercase letters and digits."""
        if not re.match(r"^[a-z0-9]{3,24}$", v):
            raise ValueError(f"Invalid storage account name: {v!r}")
        return v

    @field_validator("tables")
    @classmethod
    def validate_tables(cls, v: list[str]) -> list[str]:
        """Azure table names are alphanumeric, 3-63 chars, starting with a letter."""
        for table in v:
            if not re.match(r"^[A-Za-z][A-Za-z0-9]{2,62}$", table):
                raise ValueError(f"Invalid table name: {table!r}")
        return v

    @model_validator(mode="after")
    def validate_key_source(self) -> "StorageAccountConfig":
        """Validate that exactly one key source is provided."""
        if not self.key_env and not self.key:
            raise ValueError(
                f"Either 'key_env' or 'key' must be provided for storage account '{self.name}'."
            )
        if self.key_env and self.key:
            raise ValueError(
                f"Cannot specify both 'key_env' and 'key' for storage account '{self.name}'."
            )
        return self

    @property
    def table_endpoint(self) -> str:
        """Table service endpoint URL."""
        return self.endpoint or f"https://{self.name}.table.core.windows.net"

    def get_key(self) -> str:
        """Get the account key from environment variable or config file.

        Raises:
            ValueError: If the key cannot be retrieved
        """
        if self.key_env:
            key = os.getenv(self.key_env)
            if not key:
                raise ValueError(f"Environment variable {self.key_env} not set")
            return key
        if self.key:
            import warnings

            warnings.warn(
                f"Using account key from config file for storage account '{self.name}'. "
                f"This is not recommended for production. Use 'key_env' instead.",
                UserWarning,
                stacklevel=2,
            )
            return self.key
        raise ValueError("No account key source configured")


class PurgerConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(description="Configuration version")
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig, description="Global defaults")
    staging: StagingConfig = Field(default_factory=StagingConfig, description="Staging store")
    monitoring: MonitoringConfig = Field(
        default_factory=MonitoringConfig,
        description="Monitoring and metrics configuration",
    )
    storage_accounts: list[StorageAccountConfig] = Field(
        description="Storage accounts to purge, processed in order",
        min_length=1,
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v != "1.0":
            raise ValueError(f"Unsupported configuration version: {v}")
        return v


def load_config(config_path: Path) -> PurgerConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            context={"path": str(config_path)},
        ) from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

    if not raw_config:
        raise ConfigurationError(
            "Configuration file is empty",
            context={"path": str(config_path)},
        )

    try:
        config_data = _substitute_env_in_dict(raw_config)
        return PurgerConfig.model_validate(config_data)
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
