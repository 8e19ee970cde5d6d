"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, require_env_vars
from .errors import ConfigurationError, InvalidSettingError, MissingConfigurationError
from .logging import configure_logging
from .reconciliation import ReconciliationConfig, get_reconciliation_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_database_uri,
    get_storage_config,
)

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidSettingError",
    "MissingConfigurationError",
    "ReconciliationConfig",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_database_config",
    "get_database_uri",
    "get_reconciliation_config",
    "get_storage_config",
    "require_env_vars",
]
