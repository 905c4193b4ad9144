"""Configuration management for nansql."""

from nansql.config.models import (
    DatabaseConfig,
    NanSQLConfig,
    EnvironmentSettings,
)
from nansql.config.parser import (
    ConfigParser,
    get_config,
    validate_config_file,
    create_sample_config,
)

__all__ = [
    # Models
    "DatabaseConfig",
    "NanSQLConfig",
    "EnvironmentSettings",
    # Parser
    "ConfigParser",
    "get_config",
    "validate_config_file",
    "create_sample_config",
]
