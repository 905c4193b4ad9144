"""Pydantic models for nansql configuration."""

import re
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from nansql.exceptions import ConfigurationError

# Go time.Duration strings such as "300ms", "5m" or "1h30m"
_GO_DURATION = re.compile(r'^(-?)((?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+$')
_GO_DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')
_GO_UNIT_SECONDS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}


def parse_go_duration(value: str) -> Optional[timedelta]:
    """Parse a Go-style duration string; None when ``value`` is not one."""
    text = value.strip()
    match = _GO_DURATION.match(text)
    if not match:
        return None
    seconds = sum(
        float(amount) * _GO_UNIT_SECONDS[unit]
        for amount, unit in _GO_DURATION_PART.findall(text)
    )
    return timedelta(seconds=-seconds if match.group(1) else seconds)


class DatabaseConfig(BaseModel):
    """Connection parameters for one pooled database handle.

    Zero values for the pool fields leave the driver's default in place.
    Instances are immutable once built.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    driver: str = Field(default="", validation_alias=AliasChoices("driver", "Driver"))
    dsn: str = Field(default="", repr=False, validation_alias=AliasChoices("dsn", "DSN"))
    max_idle_connections: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("max_idle_connections", "MaxIdleConnections"),
        description="Connections kept open while idle",
    )
    max_open_connections: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("max_open_connections", "MaxOpenConnections"),
        description="Upper bound on connections checked out at once",
    )
    max_idle_duration: timedelta = Field(
        default=timedelta(0),
        validation_alias=AliasChoices("max_idle_duration", "MaxIdleDuration"),
        description="Idle time after which a pooled connection is discarded",
    )
    max_lifetime_duration: timedelta = Field(
        default=timedelta(0),
        validation_alias=AliasChoices("max_lifetime_duration", "MaxLifeTimeDuration"),
        description="Age after which a pooled connection is recycled",
    )
    options: Dict[str, Any] = Field(default_factory=dict)
    echo: bool = False

    @field_validator('max_idle_duration', 'max_lifetime_duration', mode='before')
    @classmethod
    def parse_duration(cls, v):
        """Accept Go-style strings ("5m", "1h30m") next to pydantic's formats."""
        if isinstance(v, str):
            parsed = parse_go_duration(v)
            if parsed is not None:
                return parsed
        return v

    @field_validator('max_idle_duration', 'max_lifetime_duration')
    @classmethod
    def validate_duration(cls, v):
        """Reject negative durations."""
        if v < timedelta(0):
            raise ValueError("Durations must not be negative")
        return v


class NanSQLConfig(BaseModel):
    """Main configuration model: a set of named databases."""
    databases: Dict[str, DatabaseConfig]
    default_database: Optional[str] = None

    @model_validator(mode='after')
    def validate_default_database(self):
        """Ensure default_database exists in databases."""
        if self.default_database and self.default_database not in self.databases:
            raise ValueError(f"default_database '{self.default_database}' not found in databases")
        return self

    @model_validator(mode='after')
    def set_default_database(self):
        """Set default database if not specified."""
        if not self.default_database and self.databases:
            self.default_database = next(iter(self.databases))
        return self

    def get_database(self, name: Optional[str] = None) -> DatabaseConfig:
        """Return the named database config, or the default one."""
        name = name or self.default_database
        if not name or name not in self.databases:
            available = list(self.databases.keys())
            raise ConfigurationError(
                f"Database '{name}' not found in configuration. "
                f"Available databases: {available}"
            )
        return self.databases[name]


class EnvironmentSettings(BaseSettings):
    """Environment-specific settings."""
    model_config = SettingsConfigDict(env_prefix="NANSQL_", case_sensitive=False)

    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)
    config_file: Optional[str] = Field(default=None)
