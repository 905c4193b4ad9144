"""Loading nansql configuration from YAML files.

A file either lists named databases under ``databases:`` or describes one
database at the top level (``driver``, ``dsn`` and the pool fields), which
is loaded as a database named ``default``. ``${VAR}`` and ``${VAR:-default}``
are expanded from the environment, and ``include:`` pulls in other files
(themselves allowed to include more) with lower priority than the includer.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from nansql.config.models import NanSQLConfig, EnvironmentSettings
from nansql.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAMES = (
    Path("nansql.yaml"),
    Path("nansql.yml"),
    Path("config") / "nansql.yaml",
)

# Name given to the database of a single-database file
SINGLE_DATABASE_NAME = "default"


class ConfigParser:
    """Configuration parser with environment variable interpolation."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    def __init__(self, env_settings: Optional[EnvironmentSettings] = None) -> None:
        self.env_settings = env_settings or EnvironmentSettings()

    def load_config(self, config_path: Optional[Union[str, Path]] = None) -> NanSQLConfig:
        """Load and validate configuration from a YAML file.

        Args:
            config_path: Path to configuration file. If None, the
                ``NANSQL_CONFIG_FILE`` variable and then the default
                locations are tried.

        Raises:
            ConfigurationError: If configuration is invalid or file not found.
        """
        config_file = self.find_config_file(config_path)

        try:
            raw_config = self._load_file(config_file, (config_file.resolve(),))
            if not raw_config:
                raise ConfigurationError(f"Configuration file '{config_file}' is empty")

            config = NanSQLConfig(**self._normalize(raw_config))
        except ConfigurationError:
            raise
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Error loading configuration: {e}") from e

        logger.debug(f"loaded {len(config.databases)} database(s) from {config_file}")
        return config

    def find_config_file(self, config_path: Optional[Union[str, Path]] = None) -> Path:
        """Resolve which configuration file to load.

        Raises:
            ConfigurationError: If no configuration file is found.
        """
        if config_path:
            path = Path(config_path)
            if path.exists():
                return path
            raise ConfigurationError(f"Configuration file '{config_path}' not found")

        if self.env_settings.config_file:
            path = Path(self.env_settings.config_file)
            if path.exists():
                return path
            logger.warning(f"NANSQL_CONFIG_FILE points at missing file '{path}', trying defaults")

        candidates = [Path.cwd() / name for name in DEFAULT_CONFIG_NAMES]
        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise ConfigurationError(
            f"No configuration file found in default locations: {[str(c) for c in candidates]}"
        )

    def _load_file(self, path: Path, chain: Tuple[Path, ...]) -> Dict[str, Any]:
        """Read one file, expand variables and merge its includes beneath it."""
        try:
            with open(path, 'r', encoding='utf-8') as file:
                data = yaml.safe_load(file)
        except FileNotFoundError as e:
            label = "Included file" if len(chain) > 1 else "Configuration file"
            raise ConfigurationError(f"{label} '{path}' not found") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in '{path}': {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file '{path}' must contain a mapping")

        data = self.expand(data)
        includes = data.pop('include', None)
        if includes is None:
            return data
        if not isinstance(includes, list):
            includes = [includes]

        merged: Dict[str, Any] = {}
        for include in includes:
            include_path = path.parent / include
            resolved = include_path.resolve()
            if resolved in chain:
                raise ConfigurationError(f"Circular include of '{include_path}'")
            merged = merge_configs(merged, self._load_file(include_path, chain + (resolved,)))

        # The including file wins over everything it includes
        return merge_configs(merged, data)

    @staticmethod
    def _normalize(config: Dict[str, Any]) -> Dict[str, Any]:
        """Wrap a single top-level database into the ``databases`` layout."""
        if 'databases' in config or not (config.keys() & {'driver', 'Driver'}):
            return config

        database = {key: value for key, value in config.items() if key != 'default_database'}
        return {'databases': {SINGLE_DATABASE_NAME: database}}

    def expand(self, value: Any) -> Any:
        """Expand environment variables in every string of ``value``.

        Raises:
            ConfigurationError: If a required environment variable is not set.
        """
        if isinstance(value, dict):
            return {key: self.expand(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.expand(item) for item in value]
        if isinstance(value, str):
            return self.ENV_VAR_PATTERN.sub(_replace_env_var, value)
        return value

    def validate_config_file(self, config_path: Union[str, Path]) -> bool:
        """Validate a configuration file.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        self.load_config(config_path)
        return True

    def create_sample_config(self, output_path: Union[str, Path]) -> None:
        """Write a sample configuration with a PostgreSQL and a SQLite database."""
        sample_config = {
            'databases': {
                'dev': {
                    'driver': 'postgres',
                    'dsn': 'app:${DEV_DB_PASSWORD:-dev_password}@localhost:5432/app_dev',
                    'max_open_connections': 10,
                    'max_idle_connections': 5,
                    'max_idle_duration': '5m',
                    'max_lifetime_duration': '1h',
                    'options': {
                        'connect_timeout': 10,
                    },
                },
                'local': {
                    'driver': 'sqlite',
                    'dsn': './local.db',
                },
            },
            'default_database': 'dev',
        }

        with open(output_path, 'w', encoding='utf-8') as file:
            yaml.safe_dump(sample_config, file, default_flow_style=False, sort_keys=False)


def _replace_env_var(match: "re.Match[str]") -> str:
    expression = match.group(1)
    if ':-' in expression:
        name, default = expression.split(':-', 1)
        return os.getenv(name.strip(), default.strip())

    name = expression.strip()
    value = os.getenv(name)
    if value is None:
        raise ConfigurationError(f"Required environment variable '{name}' is not set")
    return value


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge two configuration dictionaries, ``override`` winning."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


# Global configuration instance
_config_parser = ConfigParser()
_loaded_config: Optional[NanSQLConfig] = None


def get_config(config_path: Optional[Union[str, Path]] = None, reload: bool = False) -> NanSQLConfig:
    """Return the process-wide configuration, loading it on first use or when ``reload`` is set."""
    global _loaded_config

    if _loaded_config is None or reload:
        _loaded_config = _config_parser.load_config(config_path)

    return _loaded_config


def validate_config_file(config_path: Union[str, Path]) -> bool:
    """Validate a configuration file."""
    return _config_parser.validate_config_file(config_path)


def create_sample_config(output_path: Union[str, Path]) -> None:
    """Create a sample configuration file."""
    _config_parser.create_sample_config(output_path)
