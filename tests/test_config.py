"""Tests for configuration models and parsing."""

import os
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from nansql.config.models import DatabaseConfig, NanSQLConfig, parse_go_duration
from nansql.config.parser import ConfigParser, create_sample_config, get_config, validate_config_file
from nansql.exceptions import ConfigurationError


def _write_yaml(path: Path, content) -> Path:
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(content, f)
    return path


class TestDatabaseConfig:
    """Test the database configuration model."""

    def test_defaults_are_zero(self) -> None:
        config = DatabaseConfig(driver="sqlite", dsn=":memory:")

        assert config.max_idle_connections == 0
        assert config.max_open_connections == 0
        assert config.max_idle_duration == timedelta(0)
        assert config.max_lifetime_duration == timedelta(0)

    def test_accepts_go_style_names(self) -> None:
        config = DatabaseConfig.model_validate({
            'Driver': 'postgres',
            'DSN': 'app:secret@localhost/app',
            'MaxOpenConnections': 10,
            'MaxIdleConnections': 2,
            'MaxIdleDuration': 30,
            'MaxLifeTimeDuration': '01:00:00',
        })

        assert config.driver == 'postgres'
        assert config.max_open_connections == 10
        assert config.max_idle_connections == 2
        assert config.max_idle_duration == timedelta(seconds=30)
        assert config.max_lifetime_duration == timedelta(hours=1)

    @pytest.mark.parametrize("text, expected", [
        ("5m", timedelta(minutes=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("300ms", timedelta(milliseconds=300)),
        ("1.5s", timedelta(seconds=1.5)),
    ])
    def test_accepts_go_duration_strings(self, text: str, expected: timedelta) -> None:
        config = DatabaseConfig(driver="sqlite", dsn="x.db", max_idle_duration=text, max_lifetime_duration=text)

        assert config.max_idle_duration == expected
        assert config.max_lifetime_duration == expected

    def test_rejects_negative_go_duration(self) -> None:
        with pytest.raises(ValidationError, match="negative"):
            DatabaseConfig(driver="sqlite", dsn="x.db", max_idle_duration="-5m")

    def test_parse_go_duration(self) -> None:
        assert parse_go_duration("2h") == timedelta(hours=2)
        assert parse_go_duration(" 10s ") == timedelta(seconds=10)
        assert parse_go_duration("01:00:00") is None
        assert parse_go_duration("5 minutes") is None

    def test_is_immutable(self) -> None:
        config = DatabaseConfig(driver="sqlite", dsn=":memory:")
        with pytest.raises(ValidationError):
            config.driver = "postgres"

    def test_rejects_negative_values(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(driver="sqlite", dsn="x.db", max_open_connections=-1)
        with pytest.raises(ValidationError):
            DatabaseConfig(driver="sqlite", dsn="x.db", max_idle_duration=-5)

    def test_dsn_is_hidden_from_repr(self) -> None:
        config = DatabaseConfig(driver="postgres", dsn="app:secret@localhost/app")
        assert "secret" not in repr(config)


class TestNanSQLConfig:
    """Test the top-level configuration model."""

    def test_first_database_becomes_default(self) -> None:
        config = NanSQLConfig(databases={
            'main': DatabaseConfig(driver="sqlite", dsn="main.db"),
            'other': DatabaseConfig(driver="sqlite", dsn="other.db"),
        })

        assert config.default_database == 'main'
        assert config.get_database().dsn == "main.db"
        assert config.get_database('other').dsn == "other.db"

    def test_unknown_default_database(self) -> None:
        with pytest.raises(ValidationError):
            NanSQLConfig(databases={'main': DatabaseConfig(driver="sqlite")}, default_database='nope')

    def test_get_unknown_database(self) -> None:
        config = NanSQLConfig(databases={'main': DatabaseConfig(driver="sqlite")})
        with pytest.raises(ConfigurationError, match="Available databases"):
            config.get_database('nope')


class TestConfigParser:
    """Test YAML configuration loading."""

    def test_load_config(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'databases': {
                'local': {'driver': 'sqlite', 'dsn': 'local.db', 'max_open_connections': 4},
            },
        })

        config = ConfigParser().load_config(path)

        assert isinstance(config, NanSQLConfig)
        assert config.default_database == 'local'
        assert config.databases['local'].max_open_connections == 4

    def test_environment_variable_substitution(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'databases': {
                'pg': {'driver': 'postgres', 'dsn': 'app:${NANSQL_TEST_PASSWORD}@db/${NANSQL_TEST_DB:-app}'},
            },
        })

        with patch.dict(os.environ, {'NANSQL_TEST_PASSWORD': 'secret123'}):
            config = ConfigParser().load_config(path)

        assert config.databases['pg'].dsn == 'app:secret123@db/app'

    def test_missing_environment_variable(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'databases': {'pg': {'driver': 'postgres', 'dsn': '${NANSQL_TEST_UNSET_VARIABLE}'}},
        })
        os.environ.pop('NANSQL_TEST_UNSET_VARIABLE', None)

        with pytest.raises(ConfigurationError, match="NANSQL_TEST_UNSET_VARIABLE"):
            ConfigParser().load_config(path)

    def test_include_has_lower_priority(self, tmp_path: Path) -> None:
        _write_yaml(tmp_path / "base.yaml", {
            'databases': {
                'local': {'driver': 'sqlite', 'dsn': 'base.db', 'max_idle_connections': 2},
                'extra': {'driver': 'sqlite', 'dsn': 'extra.db'},
            },
        })
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'include': 'base.yaml',
            'databases': {'local': {'dsn': 'override.db'}},
            'default_database': 'local',
        })

        config = ConfigParser().load_config(path)

        assert config.databases['local'].dsn == 'override.db'
        assert config.databases['local'].max_idle_connections == 2
        assert 'extra' in config.databases

    def test_nested_includes(self, tmp_path: Path) -> None:
        _write_yaml(tmp_path / "common.yaml", {
            'databases': {'local': {'driver': 'sqlite', 'dsn': 'common.db', 'max_open_connections': 4}},
        })
        _write_yaml(tmp_path / "base.yaml", {
            'include': ['common.yaml'],
            'databases': {'local': {'dsn': 'base.db'}},
        })
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'include': 'base.yaml',
            'databases': {'local': {'max_idle_duration': '5m'}},
        })

        database = ConfigParser().load_config(path).databases['local']

        assert database.dsn == 'base.db'
        assert database.max_open_connections == 4
        assert database.max_idle_duration == timedelta(minutes=5)

    def test_circular_include(self, tmp_path: Path) -> None:
        _write_yaml(tmp_path / "a.yaml", {'include': 'b.yaml', 'databases': {}})
        _write_yaml(tmp_path / "b.yaml", {'include': 'a.yaml'})

        with pytest.raises(ConfigurationError, match="Circular include"):
            ConfigParser().load_config(tmp_path / "a.yaml")

    def test_missing_include(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {'include': 'absent.yaml', 'databases': {}})

        with pytest.raises(ConfigurationError, match="Included file"):
            ConfigParser().load_config(path)

    def test_single_database_file(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'Driver': 'sqlite',
            'DSN': 'app.db',
            'MaxLifeTimeDuration': '1h',
        })

        config = ConfigParser().load_config(path)

        assert list(config.databases) == ['default']
        assert config.default_database == 'default'
        assert config.get_database().dsn == 'app.db'
        assert config.get_database().max_lifetime_duration == timedelta(hours=1)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigParser().load_config(tmp_path / "absent.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding='utf-8')

        with pytest.raises(ConfigurationError, match="is empty"):
            ConfigParser().load_config(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("databases: [unclosed", encoding='utf-8')

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigParser().load_config(path)

    def test_validation_failure(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "nansql.yaml", {
            'databases': {'local': {'driver': 'sqlite', 'dsn': 'x.db', 'max_open_connections': -3}},
        })

        with pytest.raises(ConfigurationError, match="validation failed"):
            ConfigParser().load_config(path)

    def test_sample_config_is_loadable(self, tmp_path: Path) -> None:
        path = tmp_path / "sample.yaml"
        create_sample_config(path)

        config = ConfigParser().load_config(path)

        assert set(config.databases) == {'dev', 'local'}
        assert config.databases['dev'].max_lifetime_duration == timedelta(hours=1)

    def test_config_file_from_environment(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "elsewhere.yaml", {
            'databases': {'env': {'driver': 'sqlite', 'dsn': 'env.db'}},
        })

        with patch.dict(os.environ, {'NANSQL_CONFIG_FILE': str(path)}):
            config = ConfigParser().load_config()

        assert config.default_database == 'env'

    def test_default_location(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "config").mkdir()
        _write_yaml(tmp_path / "config" / "nansql.yaml", {
            'databases': {'cwd': {'driver': 'sqlite', 'dsn': 'cwd.db'}},
        })
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv('NANSQL_CONFIG_FILE', raising=False)

        assert ConfigParser().load_config().default_database == 'cwd'

    def test_no_config_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv('NANSQL_CONFIG_FILE', raising=False)

        with pytest.raises(ConfigurationError, match="No configuration file found"):
            ConfigParser().load_config()


class TestModuleHelpers:
    """Test the module-level configuration helpers."""

    def test_get_config_caches_until_reload(self, tmp_path: Path) -> None:
        first = _write_yaml(tmp_path / "first.yaml", {'databases': {'a': {'driver': 'sqlite', 'dsn': 'a.db'}}})
        second = _write_yaml(tmp_path / "second.yaml", {'databases': {'b': {'driver': 'sqlite', 'dsn': 'b.db'}}})

        loaded = get_config(first, reload=True)
        assert get_config(second) is loaded
        assert get_config(second, reload=True).default_database == 'b'

    def test_validate_config_file(self, tmp_path: Path) -> None:
        good = _write_yaml(tmp_path / "good.yaml", {'databases': {'a': {'driver': 'sqlite', 'dsn': 'a.db'}}})
        bad = _write_yaml(tmp_path / "bad.yaml", {'databases': {'a': {'driver': 'sqlite', 'max_idle_duration': -1}}})

        assert validate_config_file(good) is True
        with pytest.raises(ConfigurationError):
            validate_config_file(bad)
