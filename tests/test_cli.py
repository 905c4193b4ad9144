"""Tests for CLI commands."""

import json
import re
from pathlib import Path

import pytest
from click.testing import CliRunner

from nansql.cli.main import cli
from nansql.config import create_sample_config
from nansql.config.models import DatabaseConfig
from nansql.db.connection import ConnectionManager


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')
    return ansi_escape.sub('', text)


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Create a SQLite database with a ``users`` table."""
    db_path = tmp_path / "cli.db"
    with ConnectionManager(DatabaseConfig(driver="sqlite", dsn=str(db_path))) as manager:
        executor = manager.get_single_executor()
        executor.exec("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT)")
        executor.named_exec(
            "INSERT INTO users (name, email) VALUES (:name, :email)",
            [
                {'name': 'Alice Johnson', 'email': 'alice@example.com'},
                {'name': 'Bob Smith', 'email': 'bob@example.com'},
                {'name': 'Carol Davis', 'email': None},
            ],
        )
    return db_path


@pytest.fixture
def temp_config(tmp_path: Path, temp_db: Path) -> Path:
    """Write a configuration file pointing at ``temp_db``."""
    config_path = tmp_path / "nansql.yaml"
    config_path.write_text(
        f"""
databases:
  test:
    driver: sqlite
    dsn: {temp_db}
    max_open_connections: 3
    max_idle_connections: 1
  broken:
    driver: sqlite
    dsn: {tmp_path / 'missing' / 'broken.db'}

default_database: test
""",
        encoding='utf-8',
    )
    return config_path


class TestConfigCommands:
    """Test the config command group."""

    def test_sample_and_validate(self, tmp_path: Path) -> None:
        runner = CliRunner()
        output_file = tmp_path / "sample.yaml"

        result = runner.invoke(cli, ['config', 'sample', str(output_file)])
        assert result.exit_code == 0
        assert output_file.exists()

        result = runner.invoke(cli, ['config', 'validate', str(output_file)])
        output = strip_ansi(result.output)
        assert result.exit_code == 0
        assert 'is valid' in output
        assert 'Found 2 database(s)' in output

    def test_validate_rejects_bad_file(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text("databases:\n  x:\n    driver: sqlite\n    max_open_connections: -1\n", encoding='utf-8')

        result = CliRunner().invoke(cli, ['config', 'validate', str(bad)])

        assert result.exit_code == 1
        assert 'validation failed' in strip_ansi(result.output)

    def test_sample_refuses_overwrite_without_confirmation(self, tmp_path: Path) -> None:
        existing = tmp_path / "existing.yaml"
        create_sample_config(existing)
        before = existing.read_text(encoding='utf-8')

        result = CliRunner().invoke(cli, ['config', 'sample', str(existing)], input='n\n')

        assert result.exit_code != 0
        assert existing.read_text(encoding='utf-8') == before


class TestDatabaseCommands:
    """Test the db command group against a SQLite file."""

    def test_ping(self, temp_config: Path) -> None:
        result = CliRunner().invoke(cli, ['--config', str(temp_config), 'db', 'ping'])

        assert result.exit_code == 0
        assert "Connected to sqlite database 'test'" in strip_ansi(result.output)

    def test_ping_unreachable_database(self, temp_config: Path) -> None:
        result = CliRunner().invoke(cli, ['--config', str(temp_config), 'db', 'ping', '-d', 'broken'])

        assert result.exit_code == 1
        assert 'Error' in strip_ansi(result.output)

    def test_unknown_database(self, temp_config: Path) -> None:
        result = CliRunner().invoke(cli, ['--config', str(temp_config), '--db', 'nope', 'db', 'ping'])

        assert result.exit_code == 1
        assert 'Configuration Error' in strip_ansi(result.output)

    def test_pool(self, temp_config: Path) -> None:
        result = CliRunner().invoke(cli, ['--config', str(temp_config), 'db', 'pool'])
        output = strip_ansi(result.output)

        assert result.exit_code == 0
        assert 'Connection Pool: test' in output
        assert 'QueuePool' in output

    def test_query_table(self, temp_config: Path) -> None:
        result = CliRunner().invoke(
            cli,
            ['--config', str(temp_config), 'db', 'query', 'SELECT name FROM users WHERE id > ? ORDER BY id', '1'],
        )
        output = strip_ansi(result.output)

        assert result.exit_code == 0
        assert 'Bob Smith' in output
        assert 'Carol Davis' in output
        assert 'Alice Johnson' not in output
        assert '2 row(s)' in output

    def test_query_json(self, temp_config: Path) -> None:
        result = CliRunner().invoke(
            cli,
            ['--config', str(temp_config), '--output', 'json', 'db', 'query', 'SELECT id, name FROM users ORDER BY id'],
        )

        assert result.exit_code == 0
        output = strip_ansi(result.output)
        records = json.loads(output[output.index('['):])
        assert [record['name'] for record in records] == ['Alice Johnson', 'Bob Smith', 'Carol Davis']

    def test_query_error(self, temp_config: Path) -> None:
        result = CliRunner().invoke(cli, ['--config', str(temp_config), 'db', 'query', 'SELECT * FROM nowhere'])

        assert result.exit_code == 1
        assert 'no such table' in strip_ansi(result.output)

    def test_exec(self, temp_config: Path, temp_db: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(
            cli,
            ['--config', str(temp_config), 'db', 'exec', 'UPDATE users SET email = ? WHERE email IS NULL', 'x@example.com'],
        )

        assert result.exit_code == 0
        assert '1 row(s) affected' in strip_ansi(result.output)

        with ConnectionManager(DatabaseConfig(driver="sqlite", dsn=str(temp_db))) as manager:
            email = manager.get_single_executor().get(str, "SELECT email FROM users WHERE name = 'Carol Davis'")
        assert email == 'x@example.com'
