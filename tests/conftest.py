"""Shared fixtures for nansql tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from nansql.config.models import DatabaseConfig
from nansql.db.connection import ConnectionManager


@pytest.fixture
def sqlite_config(tmp_path: Path) -> DatabaseConfig:
    """Configuration for a SQLite database file in a temporary directory."""
    return DatabaseConfig(driver="sqlite", dsn=str(tmp_path / "nansql_test.db"))


@pytest.fixture
def manager(sqlite_config: DatabaseConfig) -> ConnectionManager:
    """Connection manager with a small ``items`` table."""
    manager = ConnectionManager(sqlite_config)
    executor = manager.get_single_executor()
    executor.exec(
        "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "name TEXT NOT NULL UNIQUE, price REAL, active INTEGER DEFAULT 1)"
    )
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def seeded(manager: ConnectionManager) -> ConnectionManager:
    """Connection manager whose ``items`` table holds three rows."""
    executor = manager.get_single_executor()
    for name, price in [("apple", 1.5), ("banana", 0.25), ("cherry", 4.0)]:
        executor.exec("INSERT INTO items (name, price) VALUES (?, ?)", name, price)
    return manager
