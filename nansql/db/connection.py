"""Connection manager owning the pooled SQLAlchemy engine."""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.exc import ArgumentError, DisconnectionError, SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from nansql.config.models import DatabaseConfig
from nansql.db.executor import SingleExecutor
from nansql.db.transaction import Transaction
from nansql.exceptions import ConfigurationError, ConnectionError

logger = logging.getLogger(__name__)

# Driver names as used by database/sql style configs, mapped to SQLAlchemy dialects
DRIVER_ALIASES: Dict[str, str] = {
    "postgres": "postgresql",
    "pgx": "postgresql",
    "sqlite3": "sqlite",
    "sqlserver": "mssql+pyodbc",
    "mssql": "mssql+pyodbc",
}

_MEMORY_DATABASES = ("", ":memory:")


def build_url(driver: str, dsn: str) -> URL:
    """Resolve a driver name and DSN into a SQLAlchemy URL.

    A DSN containing ``://`` is taken as a complete URL. Otherwise the driver
    names the dialect and the DSN is everything after ``dialect://``; for
    SQLite it is the database file path, ``:memory:`` for an in-memory one.

    Raises:
        ConfigurationError: If the URL cannot be parsed.
    """
    try:
        if "://" in dsn:
            return make_url(dsn)

        dialect = DRIVER_ALIASES.get(driver.strip().lower(), driver.strip().lower())
        if dialect.split("+")[0] == "sqlite":
            database = None if dsn in _MEMORY_DATABASES else dsn
            return URL.create(dialect, database=database)
        return make_url(f"{dialect}://{dsn}")
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid DSN for driver '{driver}': {e}") from e


@dataclass(frozen=True)
class PoolStatus:
    """Pool limits and live counters reported by a connection manager."""

    pool_class: str
    max_open: Optional[int] = None
    max_idle: Optional[int] = None
    idle_timeout: Optional[timedelta] = None
    lifetime: Optional[timedelta] = None
    size: Optional[int] = None
    checked_in: Optional[int] = None
    checked_out: Optional[int] = None
    overflow: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pool_class': self.pool_class,
            'max_open': self.max_open,
            'max_idle': self.max_idle,
            'idle_timeout': self.idle_timeout,
            'lifetime': self.lifetime,
            'size': self.size,
            'checked_in': self.checked_in,
            'checked_out': self.checked_out,
            'overflow': self.overflow,
        }


class ConnectionManager:
    """Owns one pooled database handle and hands out executors bound to it.

    Example:
        >>> config = DatabaseConfig(driver="postgres", dsn="app:secret@db/app", max_open_connections=10)
        >>> with ConnectionManager(config) as manager:
        ...     rows = manager.get_single_executor().select(dict, "SELECT id, name FROM users")
    """

    def __init__(self, config: DatabaseConfig) -> None:
        """Validate ``config``, open the pool and ping the database.

        Raises:
            ConfigurationError: If the driver or DSN is missing or malformed.
            ConnectionError: If the pool cannot be opened or the ping fails.
        """
        if not config.driver or not config.driver.strip():
            raise ConfigurationError("Database driver must not be empty")
        if not config.dsn or not config.dsn.strip():
            raise ConfigurationError("Database DSN must not be empty")

        self.config = config
        self.url = build_url(config.driver, config.dsn)
        self._engine = self._create_engine()
        self._ping()
        logger.info(f"connected to {self.dialect} database")

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @property
    def engine(self) -> Engine:
        return self._engine

    def _is_memory_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite" and self.url.database in (None, *_MEMORY_DATABASES)

    def _pool_options(self) -> Dict[str, Any]:
        """Translate the pool fields into engine arguments, skipping zero values."""
        options: Dict[str, Any] = {}
        max_open = self.config.max_open_connections
        max_idle = self.config.max_idle_connections

        if max_open and max_idle:
            options['pool_size'] = min(max_idle, max_open)
            options['max_overflow'] = max_open - options['pool_size']
        elif max_open:
            options['pool_size'] = max_open
            options['max_overflow'] = 0
        elif max_idle:
            options['pool_size'] = max_idle

        if self.config.max_lifetime_duration:
            options['pool_recycle'] = max(1, int(self.config.max_lifetime_duration.total_seconds()))

        return options

    def _create_engine(self) -> Engine:
        engine_args: Dict[str, Any] = {'echo': self.config.echo}
        connect_args = dict(self.config.options)

        if self.url.get_backend_name() == "sqlite":
            connect_args.setdefault('check_same_thread', False)

        self._pool_settings = self._pool_options()
        if self._is_memory_sqlite():
            # One shared connection, otherwise every checkout sees a fresh empty database
            engine_args['poolclass'] = StaticPool
            if self._pool_settings or self.config.max_idle_duration:
                logger.warning("Pool sizing is ignored for in-memory SQLite databases")
            self._pool_settings = {}
        else:
            engine_args.update(self._pool_settings)

        if connect_args:
            engine_args['connect_args'] = connect_args

        try:
            engine = create_engine(self.url, **engine_args)
        except ArgumentError as e:
            raise ConfigurationError(f"Unsupported driver '{self.config.driver}': {e}") from e
        except (SQLAlchemyError, ImportError) as e:
            raise ConnectionError(f"Failed to create database engine: {e}", "connect") from e

        if self.config.max_idle_duration and not self._is_memory_sqlite():
            self._register_idle_timeout(engine, self.config.max_idle_duration.total_seconds())

        return engine

    @staticmethod
    def _register_idle_timeout(engine: Engine, max_idle_seconds: float) -> None:
        """Discard pooled connections that sat idle longer than ``max_idle_seconds``."""

        @event.listens_for(engine, "checkin")
        def on_checkin(dbapi_conn, connection_record):
            if dbapi_conn is not None:
                connection_record.info['checked_in_at'] = time.monotonic()

        @event.listens_for(engine, "checkout")
        def on_checkout(dbapi_conn, connection_record, connection_proxy):
            checked_in_at = connection_record.info.get('checked_in_at')
            if checked_in_at is not None and time.monotonic() - checked_in_at > max_idle_seconds:
                # The pool invalidates the connection and retries with a fresh one
                raise DisconnectionError("connection exceeded max idle duration")

    def _ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"failed to connect to {self.dialect} database: {e}")
            self._engine.dispose()
            raise ConnectionError(f"Failed to connect to database: {e}", "connect") from e

    def close(self) -> None:
        """Close every pooled connection."""
        logger.info(f"closing {self.dialect} connection")
        self._engine.dispose()

    def get_single_executor(self) -> SingleExecutor:
        """Return an executor that runs each call on its own pooled connection."""
        return SingleExecutor(self._engine)

    def get_transaction(self) -> Transaction:
        """Return a new, unstarted transaction bound to the pool."""
        return Transaction(self._engine)

    def pool_status(self) -> PoolStatus:
        """Report the pool's limits and, where the pool exposes them, its counters.

        ``max_open`` is None when the overflow limit was left at the pool's
        own default.
        """
        pool = self._engine.pool
        idle_timeout = self.config.max_idle_duration or None
        lifetime = self.config.max_lifetime_duration or None

        if isinstance(pool, QueuePool):
            max_overflow = self._pool_settings.get('max_overflow')
            checked_in = pool.checkedin()
            checked_out = pool.checkedout()
            return PoolStatus(
                pool_class=type(pool).__name__,
                max_open=pool.size() + max_overflow if max_overflow is not None else None,
                max_idle=pool.size(),
                idle_timeout=idle_timeout,
                lifetime=lifetime,
                size=checked_in + checked_out,
                checked_in=checked_in,
                checked_out=checked_out,
                overflow=pool.overflow(),
            )

        return PoolStatus(
            pool_class=type(pool).__name__,
            idle_timeout=idle_timeout,
            lifetime=lifetime,
        )

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def connect(config: DatabaseConfig) -> ConnectionManager:
    """Open a connection manager for ``config``."""
    return ConnectionManager(config)
