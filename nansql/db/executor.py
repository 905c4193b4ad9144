"""Query executors sharing one query/command surface."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from nansql.context import Context, check_context
from nansql.db.mapping import map_row, map_rows, named_params
from nansql.db.placeholders import count_placeholders, rebind
from nansql.db.rows import ExecResult, Row, Rows
from nansql.exceptions import InvalidStateError, NoRowsError, QueryError

logger = logging.getLogger(__name__)

# Seconds between context checks while waiting on the pool or a running statement
POLL_INTERVAL = 0.05

# Dialects that can compile a statement without running it
_EXPLAIN_PREFIX: Dict[str, str] = {
    "sqlite": "EXPLAIN ",
}


def _poll_interval(ctx: Context) -> float:
    remaining = ctx.remaining()
    return POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)


class _Checkout:
    """Pool checkout run on a helper thread so the caller can give up on it.

    A connection that arrives after the caller gave up is returned to the
    pool straight away.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._abandoned = False
        self._connection: Optional[Connection] = None
        self._error: Optional[Exception] = None
        threading.Thread(target=self._run, name="nansql-checkout", daemon=True).start()

    def _run(self) -> None:
        try:
            connection = self._engine.connect()
        except Exception as e:
            self._error = e
            self._finished.set()
            return

        with self._lock:
            if not self._abandoned:
                self._connection = connection
                self._finished.set()
                return

        try:
            connection.close()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to return abandoned connection to pool: {e}")

    def wait(self, ctx: Context, operation: str) -> Connection:
        while not self._finished.wait(_poll_interval(ctx)):
            error = ctx.err(operation)
            if error is None:
                continue
            with self._lock:
                if self._connection is None:
                    self._abandoned = True
                    logger.debug(f"{operation}: gave up waiting for a pooled connection")
                    raise error
            break

        if self._error is not None:
            raise self._error
        return self._connection


def checkout(engine: Engine, ctx: Optional[Context], operation: str) -> Connection:
    """Check a connection out of ``engine``'s pool, waiting no longer than ``ctx`` allows.

    Raises:
        ContextCancelledError: If ``ctx`` is cancelled while waiting.
        DeadlineExceededError: If ``ctx`` expires while waiting.
        SQLAlchemyError: If the pool or driver fails to produce a connection.
    """
    if ctx is None:
        return engine.connect()
    check_context(ctx, operation)
    return _Checkout(engine).wait(ctx, operation)


def interrupt_connection(connection: Connection) -> bool:
    """Ask the driver to abort the statement running on ``connection``.

    Uses ``interrupt()`` (sqlite3) or ``cancel()`` (psycopg and friends) on
    the DBAPI connection. Returns False when the driver offers neither.
    """
    dbapi_connection = connection.connection.dbapi_connection
    for name in ("interrupt", "cancel"):
        method = getattr(dbapi_connection, name, None)
        if callable(method):
            method()
            return True
    return False


class _Watch:
    """Interrupts the statement on a connection once a context is done."""

    def __init__(self, connection: Connection, ctx: Optional[Context]) -> None:
        self._connection = connection
        self._ctx = ctx
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.fired = False

    def __enter__(self) -> "_Watch":
        if self._ctx is not None:
            self._thread = threading.Thread(target=self._watch, name="nansql-watch", daemon=True)
            self._thread.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        with self._lock:
            self._stopped.set()
        if self._thread is not None:
            self._thread.join()

    def _watch(self) -> None:
        while not self._stopped.wait(_poll_interval(self._ctx)):
            if not self._ctx.done:
                continue
            with self._lock:
                if self._stopped.is_set():
                    return
                try:
                    self.fired = interrupt_connection(self._connection)
                except Exception as e:
                    logger.warning(f"Failed to interrupt running statement: {e}")
            return


class _Lease:
    """A connection borrowed for the duration of one call.

    Owned leases came straight from the pool and are committed (or rolled
    back) and returned on release; borrowed leases belong to a transaction
    and are left alone.
    """

    def __init__(self, connection: Connection, owned: bool) -> None:
        self.connection = connection
        self.owned = owned

    def release(self, success: bool = True) -> None:
        if not self.owned or self.connection is None:
            return
        connection, self.connection = self.connection, None
        try:
            if success:
                connection.commit()
            else:
                connection.rollback()
        finally:
            connection.close()


class Executor(ABC):
    """Query and command operations against a SQLAlchemy engine.

    Subclasses decide where a call's connection comes from by implementing
    :meth:`_lease`. Positional ``args`` bind to driver-native placeholders;
    use :meth:`rebind` to turn ``?`` placeholders into the native form.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def paramstyle(self) -> str:
        return self._engine.dialect.paramstyle

    @abstractmethod
    def _lease(self, operation: str, ctx: Optional[Context] = None) -> _Lease:
        """Return the connection the call named ``operation`` runs on."""

    def _ensure_usable(self, operation: str) -> None:
        """Hook for subclasses that restrict when calls are allowed."""

    def _discard(self, lease: _Lease) -> None:
        try:
            lease.release(success=False)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to release connection after error: {e}")

    def _run(
        self,
        operation: str,
        sql: str,
        execute: Callable[[Connection], CursorResult],
        consume: Callable[[CursorResult], Any],
        ctx: Optional[Context],
    ) -> Any:
        self._ensure_usable(operation)
        check_context(ctx, operation)
        lease = self._lease(operation, ctx)
        watch = _Watch(lease.connection, ctx)
        try:
            with watch:
                result = execute(lease.connection)
                value = consume(result)
        except SQLAlchemyError as e:
            self._discard(lease)
            raise self._failure(operation, sql, e, watch, ctx) from e
        except BaseException:
            self._discard(lease)
            raise

        try:
            lease.release(success=True)
        except SQLAlchemyError as e:
            raise QueryError(f"{operation}: {e}", operation, sql) from e
        return value

    @staticmethod
    def _failure(
        operation: str,
        sql: str,
        error: SQLAlchemyError,
        watch: _Watch,
        ctx: Optional[Context],
    ) -> QueryError:
        if watch.fired and ctx is not None:
            ctx_error = ctx.err(operation)
            if ctx_error is not None:
                ctx_error.sql_query = sql
                return ctx_error
        return QueryError(f"{operation}: {error}", operation, sql)

    @staticmethod
    def _positional(sql: str, args: Sequence[Any]) -> Callable[[Connection], CursorResult]:
        if args:
            return lambda conn: conn.exec_driver_sql(sql, tuple(args))
        return lambda conn: conn.exec_driver_sql(sql)

    @staticmethod
    def _fetch_all(result: CursorResult) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        columns = list(result.keys())
        rows = [tuple(row) for row in result.fetchall()]
        return columns, rows

    @staticmethod
    def _fetch_first(result: CursorResult) -> Tuple[List[str], Optional[Tuple[Any, ...]]]:
        columns = list(result.keys())
        row = result.fetchone()
        result.close()
        return columns, tuple(row) if row is not None else None

    def query(self, sql: str, *args: Any, ctx: Optional[Context] = None) -> Rows:
        """Execute a query that returns rows.

        ``ctx`` bounds the pool checkout and the statement itself; rows
        fetched afterwards from the cursor are not watched.

        Returns:
            A :class:`Rows` cursor holding its connection until closed. A
            statement that returns no rows gives an empty, closed cursor.

        Raises:
            QueryError: If the query fails.
        """
        operation = "query"
        self._ensure_usable(operation)
        check_context(ctx, operation)
        lease = self._lease(operation, ctx)
        watch = _Watch(lease.connection, ctx)
        try:
            with watch:
                result = self._positional(sql, args)(lease.connection)
        except SQLAlchemyError as e:
            self._discard(lease)
            raise self._failure(operation, sql, e, watch, ctx) from e
        return Rows(result, release=lease.release, sql_query=sql)

    def query_row(self, sql: str, *args: Any, ctx: Optional[Context] = None) -> Row:
        """Execute a query that is expected to return at most one row.

        Errors are not raised here; they surface when the returned
        :class:`Row` is scanned.
        """
        try:
            columns, values = self._run(
                "query_row", sql, self._positional(sql, args), self._fetch_first, ctx
            )
        except InvalidStateError:
            raise
        except QueryError as e:
            return Row(error=e, sql_query=sql)
        return Row(columns, values, sql_query=sql)

    def exec(self, sql: str, *args: Any, ctx: Optional[Context] = None) -> ExecResult:
        """Execute a command that returns no rows (insert, update, delete, DDL).

        Raises:
            QueryError: If the command fails.
        """
        return self._run("exec", sql, self._positional(sql, args), ExecResult.from_cursor, ctx)

    def prepare(self, sql: str, ctx: Optional[Context] = None) -> "Statement":
        """Prepare a statement for repeated execution on this executor.

        On dialects that can compile without running (SQLite, via
        ``EXPLAIN``) the statement is checked here; elsewhere syntax errors
        surface on first use.

        Raises:
            QueryError: If the database rejects the statement.
        """
        operation = "prepare"
        self._ensure_usable(operation)
        check_context(ctx, operation)
        num_input = count_placeholders(sql, self.paramstyle)

        prefix = _EXPLAIN_PREFIX.get(self._engine.dialect.name)
        if prefix is not None and num_input is not None:
            explain = prefix + sql
            lease = self._lease(operation, ctx)
            try:
                lease.connection.exec_driver_sql(explain, (None,) * num_input).close()
            except SQLAlchemyError as e:
                self._discard(lease)
                raise QueryError(f"{operation}: {e}", operation, sql) from e
            self._discard(lease)

        return Statement(self, sql, num_input)

    def select(self, model: Any, sql: str, *args: Any, ctx: Optional[Context] = None) -> List[Any]:
        """Execute a query and map every row onto ``model``.

        Raises:
            QueryError: If the query fails.
            MappingError: If a row does not fit ``model``.
        """
        columns, rows = self._run("select", sql, self._positional(sql, args), self._fetch_all, ctx)
        return map_rows(model, columns, rows)

    def get(self, model: Any, sql: str, *args: Any, ctx: Optional[Context] = None) -> Any:
        """Execute a query and map its first row onto ``model``.

        Rows after the first are ignored.

        Raises:
            NoRowsError: If the query returned no rows.
            QueryError: If the query fails.
            MappingError: If the row does not fit ``model``.
        """
        columns, values = self._run("get", sql, self._positional(sql, args), self._fetch_first, ctx)
        if values is None:
            raise NoRowsError("get: no rows in result set", "get", sql)
        return map_row(model, columns, values)

    def rebind(self, sql: str) -> str:
        """Rewrite ``?`` placeholders into this engine's bind syntax."""
        return rebind(sql, self.paramstyle)

    def named_exec(self, sql: str, arg: Any, ctx: Optional[Context] = None) -> ExecResult:
        """Execute a command with ``:name`` placeholders bound from ``arg``.

        ``arg`` may be a mapping, a dataclass, a pydantic model or any object
        with attributes; a list of them runs the command once per item.
        """
        params = named_params(arg)
        return self._run(
            "named_exec",
            sql,
            lambda conn: conn.execute(text(sql), params),
            ExecResult.from_cursor,
            ctx,
        )


class SingleExecutor(Executor):
    """Runs each call on its own pooled connection, committed after the call."""

    def _lease(self, operation: str, ctx: Optional[Context] = None) -> _Lease:
        try:
            return _Lease(checkout(self._engine, ctx, operation), owned=True)
        except SQLAlchemyError as e:
            raise QueryError(f"{operation}: {e}", operation) from e


class Statement:
    """A statement prepared on an executor for repeated use.

    Each call runs the SQL through the executor, so a statement prepared on a
    transaction stops working once that transaction is closed. Argument
    counts are checked against the placeholders found at prepare time.
    """

    def __init__(self, executor: Executor, sql: str, num_input: Optional[int]) -> None:
        self.executor = executor
        self.sql = sql
        self.num_input = num_input
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check(self, operation: str, args: Sequence[Any]) -> None:
        if self._closed:
            raise InvalidStateError(f"{operation}: statement is closed", operation, "closed")
        if self.num_input is not None and len(args) != self.num_input:
            raise QueryError(
                f"{operation}: expected {self.num_input} arguments, got {len(args)}",
                operation,
                self.sql,
            )

    def query(self, *args: Any, ctx: Optional[Context] = None) -> Rows:
        self._check("query", args)
        return self.executor.query(self.sql, *args, ctx=ctx)

    def query_row(self, *args: Any, ctx: Optional[Context] = None) -> Row:
        try:
            self._check("query_row", args)
        except InvalidStateError:
            raise
        except QueryError as e:
            return Row(error=e, sql_query=self.sql)
        return self.executor.query_row(self.sql, *args, ctx=ctx)

    def exec(self, *args: Any, ctx: Optional[Context] = None) -> ExecResult:
        self._check("exec", args)
        return self.executor.exec(self.sql, *args, ctx=ctx)

    def select(self, model: Any, *args: Any, ctx: Optional[Context] = None) -> List[Any]:
        self._check("select", args)
        return self.executor.select(model, self.sql, *args, ctx=ctx)

    def get(self, model: Any, *args: Any, ctx: Optional[Context] = None) -> Any:
        self._check("get", args)
        return self.executor.get(model, self.sql, *args, ctx=ctx)

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
