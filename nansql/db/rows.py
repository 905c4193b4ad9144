"""Result containers returned by executors."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError

from nansql.db.mapping import map_row
from nansql.exceptions import DatabaseError, NoRowsError, QueryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command that returns no rows."""

    rows_affected: int = 0
    last_insert_id: Optional[int] = None

    @classmethod
    def from_cursor(cls, result: CursorResult) -> "ExecResult":
        try:
            last_insert_id = result.lastrowid
        except (AttributeError, SQLAlchemyError):
            last_insert_id = None
        rows_affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
        result.close()
        return cls(rows_affected=rows_affected, last_insert_id=last_insert_id)


class Rows:
    """Forward-only cursor over the rows of a multi-row query.

    The connection behind the cursor stays checked out until the cursor is
    exhausted or closed, so always iterate to the end or call :meth:`close`
    (or use the cursor as a context manager).
    """

    def __init__(
        self,
        result: CursorResult,
        release: Optional[Callable[[bool], None]] = None,
        sql_query: Optional[str] = None,
    ) -> None:
        self._result = result
        self._release = release
        self._sql_query = sql_query
        self._returns_rows = result.returns_rows
        self._columns = list(result.keys()) if self._returns_rows else []
        self._closed = False
        if not self._returns_rows:
            # Commands give an empty cursor; hand the connection back now
            self.close()

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    @property
    def closed(self) -> bool:
        return self._closed

    def _fetch(self, fetch: Callable[[], Any], empty: Any) -> Any:
        if not self._returns_rows:
            return empty
        if self._closed:
            raise QueryError("rows: cursor is closed", "rows", self._sql_query)
        try:
            return fetch()
        except SQLAlchemyError as e:
            self._close_quietly()
            raise QueryError(f"rows: {e}", "rows", self._sql_query) from e

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        """Return the next row, or None after closing the cursor once exhausted."""
        row = self._fetch(self._result.fetchone, None)
        if row is None:
            self.close()
            return None
        return tuple(row)

    def fetchmany(self, size: int) -> List[Tuple[Any, ...]]:
        rows = self._fetch(lambda: self._result.fetchmany(size), [])
        if len(rows) < size:
            self.close()
        return [tuple(row) for row in rows]

    def fetchall(self) -> List[Tuple[Any, ...]]:
        rows = self._fetch(self._result.fetchall, [])
        self.close()
        return [tuple(row) for row in rows]

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        while True:
            row = self.fetchone()
            if row is None:
                return
            yield row

    def mappings(self) -> Iterator[Dict[str, Any]]:
        """Iterate the remaining rows as column-name dictionaries."""
        for row in self:
            yield dict(zip(self._columns, row))

    def scan(self, model: Any) -> Iterator[Any]:
        """Iterate the remaining rows mapped onto ``model``.

        Raises:
            MappingError: If a row does not fit ``model``.
        """
        for row in self:
            yield map_row(model, self._columns, row)

    def to_dataframe(self) -> pd.DataFrame:
        """Consume the remaining rows into a DataFrame."""
        rows = self.fetchall()
        return pd.DataFrame(rows, columns=self._columns) if rows else pd.DataFrame(columns=self._columns)

    def close(self) -> None:
        """Close the cursor and return its connection to the pool."""
        self._close(success=True)

    def _close(self, success: bool) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            try:
                self._result.close()
            finally:
                if self._release is not None:
                    self._release(success)
        except SQLAlchemyError as e:
            raise QueryError(f"rows: close failed: {e}", "rows", self._sql_query) from e

    def _close_quietly(self) -> None:
        try:
            self._close(success=False)
        except DatabaseError as e:
            logger.warning(f"Failed to release cursor after error: {e}")

    def __enter__(self) -> "Rows":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class Row:
    """Result of a query expected to return at most one row.

    Errors from running the query are held back until one of the scan
    methods is called.
    """

    def __init__(
        self,
        columns: Optional[Sequence[str]] = None,
        values: Optional[Sequence[Any]] = None,
        error: Optional[DatabaseError] = None,
        sql_query: Optional[str] = None,
    ) -> None:
        self._columns = list(columns or [])
        self._values = tuple(values) if values is not None else None
        self._error = error
        self._sql_query = sql_query

    @property
    def error(self) -> Optional[DatabaseError]:
        if self._error is not None:
            return self._error
        if self._values is None:
            return NoRowsError("scan: no rows in result set", "scan", self._sql_query)
        return None

    @property
    def columns(self) -> List[str]:
        if self._error is not None:
            raise self._error
        return list(self._columns)

    def scan(self) -> Tuple[Any, ...]:
        """Return the row's values.

        Raises:
            NoRowsError: If the query returned no rows.
            QueryError: If the query itself failed.
        """
        error = self.error
        if error is not None:
            raise error
        return self._values

    def map_scan(self) -> Dict[str, Any]:
        """Return the row as a column-name dictionary."""
        return dict(zip(self._columns, self.scan()))

    def scan_as(self, model: Any) -> Any:
        """Return the row mapped onto ``model``."""
        values = self.scan()
        return map_row(model, self._columns, values)
