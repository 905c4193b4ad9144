"""Transaction-bound executor."""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from nansql.context import Context, check_context
from nansql.db.executor import Executor, _Lease, checkout
from nansql.exceptions import InvalidStateError, TransactionError

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    """Transaction lifecycle states."""
    UNSTARTED = "unstarted"
    ACTIVE = "active"
    CLOSED = "closed"


class Transaction(Executor):
    """Executor whose calls all run inside one database transaction.

    The lifecycle is ``UNSTARTED --begin--> ACTIVE --commit|rollback--> CLOSED``.
    Query methods are only allowed while ``ACTIVE``; ``CLOSED`` is final, so
    ask the connection manager for a new transaction to start another one.
    A transaction must be driven by a single caller.

    Example:
        >>> tx = manager.get_transaction()
        >>> tx.begin()
        >>> try:
        ...     tx.exec("UPDATE accounts SET balance = balance - ? WHERE id = ?", 10, 1)
        ...     tx.commit()
        ... except DatabaseError:
        ...     tx.rollback()
        ...     raise
    """

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)
        self._state = TransactionState.UNSTARTED
        self._connection: Optional[Connection] = None
        self._transaction = None

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == TransactionState.ACTIVE

    def _ensure_usable(self, operation: str) -> None:
        if self._state != TransactionState.ACTIVE:
            raise InvalidStateError(
                f"{operation}: transaction is {self._state.value}",
                operation,
                self._state.value,
            )

    def _lease(self, operation: str, ctx: Optional[Context] = None) -> _Lease:
        self._ensure_usable(operation)
        return _Lease(self._connection, owned=False)

    def begin(self, ctx: Optional[Context] = None, isolation_level: Optional[str] = None) -> None:
        """Check out a connection and start the transaction on it.

        Args:
            ctx: Call context; bounds the wait for a pooled connection.
            isolation_level: Optional isolation level, e.g. ``"SERIALIZABLE"``.

        Raises:
            InvalidStateError: If the transaction was already begun.
            ContextCancelledError: If ``ctx`` is cancelled or expires before a
                connection is available. The state stays ``UNSTARTED``.
            TransactionError: If no connection is available or the driver
                refuses to begin.
        """
        operation = "begin"
        if self._state != TransactionState.UNSTARTED:
            raise InvalidStateError(
                f"{operation}: transaction is {self._state.value}",
                operation,
                self._state.value,
            )
        check_context(ctx, operation)

        connection = None
        try:
            connection = checkout(self._engine, ctx, operation)
            if isolation_level:
                connection.execution_options(isolation_level=isolation_level)
            self._transaction = connection.begin()
        except SQLAlchemyError as e:
            if connection is not None:
                connection.close()
            raise TransactionError(f"{operation}: {e}", operation) from e

        self._connection = connection
        self._state = TransactionState.ACTIVE
        logger.debug("transaction started")

    def _end(self, operation: str, commit: bool, ctx: Optional[Context]) -> None:
        self._ensure_usable(operation)
        check_context(ctx, operation)

        connection, transaction = self._connection, self._transaction
        self._connection = None
        self._transaction = None
        self._state = TransactionState.CLOSED

        try:
            if commit:
                transaction.commit()
            else:
                transaction.rollback()
        except SQLAlchemyError as e:
            raise TransactionError(f"{operation}: {e}", operation) from e
        finally:
            try:
                connection.close()
            except SQLAlchemyError as e:
                logger.warning(f"Failed to return transaction connection to pool: {e}")

        logger.debug(f"transaction finished with {operation}")

    def commit(self, ctx: Optional[Context] = None) -> None:
        """Commit the transaction and return its connection to the pool.

        Raises:
            InvalidStateError: If the transaction is not active.
            TransactionError: If the driver reports a commit failure.
        """
        self._end("commit", True, ctx)

    def rollback(self, ctx: Optional[Context] = None) -> None:
        """Roll back the transaction and return its connection to the pool.

        Raises:
            InvalidStateError: If the transaction is not active.
            TransactionError: If the driver reports a rollback failure.
        """
        self._end("rollback", False, ctx)

    def commit_and_close(self, ctx: Optional[Context] = None) -> None:
        """Commit the transaction; identical to :meth:`commit`."""
        self._end("commit", True, ctx)

    def rollback_and_close(self, ctx: Optional[Context] = None) -> None:
        """Roll back the transaction; identical to :meth:`rollback`."""
        self._end("rollback", False, ctx)

    def __enter__(self) -> "Transaction":
        if self._state == TransactionState.UNSTARTED:
            self.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._state != TransactionState.ACTIVE:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
