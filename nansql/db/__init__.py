"""Database connectivity and query execution."""

from nansql.db.connection import ConnectionManager, PoolStatus, build_url, connect
from nansql.db.executor import Executor, SingleExecutor, Statement
from nansql.db.rows import ExecResult, Row, Rows
from nansql.db.transaction import Transaction, TransactionState

__all__ = [
    # Connection management
    "ConnectionManager",
    "PoolStatus",
    "build_url",
    "connect",
    # Executors
    "Executor",
    "SingleExecutor",
    "Transaction",
    "TransactionState",
    "Statement",
    # Results
    "ExecResult",
    "Row",
    "Rows",
]
