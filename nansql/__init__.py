"""nansql: uniform query, scan and transaction interfaces over SQLAlchemy.

nansql provides:
- A connection manager owning one pooled engine, configured from plain data
- A single executor running each call on a pooled connection
- A transaction executor with the same query surface plus begin/commit/rollback
- Row mapping onto dataclasses, pydantic models and plain types
- YAML-based configuration and a small CLI
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Core exports
from nansql.exceptions import (
    NanSQLError,
    ConfigurationError,
    DatabaseError,
    ConnectionError,
    TransactionError,
    InvalidStateError,
    QueryError,
    NoRowsError,
    ContextCancelledError,
    DeadlineExceededError,
    MappingError,
)
from nansql.config.models import DatabaseConfig
from nansql.context import Context
from nansql.db import (
    ConnectionManager,
    SingleExecutor,
    Transaction,
    TransactionState,
    connect,
)

__all__ = [
    "__version__",
    "NanSQLError",
    "ConfigurationError",
    "DatabaseError",
    "ConnectionError",
    "TransactionError",
    "InvalidStateError",
    "QueryError",
    "NoRowsError",
    "ContextCancelledError",
    "DeadlineExceededError",
    "MappingError",
    "DatabaseConfig",
    "Context",
    "ConnectionManager",
    "SingleExecutor",
    "Transaction",
    "TransactionState",
    "connect",
]
