"""Core exceptions for nansql."""

from typing import Any, Dict, Optional


class NanSQLError(Exception):
    """Base exception for all nansql errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(NanSQLError):
    """Raised when there's an error in configuration parsing or validation."""
    pass


class DatabaseError(NanSQLError):
    """Raised when the underlying database driver reports a failure."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.operation = operation


class ConnectionError(DatabaseError):
    """Raised when the connection pool cannot be opened or pinged."""
    pass


class TransactionError(DatabaseError):
    """Raised when beginning, committing or rolling back a transaction fails."""
    pass


class InvalidStateError(TransactionError):
    """Raised when an object is used outside the state that permits the call."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, operation, details)
        self.state = state


class QueryError(DatabaseError):
    """Raised when a query or command fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        sql_query: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, operation, details)
        self.sql_query = sql_query


class NoRowsError(QueryError):
    """Raised when a query expected to return one row returned none."""
    pass


class ContextCancelledError(QueryError):
    """Raised when the call context was cancelled before the driver was reached."""
    pass


class DeadlineExceededError(ContextCancelledError):
    """Raised when the call context's deadline has passed."""
    pass


class MappingError(DatabaseError):
    """Raised when result rows cannot be mapped onto the destination."""

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        column: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, "scan", details)
        self.target = target
        self.column = column
