# orgtree/tree/errors.py
"""
Error kinds raised by the mutation and query engines.

Every error carries the operation name and the entity ids involved so
callers can retry or report.
"""

from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

# SQLSTATE codes Postgres uses for retryable concurrency failures
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
TRANSIENT_SQLSTATES = {SERIALIZATION_FAILURE, DEADLOCK_DETECTED}


class TreeError(Exception):
    """Base exception for hierarchy errors."""

    def __init__(self, message: str, operation: Optional[str] = None, **context: Any):
        self.operation = operation
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "operation": self.operation,
            **self.context,
        }


class NotFound(TreeError):
    """Raised when a referenced entity does not exist or is not visible."""
    pass


class CycleViolation(TreeError):
    """Raised when a reparent would make a node its own ancestor."""
    pass


class ConstraintViolation(TreeError):
    """Raised when the store rejects a write (unique / foreign key). Not retried."""
    pass


class TransientStoreError(TreeError):
    """Raised on serialization conflicts or connectivity failures. Safe to retry."""
    pass


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_transient(exc: BaseException) -> bool:
    """True if a SQLAlchemy error is a retryable concurrency/connectivity failure."""
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    if _sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError)


def translate_store_error(exc: Exception, operation: str, **context: Any) -> TreeError:
    """
    Map a SQLAlchemy error onto the hierarchy error kinds.

    Args:
        exc: Error raised by the session
        operation: Operation name (create_node, reparent, ...)
        **context: Entity ids involved

    Returns:
        TreeError subclass instance (caller raises it)
    """
    if isinstance(exc, TreeError):
        return exc
    if is_transient(exc):
        return TransientStoreError(
            f"{operation} failed with a retryable store error: {exc}",
            operation=operation,
            **context,
        )
    if isinstance(exc, IntegrityError):
        return ConstraintViolation(
            f"{operation} rejected by store constraint: {exc.orig}",
            operation=operation,
            **context,
        )
    return TreeError(f"{operation} failed: {exc}", operation=operation, **context)
