"""
Exception hierarchy for the gamification engine

Every error carries the operation it came from, the user it concerns and a
context dict for structured logging. Nothing is logged here; the caller that
handles an error decides whether to log it.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psycopg
from psycopg_pool import PoolTimeout


class GoalTrackerError(Exception):
    """
    Base exception for all goal tracker errors

    Example:
        raise GoalTrackerError(
            "Failed to apply XP",
            user_id="user-123",
            operation="increment_user_xp",
            context={"delta": 20}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.operation = operation
        self.context = dict(context or {})
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def _merge_context(self, **details: Any) -> None:
        for key, value in details.items():
            self.context.setdefault(key, value)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for log records and API error bodies"""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "operation": self.operation,
            "user_id": self.user_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Caller errors
# ==========================================

class ValidationError(GoalTrackerError):
    """
    Input the engine cannot act on: an unknown XP action or difficulty, a
    condition kind outside the closed set, a non-positive XP delta.
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self._merge_context(field=field, value=value)


class NotFoundError(GoalTrackerError):
    """Requested record (usually the user) does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.record_type = record_type
        self.record_id = record_id
        self._merge_context(record_type=record_type, record_id=record_id)


class ConfigurationError(GoalTrackerError):
    """Missing or invalid setting, or an unusable achievement catalog"""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self._merge_context(config_key=config_key)


# ==========================================
# Storage errors
# ==========================================

class StorageError(GoalTrackerError):
    """Storage collaborator failed; the engine propagates it without retrying"""


class ConnectionError(StorageError):
    """Could not reach the database or borrow a pooled connection"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(message, **kwargs)


class QueryError(StorageError):
    """Statement reached the database and was rejected"""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.query = query
        self._merge_context(query=query)


def wrap_storage_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> StorageError:
    """
    Map a driver exception onto the StorageError tree

    Pool timeouts and psycopg.OperationalError mean the database was not
    reachable; any other psycopg.Error is a rejected statement.

    Usage:
        except psycopg.Error as e:
            raise wrap_storage_exception(e, "increment_user_xp", user_id) from e
    """
    details = dict(user_id=user_id, operation=operation, context=context, cause=error)

    if isinstance(error, (psycopg.OperationalError, PoolTimeout)):
        return ConnectionError(f"Database connection failed: {error}", **details)
    if isinstance(error, psycopg.Error):
        return QueryError(f"Database query failed: {error}", **details)
    return StorageError(f"{operation} failed: {error}", **details)
