"""Unit tests for custom exception hierarchy"""
from datetime import datetime

import psycopg
from psycopg_pool import PoolTimeout

from goaltracker.exceptions import (
    GoalTrackerError,
    ValidationError,
    NotFoundError,
    StorageError,
    ConnectionError,
    QueryError,
    ConfigurationError,
    wrap_storage_exception,
)


class TestGoalTrackerError:
    """Test base exception class"""

    def test_basic_exception(self):
        """Test basic exception creation"""
        error = GoalTrackerError("Test error")
        assert error.message == "Test error"
        assert error.context == {}
        assert error.cause is None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        """Test exception with full context"""
        error = GoalTrackerError(
            message="XP increment failed",
            user_id="user-123",
            operation="increment_user_xp",
            context={"delta": 20}
        )
        assert error.user_id == "user-123"
        assert error.operation == "increment_user_xp"
        assert error.context["delta"] == 20

    def test_to_dict(self):
        """Test exception serialization"""
        error_dict = GoalTrackerError(
            "Test error", user_id="user-123", operation="award", context={"amount": 10}
        ).to_dict()

        assert error_dict["error"] == "GoalTrackerError"
        assert error_dict["message"] == "Test error"
        assert error_dict["user_id"] == "user-123"
        assert error_dict["operation"] == "award"
        assert error_dict["context"] == {"amount": 10}
        assert "timestamp" in error_dict


class TestDomainErrors:
    """Test validation, lookup and configuration errors"""

    def test_validation_error(self):
        """Test field and value are kept"""
        error = ValidationError("Unknown difficulty", field="difficulty", value="legendary")

        assert isinstance(error, GoalTrackerError)
        assert error.field == "difficulty"
        assert error.value == "legendary"
        assert error.context == {"field": "difficulty", "value": "legendary"}

    def test_not_found_error(self):
        """Test record type and id join the context"""
        error = NotFoundError("User ghost not found", record_type="User", record_id="ghost")

        assert error.record_id == "ghost"
        assert error.context == {"record_type": "User", "record_id": "ghost"}

    def test_caller_context_is_kept(self):
        """Test typed fields do not overwrite caller context"""
        error = NotFoundError("missing", record_type="User", context={"record_type": "Account", "source": "ledger"})

        assert error.context == {"record_type": "Account", "source": "ledger", "record_id": None}

    def test_configuration_error(self):
        """Test config key is kept"""
        error = ConfigurationError("bad", config_key="STREAK_LOOKBACK_DAYS")

        assert error.config_key == "STREAK_LOOKBACK_DAYS"


class TestStorageErrors:
    """Test storage error hierarchy"""

    def test_hierarchy(self):
        """Test connection and query errors are storage errors"""
        assert issubclass(ConnectionError, StorageError)
        assert issubclass(QueryError, StorageError)

    def test_query_error_merges_context(self):
        """Test the query joins caller context"""
        error = QueryError("failed", query="SELECT 1", context={"user": "u"})

        assert error.context == {"user": "u", "query": "SELECT 1"}

    def test_wrap_operational_error(self):
        """Test driver connection failures map to ConnectionError"""
        original = psycopg.OperationalError("server closed the connection")

        wrapped = wrap_storage_exception(original, operation="increment_user_xp", user_id="user-123")

        assert isinstance(wrapped, ConnectionError)
        assert wrapped.cause is original
        assert wrapped.operation == "increment_user_xp"

    def test_wrap_pool_timeout(self):
        """Test pool exhaustion maps to ConnectionError"""
        wrapped = wrap_storage_exception(PoolTimeout("timeout"), operation="get_user_total_xp")

        assert isinstance(wrapped, ConnectionError)

    def test_wrap_query_error(self):
        """Test other driver errors map to QueryError"""
        wrapped = wrap_storage_exception(
            psycopg.errors.UniqueViolation("duplicate key"),
            operation="seed_achievements",
            context={"count": 16},
        )

        assert isinstance(wrapped, QueryError)
        assert wrapped.context["count"] == 16

    def test_wrap_unknown_error(self):
        """Test non-driver errors fall back to StorageError"""
        wrapped = wrap_storage_exception(RuntimeError("boom"), operation="save_user_streak")

        assert type(wrapped) is StorageError
        assert "save_user_streak" in wrapped.message
