"""Tests for error classification."""

import asyncio

import httpx
import pytest

from dirmigrator.utils.errors import (
    AuthenticationError,
    ConflictError,
    DependencyCycleError,
    ErrorHandler,
    ErrorSeverity,
    ErrorType,
    LedgerCorruptError,
    PayloadRejectedError,
    RecoverableError,
    RetryExhaustedError,
    StructuralError,
    is_transient,
)


class TestIsTransient:
    """Tests for the retryable error predicate."""

    @pytest.mark.parametrize(
        "error",
        [
            RecoverableError("503"),
            httpx.ReadTimeout("slow"),
            asyncio.TimeoutError(),
            ConnectionResetError(),
        ],
    )
    def test_transient(self, error):
        assert is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            ConflictError("exists"),
            PayloadRejectedError("bad"),
            AuthenticationError("expired"),
            ValueError("nope"),
        ],
    )
    def test_not_transient(self, error):
        assert not is_transient(error)


class TestErrorHandler:
    """Tests for classification and the error log."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (RetryExhaustedError(3, RecoverableError("503")), ErrorType.TRANSIENT),
            (ConflictError("exists"), ErrorType.CONFLICT),
            (PayloadRejectedError("bad"), ErrorType.VALIDATION),
            (AuthenticationError("expired"), ErrorType.AUTHENTICATION),
            (LedgerCorruptError("bad ledger"), ErrorType.STRUCTURAL),
            (httpx.ConnectError("refused"), ErrorType.TRANSIENT),
            (RuntimeError("HTTP 429 Too Many Requests"), ErrorType.TRANSIENT),
            (ValueError("invalid displayName"), ErrorType.VALIDATION),
            (RuntimeError("boom"), ErrorType.UNKNOWN),
        ],
    )
    def test_classify(self, error, expected):
        assert ErrorHandler().classify_error(error) == expected

    @pytest.mark.parametrize(
        "error,key,expected",
        [
            (AuthenticationError("expired"), "u1", ErrorSeverity.CRITICAL),
            (LedgerCorruptError("bad ledger"), None, ErrorSeverity.CRITICAL),
            (RuntimeError("listing failed"), None, ErrorSeverity.HIGH),
            (RecoverableError("503"), None, ErrorSeverity.HIGH),
            (RecoverableError("503"), "u1", ErrorSeverity.MEDIUM),
            (httpx.ConnectError("refused"), "u1", ErrorSeverity.MEDIUM),
            (PayloadRejectedError("bad"), "u1", ErrorSeverity.LOW),
            (RetryExhaustedError(3, RecoverableError("503")), "u1", ErrorSeverity.LOW),
        ],
    )
    def test_classify_severity(self, error, key, expected):
        assert ErrorHandler().classify_severity(error, key) == expected

    def test_record_and_summary(self):
        handler = ErrorHandler()

        entry = handler.record(ConflictError("exists"), "groups", "g1")
        handler.record(RuntimeError("listing failed"), "users")

        assert entry["phase"] == "groups"
        assert entry["key"] == "g1"
        assert entry["error_type"] == "conflict"
        assert entry["severity"] == "low"
        summary = handler.get_error_summary()
        assert summary["total_errors"] == 2
        assert summary["error_counts"] == {"conflict": 1, "unknown": 1}
        assert [e["exception_type"] for e in summary["recent_errors"]] == [
            "ConflictError",
            "RuntimeError",
        ]
        assert summary["recent_errors"][1]["severity"] == "high"


class TestErrorTypes:
    """Tests for error payloads."""

    def test_retry_exhausted_message(self):
        error = RetryExhaustedError(4, RecoverableError("service unavailable"))

        assert str(error) == "gave up after 4 attempts: service unavailable"
        assert error.context == {"attempts": 4}

    def test_cycle_error_is_structural(self):
        error = DependencyCycleError(["a", "b", "a"])

        assert isinstance(error, StructuralError)
        assert "a -> b -> a" in str(error)
