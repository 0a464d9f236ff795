"""Error taxonomy and centralized error handling."""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from dirmigrator.logging import get_logger


class ErrorType(str, Enum):
    """Error type classification."""

    TRANSIENT = "transient"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    STRUCTURAL = "structural"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Error severity levels."""

    CRITICAL = "critical"  # Abort the run
    HIGH = "high"  # Fail the phase
    MEDIUM = "medium"  # Retried with backoff
    LOW = "low"  # Recorded on the object


class MigrationError(Exception):
    """Base exception for migration errors."""

    error_type = ErrorType.UNKNOWN
    severity = ErrorSeverity.LOW

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize migration error.

        Args:
            message: Error message
            context: Additional context
        """
        super().__init__(message)
        self.context = context or {}


class RecoverableError(MigrationError):
    """Transient error (network, rate limit, timeout) that may succeed on retry."""

    error_type = ErrorType.TRANSIENT
    severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        """Initialize recoverable error.

        Args:
            message: Error message
            context: Additional context
            retry_after: Seconds the server asked us to wait
        """
        super().__init__(message, context)
        self.retry_after = retry_after


class ConflictError(MigrationError):
    """The destination object already exists."""

    error_type = ErrorType.CONFLICT


class PayloadRejectedError(MigrationError):
    """The destination rejected the payload, or it could not be built."""

    error_type = ErrorType.VALIDATION


class AuthenticationError(MigrationError):
    """The session was refused by the directory service."""

    error_type = ErrorType.AUTHENTICATION
    severity = ErrorSeverity.CRITICAL


class RetryExhaustedError(MigrationError):
    """A transient failure persisted through every allowed attempt."""

    error_type = ErrorType.TRANSIENT

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"gave up after {attempts} attempts: {last_error}",
            {"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


class StructuralError(MigrationError):
    """Ledger or pipeline structure is unusable; nothing can safely run."""

    error_type = ErrorType.STRUCTURAL
    severity = ErrorSeverity.CRITICAL


class LedgerNotFoundError(StructuralError):
    """No ledger exists at the given path."""


class LedgerExistsError(StructuralError):
    """A ledger already exists where a new run was requested."""


class LedgerCorruptError(StructuralError):
    """The ledger exists but cannot be parsed or validated."""


class DependencyCycleError(StructuralError):
    """The phase dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]) -> None:
        super().__init__(
            f"phase dependency cycle: {' -> '.join(cycle)}",
            {"cycle": cycle},
        )
        self.cycle = cycle


class UnregisteredPhaseError(StructuralError):
    """A phase references a phase or processor that was never registered."""


class DuplicatePhaseError(StructuralError):
    """A phase name was registered twice."""


TRANSIENT_EXCEPTIONS = (
    RecoverableError,
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)


def is_transient(error: BaseException) -> bool:
    """Whether an error is worth retrying."""
    return isinstance(error, TRANSIENT_EXCEPTIONS)


class ErrorHandler:
    """Classifies failures and keeps a per-run error log."""

    def __init__(self) -> None:
        self.logger = get_logger("error_handler")
        self.error_counts: Dict[ErrorType, int] = {}
        self.error_log: List[Dict[str, Any]] = []

    def classify_error(self, error: BaseException) -> ErrorType:
        """Classify an error by type.

        Args:
            error: Exception to classify

        Returns:
            Error type
        """
        if isinstance(error, RetryExhaustedError):
            return ErrorType.TRANSIENT
        if isinstance(error, MigrationError):
            return error.error_type
        if is_transient(error):
            return ErrorType.TRANSIENT

        error_str = str(error).lower()

        if any(keyword in error_str for keyword in ["already exists", "conflict", "409"]):
            return ErrorType.CONFLICT

        if any(keyword in error_str for keyword in ["unauthorized", "forbidden", "401", "403"]):
            return ErrorType.AUTHENTICATION

        if any(keyword in error_str for keyword in ["rate limit", "429", "too many requests"]):
            return ErrorType.TRANSIENT

        if any(keyword in error_str for keyword in ["validation", "invalid", "required"]):
            return ErrorType.VALIDATION

        return ErrorType.UNKNOWN

    def classify_severity(
        self,
        error: BaseException,
        key: Optional[str] = None,
    ) -> ErrorSeverity:
        """Severity of a failure; anything not tied to an object fails its phase.

        Args:
            error: Exception to classify
            key: Object key, for object-level failures

        Returns:
            Error severity
        """
        if isinstance(error, MigrationError):
            severity = error.severity
        elif is_transient(error):
            severity = ErrorSeverity.MEDIUM
        else:
            severity = ErrorSeverity.LOW

        if key is None and severity != ErrorSeverity.CRITICAL:
            return ErrorSeverity.HIGH
        return severity

    def record(
        self,
        error: BaseException,
        phase: str,
        key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a failure against a phase (and optionally an object).

        Args:
            error: The failure
            phase: Phase name
            key: Object key, for object-level failures

        Returns:
            The error record, carrying enough to locate it in the ledger
        """
        error_type = self.classify_error(error)
        severity = self.classify_severity(error, key)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        error_record = {
            "timestamp": time.time(),
            "phase": phase,
            "key": key,
            "error_type": error_type.value,
            "severity": severity.value,
            "message": str(error),
            "exception_type": type(error).__name__,
        }
        self.error_log.append(error_record)

        event = "phase_error" if key is None else "object_error"
        if severity == ErrorSeverity.CRITICAL:
            self.logger.critical(event, **error_record, exc_info=error)
        elif severity == ErrorSeverity.HIGH:
            self.logger.error(event, **error_record, exc_info=error)
        else:
            self.logger.warning(event, **error_record)

        return error_record

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary statistics.

        Returns:
            Error summary
        """
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_counts": {k.value: v for k, v in self.error_counts.items()},
            "recent_errors": self.error_log[-10:],
        }
