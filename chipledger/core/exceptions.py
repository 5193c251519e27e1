"""
Infrastructure exceptions for ChipLedger.

Every ChipLedger exception carries a message, structured ``details``, an
`ErrorSeverity`, an ``is_retryable`` flag and a stable ``error_code``. The
shared behaviour lives in `ChipLedgerError`; infrastructure failures derive
from `ChipLedgerInfrastructureException`, domain rule violations from
``chipledger.modules.shared.exceptions.ChipLedgerDomainException``.

- `StoreError` is the one signal for store I/O failures. It names the
  operation and the collection or document path it addressed.
- `CacheMissError` is control flow: the persistent tier could not answer
  and the caller falls back to the server.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"  # expected, e.g. cache misses
    INFO = "info"  # caller mistakes, e.g. validation
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"  # startup cannot continue


class ChipLedgerError(Exception):
    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False
    ERROR_CODE: Optional[str] = None

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or self.ERROR_CODE or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        return self.message


class ChipLedgerInfrastructureException(ChipLedgerError):
    """Store, cache, Redis and configuration failures."""


class ConfigurationError(ChipLedgerInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL
    ERROR_CODE = "CONFIG_ERROR"

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            {"config_key": config_key},
        )


class StoreError(ChipLedgerInfrastructureException):
    """
    A document store operation failed: connectivity, permissions, quota, or
    an update addressed a document that does not exist.
    """

    DEFAULT_RETRYABLE = True
    ERROR_CODE = "STORE_ERROR"

    def __init__(
        self,
        operation: str,
        target: str,
        original_error: Optional[Exception] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.target = target
        self.original_error = original_error
        cause = reason or (str(original_error) if original_error is not None else "failed")
        super().__init__(
            f"Store error during {operation} on '{target}': {cause}",
            {
                "operation": operation,
                "target": target,
                "cause": cause,
                "cause_type": type(original_error).__name__ if original_error else None,
            },
        )


class CacheMissError(ChipLedgerInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True
    ERROR_CODE = "CACHE_MISS"

    def __init__(self, target: str, reason: str = "no cached result") -> None:
        self.target = target
        self.reason = reason
        super().__init__(
            f"Persistent cache miss for '{target}': {reason}",
            {"target": target, "reason": reason},
        )


class RedisConnectionError(ChipLedgerInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True
    ERROR_CODE = "REDIS_ERROR"

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Redis error during {operation}: {original_error}",
            {"operation": operation, "cause_type": type(original_error).__name__},
        )


# ============================================================================
# HELPERS
# ============================================================================


def is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, ChipLedgerError) and exc.is_retryable


def get_error_severity(exc: BaseException) -> ErrorSeverity:
    """Unknown exceptions count as ERROR."""
    if isinstance(exc, ChipLedgerError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: BaseException) -> bool:
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
