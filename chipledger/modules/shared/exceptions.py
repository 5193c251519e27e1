"""
Domain exceptions for ChipLedger.

Services raise these internally. The public service surface turns
validation, duplicate and not-found outcomes into ``False`` / ``None`` so
callers can branch without exception handling; `RankingComputationError`
propagates to the caller of a recalculation. Store I/O failures are
infrastructure errors (`StoreError`) and are never converted.
"""

from __future__ import annotations

from typing import Any, Optional

from chipledger.core.exceptions import ChipLedgerError, ErrorSeverity


class ChipLedgerDomainException(ChipLedgerError):
    """Base for ledger, user and ranking rule violations."""


class ValidationError(ChipLedgerDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(
            f"Validation error for {field}: {message}",
            {"field": field},
            error_code=f"VALIDATION_{field.upper()}",
        )


class NotFoundError(ChipLedgerDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = f": {identifier}" if identifier is not None else ""
        super().__init__(
            f"{resource_type} not found{suffix}",
            {"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class DuplicateUsernameError(ChipLedgerDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO
    ERROR_CODE = "DUPLICATE_USERNAME"

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Username already in use: {username}", {"username": username})


class RankingComputationError(ChipLedgerDomainException):
    """
    The user fetch behind a ranking computation failed. The message names
    the ranking kind: ``"monthly ranking fetch error: <cause>"``.
    """

    DEFAULT_RETRYABLE = True
    ERROR_CODE = "RANKING_FETCH_ERROR"

    def __init__(self, ranking_type: str, original_error: Exception) -> None:
        self.ranking_type = ranking_type
        self.original_error = original_error
        super().__init__(
            f"{ranking_type} ranking fetch error: {original_error}",
            {"ranking_type": ranking_type, "cause_type": type(original_error).__name__},
        )
