"""Shared service foundation, domain exceptions and validators."""

from chipledger.modules.shared.base_service import BaseService
from chipledger.modules.shared.exceptions import (
    ChipLedgerDomainException,
    DuplicateUsernameError,
    NotFoundError,
    RankingComputationError,
    ValidationError,
)

__all__ = [
    "BaseService",
    "ChipLedgerDomainException",
    "DuplicateUsernameError",
    "NotFoundError",
    "RankingComputationError",
    "ValidationError",
]
