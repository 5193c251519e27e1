"""Chip balance mutations, history and daily summaries."""

from chipledger.modules.ledger.journal import LedgerJournal
from chipledger.modules.ledger.service import (
    ALL_USERS_CACHE_KEY,
    CHIPS_CHANGED_EVENT,
    LedgerService,
    history_cache_key,
    summary_cache_key,
    user_cache_key,
)

__all__ = [
    "ALL_USERS_CACHE_KEY",
    "CHIPS_CHANGED_EVENT",
    "LedgerJournal",
    "LedgerService",
    "history_cache_key",
    "summary_cache_key",
    "user_cache_key",
]
