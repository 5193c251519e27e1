"""Async SQLAlchemy engine, sessions and the document table schema."""

from chipledger.core.database.models import Base, DocumentRow
from chipledger.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseService",
    "DocumentRow",
]
