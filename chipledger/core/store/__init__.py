"""
Document store layer.

`DocumentStore` is the contract; `InMemoryDocumentStore` and
`SqlDocumentStore` are the backends.
"""

from chipledger.core.store.base import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    Filter,
    Increment,
    OrderBy,
)
from chipledger.core.store.memory import InMemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "DocumentStore",
    "Filter",
    "Increment",
    "OrderBy",
    "InMemoryDocumentStore",
]
