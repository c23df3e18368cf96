"""Document store adapters.

Note: the Firestore adapter is not exported here so the Google SDKs are
only imported when that backend is selected.
"""

from .base import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    StoreError,
    SubscriptionError,
    ThreadStore,
    Transaction,
    TransactionConflictError,
)
from .memory import InMemoryThreadStore


__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "InMemoryThreadStore",
    "StoreError",
    "SubscriptionError",
    "ThreadStore",
    "Transaction",
    "TransactionConflictError",
]
