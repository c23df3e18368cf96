"""Store adapter contract consumed by the forum core.

The store owns the durable copy of topics and comments. It offers:
- full-snapshot change notifications per topic
- single-attempt optimistic transactions (retrying is the caller's job)
- conventional reads and writes

Network, serialization and credentials are the implementation's concern.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

from src.forum.models import Category, Comment, EntityRef, Topic


T = TypeVar("T")


class _ServerTimestamp:
    """Placeholder replaced by the store's clock when a write is applied."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


# ==============================================================================
# Errors
# ==============================================================================


class StoreError(Exception):
    """Base store error."""

    def __init__(self, message: str, code: str = "store_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class TransactionConflictError(StoreError):
    """A document read by the transaction changed before commit."""

    def __init__(self, message: str = "Transaction read became stale"):
        super().__init__(message, "transaction_conflict")


class DocumentNotFoundError(StoreError):
    """Update or delete addressed a missing document."""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}", "document_not_found")


class DocumentExistsError(StoreError):
    """Create addressed an existing document."""

    def __init__(self, path: str):
        super().__init__(f"Document already exists: {path}", "document_exists")


class SubscriptionError(StoreError):
    """The live change channel for a topic failed."""

    def __init__(self, message: str = "Change subscription failed"):
        super().__init__(message, "subscription_error")


# ==============================================================================
# Contract
# ==============================================================================


class Transaction(ABC):
    """Transactional read/write handle.

    All reads must happen before the first write. Writes are buffered and
    applied atomically at commit, which fails with
    ``TransactionConflictError`` if any read document has since changed.
    """

    @abstractmethod
    async def get(self, ref: EntityRef) -> dict[str, Any] | None:
        """Read a document, or None if it does not exist."""

    @abstractmethod
    async def get_comments(self, topic_id: str) -> list[Comment]:
        """Read every comment of a topic."""

    @abstractmethod
    def create(self, ref: EntityRef, data: dict[str, Any]) -> None:
        """Buffer creation of a new document."""

    @abstractmethod
    def update(self, ref: EntityRef, patch: dict[str, Any]) -> None:
        """Buffer a field-level update of an existing document."""

    @abstractmethod
    def delete(self, ref: EntityRef) -> None:
        """Buffer deletion of a document."""


TransactionFn = Callable[[Transaction], Awaitable[T]]


class ThreadStore(ABC):
    """Remote collection of topics and their comments."""

    #: Whether one transaction may write a comment and its topic together
    atomic_batches: bool = True

    name: str = "abstract"

    # Live notifications -------------------------------------------------------

    @abstractmethod
    def subscribe_comments(self, topic_id: str) -> AsyncIterator[list[Comment]]:
        """Stream full comment snapshots for a topic.

        The current snapshot is delivered on attach, then again after every
        create/update/delete of any comment in the topic. Raises
        ``SubscriptionError`` if the channel fails; closing the iterator
        detaches.
        """

    # Transactions -------------------------------------------------------------

    @abstractmethod
    async def run_transaction(self, fn: TransactionFn[T]) -> T:
        """Run ``fn`` once inside a transaction and commit its writes."""

    # Id assignment ------------------------------------------------------------

    @abstractmethod
    def new_topic_ref(self) -> EntityRef:
        """Reserve a fresh topic id."""

    @abstractmethod
    def new_comment_ref(self, topic_id: str) -> EntityRef:
        """Reserve a fresh comment id inside a topic."""

    # Conventional calls -------------------------------------------------------

    @abstractmethod
    async def create_topic(self, topic: Topic) -> str:
        """Write a new topic document and return its id."""

    @abstractmethod
    async def get_topic(self, topic_id: str) -> Topic | None: ...

    @abstractmethod
    async def list_topics(
        self,
        category: Category | None = None,
        author_id: str | None = None,
        limit: int = 100,
    ) -> list[Topic]:
        """List topics newest first, optionally filtered."""

    @abstractmethod
    async def update_topic(self, topic_id: str, patch: dict[str, Any]) -> None: ...

    @abstractmethod
    async def delete_topic(self, topic_id: str) -> int:
        """Delete a topic and all of its comments in batches.

        Returns:
            Number of comments removed.
        """

    @abstractmethod
    async def get_comment(self, topic_id: str, comment_id: str) -> Comment | None: ...

    @abstractmethod
    async def list_comments(self, topic_id: str) -> list[Comment]: ...

    @abstractmethod
    async def create_comment(self, comment: Comment) -> str:
        """Write a new comment document and return its id."""

    @abstractmethod
    async def update_comment(
        self, topic_id: str, comment_id: str, patch: dict[str, Any]
    ) -> None: ...

    @abstractmethod
    async def delete_comment(self, topic_id: str, comment_id: str) -> None: ...

    async def close(self) -> None:
        """Release client resources."""
