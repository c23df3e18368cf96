"""In-process document store.

Used for development and tests. Behaves like the remote store where the
forum core cares:
- every read and write is a suspension point (optionally with latency)
- documents carry versions; a transaction commit fails if anything it
  read has changed since, including documents deleted or re-created
- every change to a topic's comments redelivers the full snapshot to
  all subscribers of that topic
"""

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import structlog

from src.forum.models import Category, Comment, EntityKind, EntityRef, Topic
from src.store.base import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    StoreError,
    SubscriptionError,
    ThreadStore,
    Transaction,
    TransactionConflictError,
    TransactionFn,
    T,
)


logger = structlog.get_logger(__name__)


@dataclass
class _Document:
    data: dict[str, Any]
    version: int


# (operation, ref, payload)
_Write = tuple[str, EntityRef, dict[str, Any] | None]


def _collection_key(topic_id: str) -> str:
    return f"topics/{topic_id}/comments"


class _MemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryThreadStore") -> None:
        self._store = store
        self._reads: dict[str, int] = {}
        self.writes: list[_Write] = []

    @property
    def reads(self) -> dict[str, int]:
        return self._reads

    def _ensure_reading(self) -> None:
        if self.writes:
            raise StoreError("Transactions must perform all reads before writes")

    async def get(self, ref: EntityRef) -> dict[str, Any] | None:
        self._ensure_reading()
        await self._store.pause()
        self._reads.setdefault(ref.path, self._store.version_of(ref.path))
        doc = self._store.documents.get(ref.path)
        return copy.deepcopy(doc.data) if doc else None

    async def get_comments(self, topic_id: str) -> list[Comment]:
        self._ensure_reading()
        await self._store.pause()
        key = _collection_key(topic_id)
        self._reads.setdefault(key, self._store.version_of(key))
        return self._store.snapshot(topic_id)

    def create(self, ref: EntityRef, data: dict[str, Any]) -> None:
        self.writes.append(("create", ref, copy.deepcopy(data)))

    def update(self, ref: EntityRef, patch: dict[str, Any]) -> None:
        self.writes.append(("update", ref, copy.deepcopy(patch)))

    def delete(self, ref: EntityRef) -> None:
        self.writes.append(("delete", ref, None))


class InMemoryThreadStore(ThreadStore):
    """Versioned in-memory implementation of ``ThreadStore``."""

    name = "memory"

    def __init__(self, *, latency: float = 0.0, atomic_batches: bool = True) -> None:
        self.latency = latency
        self.atomic_batches = atomic_batches
        self.documents: dict[str, _Document] = {}
        self._comment_index: dict[str, set[str]] = defaultdict(set)
        self._versions: dict[str, int] = {}
        self._sequence = 0
        self._last_timestamp: datetime | None = None
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._pending_subscribe_failures = 0
        self.commits = 0
        self.conflicts = 0

    # ==========================================================================
    # Internals
    # ==========================================================================

    async def pause(self) -> None:
        await asyncio.sleep(self.latency)

    def version_of(self, key: str) -> int:
        return self._versions.get(key, 0)

    def _bump(self, key: str) -> int:
        self._sequence += 1
        self._versions[key] = self._sequence
        return self._sequence

    def _now(self) -> datetime:
        now = datetime.now(UTC)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    @staticmethod
    def _resolve(data: dict[str, Any], timestamp: datetime) -> dict[str, Any]:
        return {
            key: (timestamp if value is SERVER_TIMESTAMP else value)
            for key, value in data.items()
        }

    def snapshot(self, topic_id: str) -> list[Comment]:
        comments = []
        for path in self._comment_index.get(topic_id, ()):
            doc = self.documents[path]
            comment_id = path.rsplit("/", 1)[-1]
            comments.append(
                Comment.from_document(topic_id, comment_id, copy.deepcopy(doc.data))
            )
        return comments

    def _check_writes(self, writes: list[_Write]) -> None:
        """Validate a batch against current state before applying any of it."""
        exists = {}
        for op, ref, _ in writes:
            present = exists.get(ref.path, ref.path in self.documents)
            if op == "create" and present:
                raise DocumentExistsError(ref.path)
            if op == "update" and not present:
                raise DocumentNotFoundError(ref.path)
            exists[ref.path] = op != "delete"

    def _apply(self, writes: list[_Write]) -> None:
        """Apply a validated batch atomically and notify subscribers."""
        self._check_writes(writes)
        timestamp = self._now()
        touched: set[str] = set()

        for op, ref, payload in writes:
            path = ref.path
            if op == "create":
                self.documents[path] = _Document(
                    self._resolve(payload or {}, timestamp), self._bump(path)
                )
            elif op == "update":
                doc = self.documents[path]
                doc.data.update(self._resolve(payload or {}, timestamp))
                doc.version = self._bump(path)
            else:
                if self.documents.pop(path, None) is None:
                    continue
                self._bump(path)

            if ref.kind is EntityKind.COMMENT:
                if op == "delete":
                    self._comment_index[ref.topic_id].discard(path)
                else:
                    self._comment_index[ref.topic_id].add(path)
                self._bump(_collection_key(ref.topic_id))
                touched.add(ref.topic_id)

        for topic_id in touched:
            self._publish(topic_id)

    def _publish(self, topic_id: str) -> None:
        queues = self._subscribers.get(topic_id)
        if not queues:
            return
        snapshot = self.snapshot(topic_id)
        for queue in queues:
            queue.put_nowait(list(snapshot))

    # ==========================================================================
    # Fault injection
    # ==========================================================================

    def interrupt_subscriptions(self, topic_id: str, reason: str = "interrupted") -> int:
        """Fail every open subscription of a topic.

        Returns:
            Number of subscriptions interrupted.
        """
        queues = self._subscribers.get(topic_id, set())
        for queue in queues:
            queue.put_nowait(SubscriptionError(reason))
        return len(queues)

    def fail_next_subscriptions(self, count: int) -> None:
        """Make the next ``count`` subscription attempts fail on attach."""
        self._pending_subscribe_failures = count

    def subscriber_count(self, topic_id: str) -> int:
        return len(self._subscribers.get(topic_id, ()))

    # ==========================================================================
    # ThreadStore
    # ==========================================================================

    async def subscribe_comments(self, topic_id: str) -> AsyncIterator[list[Comment]]:
        await self.pause()
        if self._pending_subscribe_failures > 0:
            self._pending_subscribe_failures -= 1
            raise SubscriptionError(f"Could not attach to topic {topic_id}")

        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[topic_id].add(queue)
        queue.put_nowait(self.snapshot(topic_id))
        try:
            while True:
                item = await queue.get()
                if isinstance(item, SubscriptionError):
                    raise item
                yield item
        finally:
            subscribers = self._subscribers.get(topic_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[topic_id]

    async def run_transaction(self, fn: TransactionFn[T]) -> T:
        tx = _MemoryTransaction(self)
        result = await fn(tx)
        await self.pause()

        stale = [key for key, seen in tx.reads.items() if self.version_of(key) != seen]
        if stale:
            self.conflicts += 1
            raise TransactionConflictError(f"Stale reads: {', '.join(sorted(stale))}")

        if tx.writes:
            self._apply(tx.writes)
        self.commits += 1
        return result

    def new_topic_ref(self) -> EntityRef:
        return EntityRef.for_topic(uuid4().hex)

    def new_comment_ref(self, topic_id: str) -> EntityRef:
        return EntityRef.for_comment(topic_id, uuid4().hex)

    async def create_topic(self, topic: Topic) -> str:
        await self.pause()
        self._apply([("create", topic.ref, topic.to_document())])
        return topic.topic_id

    async def get_topic(self, topic_id: str) -> Topic | None:
        await self.pause()
        doc = self.documents.get(EntityRef.for_topic(topic_id).path)
        if doc is None:
            return None
        return Topic.from_document(topic_id, copy.deepcopy(doc.data))

    async def list_topics(
        self,
        category: Category | None = None,
        author_id: str | None = None,
        limit: int = 100,
    ) -> list[Topic]:
        await self.pause()
        topics = []
        for path, doc in self.documents.items():
            parts = path.split("/")
            if len(parts) != 2:
                continue
            topic = Topic.from_document(parts[1], copy.deepcopy(doc.data))
            if category is not None and topic.category is not category:
                continue
            if author_id is not None and topic.author_id != author_id:
                continue
            topics.append(topic)

        topics.sort(key=lambda t: (t.created_at, t.topic_id), reverse=True)
        return topics[:limit]

    async def update_topic(self, topic_id: str, patch: dict[str, Any]) -> None:
        await self.pause()
        self._apply([("update", EntityRef.for_topic(topic_id), patch)])

    async def delete_topic(self, topic_id: str) -> int:
        await self.pause()
        topic_ref = EntityRef.for_topic(topic_id)
        if topic_ref.path not in self.documents:
            raise DocumentNotFoundError(topic_ref.path)

        writes: list[_Write] = [
            ("delete", EntityRef.for_comment(topic_id, path.rsplit("/", 1)[-1]), None)
            for path in sorted(self._comment_index.get(topic_id, ()))
        ]
        removed = len(writes)
        writes.append(("delete", topic_ref, None))
        self._apply(writes)
        self._comment_index.pop(topic_id, None)
        return removed

    async def get_comment(self, topic_id: str, comment_id: str) -> Comment | None:
        await self.pause()
        doc = self.documents.get(EntityRef.for_comment(topic_id, comment_id).path)
        if doc is None:
            return None
        return Comment.from_document(topic_id, comment_id, copy.deepcopy(doc.data))

    async def list_comments(self, topic_id: str) -> list[Comment]:
        await self.pause()
        return self.snapshot(topic_id)

    async def create_comment(self, comment: Comment) -> str:
        await self.pause()
        self._apply([("create", comment.ref, comment.to_document())])
        return comment.comment_id

    async def update_comment(
        self, topic_id: str, comment_id: str, patch: dict[str, Any]
    ) -> None:
        await self.pause()
        self._apply([("update", EntityRef.for_comment(topic_id, comment_id), patch)])

    async def delete_comment(self, topic_id: str, comment_id: str) -> None:
        await self.pause()
        self._apply([("delete", EntityRef.for_comment(topic_id, comment_id), None)])
