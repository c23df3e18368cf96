"""Cloud Firestore implementation of the store adapter.

Layout:
- topics/{topic_id}
- topics/{topic_id}/comments/{comment_id}

Transactions run on the async client with a single attempt so conflicts
surface to the caller's retry loop. Live snapshots come from the sync
client's watch stream, whose callbacks run on a background thread and
are handed to the event loop with ``call_soon_threadsafe``.

Listing topics by category or author ordered by ``createdAt`` needs the
matching composite indexes in the Firestore project.
"""

import asyncio
import inspect
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from src.forum.models import Category, Comment, EntityKind, EntityRef, Topic
from src.store.base import (
    SERVER_TIMESTAMP,
    DocumentExistsError,
    DocumentNotFoundError,
    SubscriptionError,
    ThreadStore,
    Transaction,
    TransactionConflictError,
    TransactionFn,
    T,
)


if TYPE_CHECKING:
    from google.cloud.firestore_v1.async_document import AsyncDocumentReference
    from google.cloud.firestore_v1.async_transaction import AsyncTransaction


logger = structlog.get_logger(__name__)


TOPICS_COLLECTION = "topics"
COMMENTS_COLLECTION = "comments"

# Firestore caps a write batch at 500 operations
BATCH_SIZE = 450


def _to_firestore(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: (firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value)
        for key, value in data.items()
    }


class _FirestoreTransaction(Transaction):
    def __init__(self, store: "FirestoreThreadStore", transaction: "AsyncTransaction"):
        self._store = store
        self._transaction = transaction

    async def get(self, ref: EntityRef) -> dict[str, Any] | None:
        snapshot = await self._store.document(ref).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    async def get_comments(self, topic_id: str) -> list[Comment]:
        comments = []
        query = self._store.comments_collection(topic_id)
        async for snapshot in query.stream(transaction=self._transaction):
            comments.append(
                Comment.from_document(topic_id, snapshot.id, snapshot.to_dict())
            )
        return comments

    def create(self, ref: EntityRef, data: dict[str, Any]) -> None:
        self._transaction.create(self._store.document(ref), _to_firestore(data))

    def update(self, ref: EntityRef, patch: dict[str, Any]) -> None:
        self._transaction.update(self._store.document(ref), _to_firestore(patch))

    def delete(self, ref: EntityRef) -> None:
        self._transaction.delete(self._store.document(ref))


class FirestoreThreadStore(ThreadStore):
    """``ThreadStore`` backed by Cloud Firestore."""

    name = "firestore"
    atomic_batches = True

    def __init__(
        self,
        client: firestore.AsyncClient,
        watch_client: firestore.Client,
        liveness_interval: float = 15.0,
    ) -> None:
        self.client = client
        self.watch_client = watch_client
        self.liveness_interval = liveness_interval

    # ==========================================================================
    # References
    # ==========================================================================

    def document(self, ref: EntityRef) -> "AsyncDocumentReference":
        topic_doc = self.client.collection(TOPICS_COLLECTION).document(ref.topic_id)
        if ref.kind is EntityKind.COMMENT:
            return topic_doc.collection(COMMENTS_COLLECTION).document(ref.comment_id)
        return topic_doc

    def comments_collection(self, topic_id: str):
        return (
            self.client.collection(TOPICS_COLLECTION)
            .document(topic_id)
            .collection(COMMENTS_COLLECTION)
        )

    def new_topic_ref(self) -> EntityRef:
        return EntityRef.for_topic(self.client.collection(TOPICS_COLLECTION).document().id)

    def new_comment_ref(self, topic_id: str) -> EntityRef:
        return EntityRef.for_comment(topic_id, self.comments_collection(topic_id).document().id)

    # ==========================================================================
    # Live notifications
    # ==========================================================================

    async def subscribe_comments(self, topic_id: str) -> AsyncIterator[list[Comment]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[list[Comment]] = asyncio.Queue()

        def on_snapshot(documents, _changes, _read_time) -> None:
            comments = []
            for snapshot in documents:
                try:
                    comments.append(
                        Comment.from_document(topic_id, snapshot.id, snapshot.to_dict())
                    )
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(
                        "comment_document_invalid",
                        topic_id=topic_id,
                        comment_id=snapshot.id,
                        error=str(e),
                    )
            loop.call_soon_threadsafe(queue.put_nowait, comments)

        collection = (
            self.watch_client.collection(TOPICS_COLLECTION)
            .document(topic_id)
            .collection(COMMENTS_COLLECTION)
        )
        try:
            watch = collection.on_snapshot(on_snapshot)
        except gcp_exceptions.GoogleAPICallError as e:
            raise SubscriptionError(f"Could not watch topic {topic_id}: {e}") from e

        logger.debug("firestore_watch_started", topic_id=topic_id)
        try:
            while True:
                try:
                    comments = await asyncio.wait_for(
                        queue.get(), timeout=self.liveness_interval
                    )
                except TimeoutError:
                    if not watch.is_active:
                        raise SubscriptionError(
                            f"Watch stream for topic {topic_id} closed"
                        ) from None
                    continue
                yield comments
        finally:
            watch.unsubscribe()
            logger.debug("firestore_watch_stopped", topic_id=topic_id)

    # ==========================================================================
    # Transactions
    # ==========================================================================

    async def run_transaction(self, fn: TransactionFn[T]) -> T:
        transaction = self.client.transaction(max_attempts=1)

        @firestore.async_transactional
        async def _run(tx: "AsyncTransaction") -> T:
            return await fn(_FirestoreTransaction(self, tx))

        try:
            return await _run(transaction)
        except gcp_exceptions.Aborted as e:
            raise TransactionConflictError(str(e)) from e
        except ValueError as e:
            # The SDK wraps an aborted commit in ValueError once attempts run out
            if isinstance(e.__cause__, gcp_exceptions.Aborted):
                raise TransactionConflictError(str(e.__cause__)) from e
            raise

    # ==========================================================================
    # Conventional calls
    # ==========================================================================

    async def create_topic(self, topic: Topic) -> str:
        try:
            await self.document(topic.ref).create(_to_firestore(topic.to_document()))
        except gcp_exceptions.AlreadyExists as e:
            raise DocumentExistsError(topic.ref.path) from e
        return topic.topic_id

    async def get_topic(self, topic_id: str) -> Topic | None:
        snapshot = await self.document(EntityRef.for_topic(topic_id)).get()
        if not snapshot.exists:
            return None
        return Topic.from_document(snapshot.id, snapshot.to_dict())

    async def list_topics(
        self,
        category: Category | None = None,
        author_id: str | None = None,
        limit: int = 100,
    ) -> list[Topic]:
        query = self.client.collection(TOPICS_COLLECTION)
        if category is not None:
            query = query.where(filter=firestore.FieldFilter("category", "==", category.value))
        if author_id is not None:
            query = query.where(filter=firestore.FieldFilter("authorId", "==", author_id))
        query = query.order_by("createdAt", direction=firestore.Query.DESCENDING).limit(limit)

        topics = []
        async for snapshot in query.stream():
            try:
                topics.append(Topic.from_document(snapshot.id, snapshot.to_dict()))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("topic_document_invalid", topic_id=snapshot.id, error=str(e))
        return topics

    async def update_topic(self, topic_id: str, patch: dict[str, Any]) -> None:
        ref = EntityRef.for_topic(topic_id)
        try:
            await self.document(ref).update(_to_firestore(patch))
        except gcp_exceptions.NotFound as e:
            raise DocumentNotFoundError(ref.path) from e

    async def delete_topic(self, topic_id: str) -> int:
        topic_ref = EntityRef.for_topic(topic_id)
        topic_doc = self.document(topic_ref)
        if not (await topic_doc.get()).exists:
            raise DocumentNotFoundError(topic_ref.path)

        removed = 0
        batch = self.client.batch()
        pending = 0
        async for snapshot in self.comments_collection(topic_id).stream():
            batch.delete(snapshot.reference)
            removed += 1
            pending += 1
            if pending >= BATCH_SIZE:
                await batch.commit()
                batch = self.client.batch()
                pending = 0

        batch.delete(topic_doc)
        await batch.commit()
        return removed

    async def get_comment(self, topic_id: str, comment_id: str) -> Comment | None:
        snapshot = await self.document(EntityRef.for_comment(topic_id, comment_id)).get()
        if not snapshot.exists:
            return None
        return Comment.from_document(topic_id, snapshot.id, snapshot.to_dict())

    async def list_comments(self, topic_id: str) -> list[Comment]:
        return [
            Comment.from_document(topic_id, snapshot.id, snapshot.to_dict())
            async for snapshot in self.comments_collection(topic_id).stream()
        ]

    async def create_comment(self, comment: Comment) -> str:
        try:
            await self.document(comment.ref).create(_to_firestore(comment.to_document()))
        except gcp_exceptions.AlreadyExists as e:
            raise DocumentExistsError(comment.ref.path) from e
        return comment.comment_id

    async def update_comment(
        self, topic_id: str, comment_id: str, patch: dict[str, Any]
    ) -> None:
        ref = EntityRef.for_comment(topic_id, comment_id)
        try:
            await self.document(ref).update(_to_firestore(patch))
        except gcp_exceptions.NotFound as e:
            raise DocumentNotFoundError(ref.path) from e

    async def delete_comment(self, topic_id: str, comment_id: str) -> None:
        await self.document(EntityRef.for_comment(topic_id, comment_id)).delete()

    async def close(self) -> None:
        result = self.client.close()
        if inspect.isawaitable(result):
            await result
        self.watch_client.close()
