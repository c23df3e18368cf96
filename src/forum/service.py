"""Forum service layer.

Business logic for:
- Topic CRUD with batched cascade on delete
- Comment submission, edit and delete with reply counter maintenance
- Reaction toggles on topics and comments
- One-shot and live thread reads
- Reply counter repair
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.auth.permissions import UserRole, is_admin
from src.config.settings import Settings, get_settings
from src.forum.counter import ReplyCounter
from src.forum.errors import (
    CommentNotFoundError,
    ConcurrentUpdateError,
    InvalidParentError,
    PermissionDeniedError,
    TopicNotFoundError,
)
from src.forum.models import (
    Category,
    Comment,
    EntityRef,
    ReactionKind,
    ReactionSet,
    Topic,
    new_comment,
    new_topic,
)
from src.forum.reactions import ReactionLedger
from src.forum.reconciler import Reconciler, ThreadObserver
from src.forum.tree import Forest, build_comment_forest
from src.store.base import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    ThreadStore,
    Transaction,
    TransactionConflictError,
)
from src.store.retry import run_with_retries


logger = structlog.get_logger(__name__)


def _require_identity(user_id: str | None) -> str:
    if not user_id:
        raise PermissionDeniedError
    return user_id


def _require_owner(author_id: str, user_id: str | None, role: UserRole | str) -> None:
    user_id = _require_identity(user_id)
    if author_id != user_id and not is_admin(role):
        raise PermissionDeniedError(
            "Only the author or an administrator can do this", authenticated=True
        )


class ForumService:
    """Topic, comment and reaction operations."""

    def __init__(
        self,
        store: ThreadStore,
        reconciler: Reconciler | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.reconciler = reconciler or Reconciler(
            store,
            retry_base_delay=self.settings.reconciler_retry_base_delay,
            retry_max_delay=self.settings.reconciler_retry_max_delay,
            fault_threshold=self.settings.reconciler_fault_threshold,
        )
        self.reactions = ReactionLedger(
            store,
            max_attempts=self.settings.reaction_max_attempts,
            retry_base_delay=self.settings.transaction_retry_base_delay,
            retry_max_delay=self.settings.transaction_retry_max_delay,
        )
        self.counter = ReplyCounter(
            store,
            max_attempts=self.settings.transaction_max_attempts,
            retry_base_delay=self.settings.transaction_retry_base_delay,
            retry_max_delay=self.settings.transaction_retry_max_delay,
        )

    async def _transact(self, fn: Callable[[Transaction], Awaitable[Any]], operation: str):
        try:
            return await run_with_retries(
                self.store,
                fn,
                max_attempts=self.settings.transaction_max_attempts,
                base_delay=self.settings.transaction_retry_base_delay,
                max_delay=self.settings.transaction_retry_max_delay,
                operation=operation,
            )
        except TransactionConflictError as e:
            raise ConcurrentUpdateError from e

    # ==========================================================================
    # Topics
    # ==========================================================================

    async def create_topic(
        self,
        author_id: str | None,
        title: str,
        body: str,
        category: Category,
        author_name: str | None = None,
    ) -> Topic:
        author_id = _require_identity(author_id)
        ref = self.store.new_topic_ref()
        topic = new_topic(
            topic_id=ref.topic_id,
            author_id=author_id,
            title=title,
            body=body,
            category=category,
            created_at=SERVER_TIMESTAMP,
            author_name=author_name,
        )
        await self.store.create_topic(topic)
        logger.info(
            "topic_created",
            topic_id=topic.topic_id,
            author_id=author_id,
            category=category.value,
        )
        return await self.get_topic(topic.topic_id)

    async def get_topic(self, topic_id: str) -> Topic:
        topic = await self.store.get_topic(topic_id)
        if topic is None:
            raise TopicNotFoundError
        return topic

    async def list_topics(
        self, category: Category | None = None, limit: int | None = None
    ) -> list[Topic]:
        """List topics newest first, optionally within one category."""
        return await self.store.list_topics(
            category=category, limit=limit or self.settings.topic_list_limit
        )

    async def list_my_topics(self, user_id: str | None, limit: int | None = None) -> list[Topic]:
        user_id = _require_identity(user_id)
        return await self.store.list_topics(
            author_id=user_id, limit=limit or self.settings.topic_list_limit
        )

    async def edit_topic(
        self,
        topic_id: str,
        user_id: str | None,
        role: UserRole | str = UserRole.USER,
        title: str | None = None,
        body: str | None = None,
        category: Category | None = None,
    ) -> Topic:
        topic = await self.get_topic(topic_id)
        _require_owner(topic.author_id, user_id, role)

        patch: dict[str, Any] = {}
        if title is not None:
            patch["title"] = title
        if body is not None:
            patch["body"] = body
        if category is not None:
            patch["category"] = category.value
        if not patch:
            return topic

        patch["editedAt"] = SERVER_TIMESTAMP
        try:
            await self.store.update_topic(topic_id, patch)
        except DocumentNotFoundError as e:
            raise TopicNotFoundError from e

        logger.info("topic_edited", topic_id=topic_id, user_id=user_id, fields=sorted(patch))
        return await self.get_topic(topic_id)

    async def delete_topic(
        self, topic_id: str, user_id: str | None, role: UserRole | str = UserRole.USER
    ) -> int:
        """Delete a topic together with all of its comments.

        Returns:
            Number of comments removed.
        """
        topic = await self.get_topic(topic_id)
        _require_owner(topic.author_id, user_id, role)
        try:
            removed = await self.store.delete_topic(topic_id)
        except DocumentNotFoundError as e:
            raise TopicNotFoundError from e

        logger.info(
            "topic_deleted", topic_id=topic_id, user_id=user_id, comments_removed=removed
        )
        return removed

    # ==========================================================================
    # Comments
    # ==========================================================================

    async def submit_comment(
        self,
        topic_id: str,
        parent_id: str | None,
        body: str,
        author_id: str | None,
        author_name: str | None = None,
    ) -> str:
        """Post a reply to a topic or to one of its comments.

        The comment and the topic's ``replyCount`` move together in one
        transaction. On stores that cannot span both documents the count
        follows in its own transaction right after.

        Returns:
            The new comment id.

        Raises:
            PermissionDeniedError: No author identity.
            TopicNotFoundError: Topic does not exist.
            InvalidParentError: Parent is missing or belongs to another topic.
        """
        author_id = _require_identity(author_id)
        ref = self.store.new_comment_ref(topic_id)
        comment = new_comment(
            topic_id=topic_id,
            comment_id=ref.comment_id,
            author_id=author_id,
            body=body,
            created_at=SERVER_TIMESTAMP,
            parent_comment_id=parent_id,
            author_name=author_name,
        )
        atomic = self.store.atomic_batches

        async def write(tx: Transaction) -> None:
            topic_data = await tx.get(EntityRef.for_topic(topic_id))
            if topic_data is None:
                raise TopicNotFoundError
            if parent_id is not None:
                parent = await tx.get(EntityRef.for_comment(topic_id, parent_id))
                if parent is None or (parent.get("topicId") or topic_id) != topic_id:
                    raise InvalidParentError
            tx.create(ref, comment.to_document())
            if atomic:
                self.counter.record(tx, topic_id, topic_data, +1)

        await self._transact(write, "comment_submit")
        if not atomic:
            await self.counter.adjust(topic_id, +1)

        logger.info(
            "comment_submitted",
            topic_id=topic_id,
            comment_id=comment.comment_id,
            parent_id=parent_id,
            author_id=author_id,
        )
        return comment.comment_id

    async def get_comment(self, topic_id: str, comment_id: str) -> Comment:
        comment = await self.store.get_comment(topic_id, comment_id)
        if comment is None:
            raise CommentNotFoundError
        return comment

    async def edit_comment(
        self,
        topic_id: str,
        comment_id: str,
        body: str,
        user_id: str | None,
        role: UserRole | str = UserRole.USER,
    ) -> Comment:
        comment = await self.get_comment(topic_id, comment_id)
        _require_owner(comment.author_id, user_id, role)
        try:
            await self.store.update_comment(
                topic_id, comment_id, {"body": body, "editedAt": SERVER_TIMESTAMP}
            )
        except DocumentNotFoundError as e:
            raise CommentNotFoundError from e

        logger.info("comment_edited", topic_id=topic_id, comment_id=comment_id, user_id=user_id)
        return await self.get_comment(topic_id, comment_id)

    async def delete_comment(
        self,
        topic_id: str,
        comment_id: str,
        user_id: str | None,
        role: UserRole | str = UserRole.USER,
    ) -> None:
        """Delete one comment and decrement ``replyCount`` by one.

        Replies to the deleted comment are kept; the tree shows them as
        roots from then on.
        """
        _require_identity(user_id)
        ref = EntityRef.for_comment(topic_id, comment_id)
        topic_ref = EntityRef.for_topic(topic_id)
        atomic = self.store.atomic_batches

        async def write(tx: Transaction) -> None:
            data = await tx.get(ref)
            if data is None:
                raise CommentNotFoundError
            _require_owner(data.get("authorId", ""), user_id, role)
            topic_data = await tx.get(topic_ref) if atomic else None
            tx.delete(ref)
            if topic_data is not None:
                self.counter.record(tx, topic_id, topic_data, -1)

        await self._transact(write, "comment_delete")
        if not atomic:
            try:
                await self.counter.adjust(topic_id, -1)
            except TopicNotFoundError:
                logger.warning("reply_count_topic_missing", topic_id=topic_id)

        logger.info(
            "comment_deleted", topic_id=topic_id, comment_id=comment_id, user_id=user_id
        )

    # ==========================================================================
    # Reactions
    # ==========================================================================

    async def toggle_reaction(
        self, ref: EntityRef, kind: ReactionKind, user_id: str | None
    ) -> tuple[bool, ReactionSet]:
        """Flip the caller's reaction.

        Returns the new membership together with the committed reaction set.
        The membership bool is the toggle result; the set rides along so the
        response can carry counts from the same transaction. See
        ``ReactionLedger.toggle``.
        """
        return await self.reactions.toggle(ref, kind, user_id)

    # ==========================================================================
    # Threads
    # ==========================================================================

    async def get_thread(self, topic_id: str) -> tuple[Topic, Forest]:
        """Read a topic and its reply forest once, without subscribing."""
        topic = await self.get_topic(topic_id)
        comments = await self.store.list_comments(topic_id)
        return topic, build_comment_forest(comments)

    def observe_thread(self, topic_id: str) -> ThreadObserver:
        """Follow a topic's reply forest live."""
        return self.reconciler.observe(topic_id)

    async def repair_reply_count(self, topic_id: str) -> int:
        return await self.counter.repair(topic_id)

    async def repair_all_reply_counts(self) -> dict[str, int]:
        """Repair every topic. Returns the recounted value per topic id."""
        counts: dict[str, int] = {}
        for topic in await self.store.list_topics(limit=1_000_000):
            try:
                counts[topic.topic_id] = await self.counter.repair(topic.topic_id)
            except TopicNotFoundError:
                logger.info("reply_count_repair_skipped", topic_id=topic.topic_id)
        logger.info("reply_counts_repaired", topics=len(counts))
        return counts

    async def close(self) -> None:
        await self.reconciler.close()
