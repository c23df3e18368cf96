"""Denormalized reply counter on topics.

``replyCount`` is advisory. It moves by exactly one per comment created
or deleted, never below zero, and can always be repaired by recounting
the live comments. The authoritative count is the size of the built
comment forest.
"""

from typing import Any

import structlog

from src.forum.errors import ConcurrentUpdateError, TopicNotFoundError
from src.forum.models import EntityRef, next_reply_count
from src.store.base import ThreadStore, Transaction, TransactionConflictError
from src.store.retry import run_with_retries


logger = structlog.get_logger(__name__)


class ReplyCounter:
    """Moves and repairs the ``replyCount`` field of topics."""

    def __init__(
        self,
        store: ThreadStore,
        max_attempts: int = 5,
        retry_base_delay: float = 0.0,
        retry_max_delay: float = 0.0,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    @staticmethod
    def record(tx: Transaction, topic_id: str, topic_data: dict[str, Any], delta: int) -> int:
        """Buffer a counter move inside the caller's transaction.

        ``topic_data`` must have been read through ``tx`` so the commit is
        conditioned on it.
        """
        count = next_reply_count(topic_data.get("replyCount"), delta)
        tx.update(EntityRef.for_topic(topic_id), {"replyCount": count})
        return count

    async def _run(self, fn, operation: str):
        try:
            return await run_with_retries(
                self.store,
                fn,
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                operation=operation,
            )
        except TransactionConflictError as e:
            raise ConcurrentUpdateError from e

    async def adjust(self, topic_id: str, delta: int) -> int:
        """Move the counter in a dedicated transaction.

        Used right after a comment write on stores that cannot span the
        comment and its topic in one transaction.

        Returns:
            The committed count.
        """
        ref = EntityRef.for_topic(topic_id)

        async def apply(tx: Transaction) -> int:
            data = await tx.get(ref)
            if data is None:
                raise TopicNotFoundError
            return self.record(tx, topic_id, data, delta)

        count = await self._run(apply, "reply_count_adjust")
        logger.debug("reply_count_adjusted", topic_id=topic_id, delta=delta, count=count)
        return count

    async def repair(self, topic_id: str) -> int:
        """Recount the topic's live comments and overwrite ``replyCount``.

        Returns:
            The recounted value.
        """
        ref = EntityRef.for_topic(topic_id)

        async def apply(tx: Transaction) -> tuple[int, int]:
            data = await tx.get(ref)
            if data is None:
                raise TopicNotFoundError
            comments = await tx.get_comments(topic_id)
            actual = len({comment.comment_id for comment in comments})
            previous = next_reply_count(data.get("replyCount"), 0)
            if data.get("replyCount") != actual:
                tx.update(ref, {"replyCount": actual})
            return previous, actual

        previous, actual = await self._run(apply, "reply_count_repair")
        if previous != actual:
            logger.info(
                "reply_count_repaired",
                topic_id=topic_id,
                previous=previous,
                count=actual,
            )
        return actual
