"""Reaction ledger.

Toggles a user's membership in an entity's reaction set through an
optimistic transaction: read the current set, flip membership, write the
whole set back, and re-run everything if another writer committed first.
Two users reacting at once both land; the same user clicking twice ends
where they started.
"""

import asyncio
import weakref

import structlog

from src.forum.errors import (
    CommentNotFoundError,
    PermissionDeniedError,
    ReactionConflictError,
    TopicNotFoundError,
)
from src.forum.models import EntityKind, EntityRef, ReactionKind, ReactionSet
from src.store.base import ThreadStore, Transaction, TransactionConflictError
from src.store.retry import run_with_retries


logger = structlog.get_logger(__name__)


class ReactionLedger:
    """Applies reaction toggles to topics and comments."""

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
        # Serializes toggles on the same entity within this process
        self._locks: weakref.WeakValueDictionary[EntityRef, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def toggle(
        self, ref: EntityRef, kind: ReactionKind, user_id: str | None
    ) -> tuple[bool, ReactionSet]:
        """Flip ``user_id``'s ``kind`` reaction on an entity.

        Returns:
            ``(is_member, reactions)``: the user's new membership, which is
            the toggle result proper, paired with the reaction set committed
            in the same transaction so callers can report counts without a
            second read that could race with other writers.

        Raises:
            PermissionDeniedError: No user identity.
            TopicNotFoundError / CommentNotFoundError: Entity does not exist.
            ReactionConflictError: Every attempt lost to a concurrent writer.
        """
        if not user_id:
            raise PermissionDeniedError

        async def apply(tx: Transaction) -> tuple[bool, ReactionSet]:
            data = await tx.get(ref)
            if data is None:
                if ref.kind is EntityKind.COMMENT:
                    raise CommentNotFoundError
                raise TopicNotFoundError
            updated, is_member = ReactionSet.from_document(data).toggled(kind, user_id)
            tx.update(ref, {kind.field: updated.field_value(kind)})
            return is_member, updated

        lock = self._locks.get(ref)
        if lock is None:
            lock = self._locks[ref] = asyncio.Lock()
        try:
            async with lock:
                is_member, reactions = await run_with_retries(
                    self.store,
                    apply,
                    max_attempts=self.max_attempts,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_max_delay,
                    operation="reaction_toggle",
                )
        except TransactionConflictError as e:
            logger.warning(
                "reaction_conflict",
                entity=ref.path,
                kind=kind.value,
                user_id=user_id,
            )
            raise ReactionConflictError from e

        logger.info(
            "reaction_toggled",
            entity=ref.path,
            kind=kind.value,
            user_id=user_id,
            member=is_member,
        )
        return is_member, reactions
