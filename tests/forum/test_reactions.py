"""Tests for the reaction ledger."""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from src.forum.errors import (
    CommentNotFoundError,
    PermissionDeniedError,
    ReactionConflictError,
    TopicNotFoundError,
)
from src.forum.models import Category, EntityRef, ReactionKind, new_comment, new_topic
from src.forum.reactions import ReactionLedger
from src.store.base import SERVER_TIMESTAMP, TransactionConflictError
from src.store.memory import InMemoryThreadStore


async def _seed(store: InMemoryThreadStore, reply_count: int = 0) -> tuple[EntityRef, EntityRef]:
    topic = new_topic("T1", "alice", "Title", "Body", Category.GENERAL, SERVER_TIMESTAMP)
    await store.create_topic(topic)
    if reply_count:
        await store.update_topic("T1", {"replyCount": reply_count})
    comment = new_comment("T1", "C1", "alice", "hello", SERVER_TIMESTAMP)
    await store.create_comment(comment)
    return topic.ref, comment.ref


class TestToggle:
    """Tests for single-client toggles."""

    @pytest.mark.asyncio
    async def test_toggle_adds_absent_user(self) -> None:
        """Toggling an absent user should add exactly one membership."""
        store = InMemoryThreadStore()
        topic_ref, _ = await _seed(store)
        ledger = ReactionLedger(store)

        member, reactions = await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")

        assert member is True
        assert reactions.likes == frozenset({"bob"})
        stored = await store.get_topic("T1")
        assert stored.reactions.likes == frozenset({"bob"})
        assert stored.reactions.thanks == frozenset()

    @pytest.mark.asyncio
    async def test_toggle_twice_restores_original(self) -> None:
        """Toggling the same (entity, kind, user) twice should return to the start."""
        store = InMemoryThreadStore()
        _, comment_ref = await _seed(store)
        ledger = ReactionLedger(store)

        first, _ = await ledger.toggle(comment_ref, ReactionKind.THANK, "bob")
        second, reactions = await ledger.toggle(comment_ref, ReactionKind.THANK, "bob")

        assert (first, second) == (True, False)
        assert reactions.thanks == frozenset()
        stored = await store.get_comment("T1", "C1")
        assert stored.reactions.thanks == frozenset()

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self) -> None:
        """A like and a thank from the same user should not affect each other."""
        store = InMemoryThreadStore()
        topic_ref, _ = await _seed(store)
        ledger = ReactionLedger(store)

        await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")
        await ledger.toggle(topic_ref, ReactionKind.THANK, "bob")
        await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")

        stored = await store.get_topic("T1")
        assert stored.reactions.likes == frozenset()
        assert stored.reactions.thanks == frozenset({"bob"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", [None, ""])
    async def test_anonymous_toggle_rejected(self, user_id) -> None:
        """A toggle without a user should raise PermissionDeniedError."""
        store = InMemoryThreadStore()
        topic_ref, _ = await _seed(store)
        ledger = ReactionLedger(store)

        with pytest.raises(PermissionDeniedError) as exc_info:
            await ledger.toggle(topic_ref, ReactionKind.LIKE, user_id)

        assert exc_info.value.message == "Sign in to interact"
        assert (await store.get_topic("T1")).reactions.likes == frozenset()

    @pytest.mark.asyncio
    async def test_missing_entities(self) -> None:
        """Toggles on missing topics or comments should raise not-found errors."""
        store = InMemoryThreadStore()
        await _seed(store)
        ledger = ReactionLedger(store)

        with pytest.raises(TopicNotFoundError):
            await ledger.toggle(EntityRef.for_topic("nope"), ReactionKind.LIKE, "bob")
        with pytest.raises(CommentNotFoundError):
            await ledger.toggle(EntityRef.for_comment("T1", "nope"), ReactionKind.LIKE, "bob")

    @pytest.mark.asyncio
    async def test_toggle_never_touches_reply_count(self) -> None:
        """Reaction toggles should leave replyCount alone."""
        store = InMemoryThreadStore()
        topic_ref, comment_ref = await _seed(store, reply_count=3)
        ledger = ReactionLedger(store)

        await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")
        await ledger.toggle(comment_ref, ReactionKind.LIKE, "bob")

        assert (await store.get_topic("T1")).reply_count == 3

    @pytest.mark.asyncio
    async def test_rapid_double_click_toggles_on_then_off(self) -> None:
        """Two overlapping toggles by the same user should serialize to on, then off."""
        store = InMemoryThreadStore(latency=0.001)
        topic_ref, _ = await _seed(store)
        ledger = ReactionLedger(store)

        results = await asyncio.gather(
            ledger.toggle(topic_ref, ReactionKind.LIKE, "bob"),
            ledger.toggle(topic_ref, ReactionKind.LIKE, "bob"),
        )

        assert [member for member, _ in results] == [True, False]
        assert (await store.get_topic("T1")).reactions.likes == frozenset()


class TestConcurrentToggles:
    """Tests for toggles racing across independent clients."""

    @pytest.mark.asyncio
    async def test_two_users_both_land(self) -> None:
        """Concurrent likes by two users on separate clients should both be kept."""
        store = InMemoryThreadStore(latency=0.002)
        topic_ref, _ = await _seed(store)
        client_a = ReactionLedger(store)
        client_b = ReactionLedger(store)

        (a_member, _), (b_member, _) = await asyncio.gather(
            client_a.toggle(topic_ref, ReactionKind.LIKE, "alice"),
            client_b.toggle(topic_ref, ReactionKind.LIKE, "bob"),
        )

        assert a_member is True
        assert b_member is True
        assert (await store.get_topic("T1")).reactions.likes == frozenset({"alice", "bob"})
        assert store.conflicts >= 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(10))
    async def test_interleaved_toggles_keep_every_user(self, seed: int) -> None:
        """Randomly interleaved toggles by many users should all be applied."""
        rng = random.Random(seed)
        store = InMemoryThreadStore(latency=0.001)
        _, comment_ref = await _seed(store)
        users = [f"user{i}" for i in range(6)]
        # Some users toggle twice: they should end up absent
        togglers = users + rng.sample(users, 2)

        async def toggle_later(user_id: str) -> None:
            await asyncio.sleep(rng.random() * 0.003)
            ledger = ReactionLedger(store, max_attempts=25)
            await ledger.toggle(comment_ref, ReactionKind.LIKE, user_id)

        # Second toggles start after the first round so each user stays ordered
        await asyncio.gather(*(toggle_later(user_id) for user_id in users))
        await asyncio.gather(*(toggle_later(user_id) for user_id in togglers[len(users) :]))

        expected = set(users) - set(togglers[len(users) :])
        stored = await store.get_comment("T1", "C1")
        assert stored.reactions.likes == frozenset(expected)


class TestRetryBudget:
    """Tests for exhausting the retry budget."""

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_reaction_conflict(self) -> None:
        """Persistent conflicts should surface as ReactionConflictError."""
        store = InMemoryThreadStore()
        topic_ref, _ = await _seed(store)
        store.run_transaction = AsyncMock(side_effect=TransactionConflictError())
        ledger = ReactionLedger(store, max_attempts=3)

        with pytest.raises(ReactionConflictError) as exc_info:
            await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")

        assert exc_info.value.code == "reaction_conflict"
        assert store.run_transaction.await_count == 3

    @pytest.mark.asyncio
    async def test_conflict_then_success(self) -> None:
        """A conflict followed by a clean attempt should succeed transparently."""
        store = InMemoryThreadStore()
        topic_ref, _ = await _seed(store)
        real_run = store.run_transaction
        attempts = 0

        async def flaky(fn):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise TransactionConflictError()
            return await real_run(fn)

        store.run_transaction = flaky
        ledger = ReactionLedger(store, max_attempts=2)

        member, _ = await ledger.toggle(topic_ref, ReactionKind.LIKE, "bob")

        assert member is True
        assert attempts == 2
