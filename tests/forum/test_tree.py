"""Tests for the comment tree builder."""

import random
from dataclasses import replace
from datetime import datetime

import pytest

from src.forum.models import Comment, ReactionKind, ReactionSet
from src.forum.tree import (
    ForestNode,
    build_comment_forest,
    comment_sort_key,
    count_forest,
    iter_forest,
)
from tests.factories import make_comment, shape


def _all_ids(forest) -> list[str]:
    return [node.comment_id for _, node in iter_forest(forest)]


def _assert_ordered(forest) -> None:
    levels: list[tuple[ForestNode, ...]] = [forest]
    levels.extend(node.children for _, node in iter_forest(forest))
    for siblings in levels:
        keys = [comment_sort_key(node.comment) for node in siblings]
        assert keys == sorted(keys)


def _random_comments(rng: random.Random, count: int) -> list[Comment]:
    """Comments with random, often corrupt, parent links and timestamp ties."""
    ids = [f"c{i:03d}" for i in range(count)]
    comments = []
    for comment_id in ids:
        roll = rng.random()
        if roll < 0.2:
            parent = None
        elif roll < 0.3:
            parent = f"ghost{rng.randint(0, 5)}"
        elif roll < 0.35:
            parent = comment_id
        else:
            parent = rng.choice(ids)
        t = None if rng.random() < 0.05 else rng.randint(0, count // 4)
        comments.append(make_comment(comment_id, parent=parent, t=t))
    return comments


class TestBuildCommentForest:
    """Tests for basic forest construction."""

    def test_empty_input(self) -> None:
        """Empty input should produce an empty forest."""
        assert build_comment_forest([]) == ()

    def test_replies_nest_under_parents(self) -> None:
        """C1 <- C2 and C3 should build [C1 -> [C2], C3]."""
        comments = [
            make_comment("C3", t=3),
            make_comment("C2", parent="C1", t=2),
            make_comment("C1", t=1),
        ]

        forest = build_comment_forest(comments)

        assert shape(forest) == [(0, "C1"), (1, "C2"), (0, "C3")]

    def test_deleted_parent_promotes_reply_to_root(self) -> None:
        """After C1 is deleted, C2 should become a root rather than vanish."""
        comments = [make_comment("C2", parent="C1", t=2), make_comment("C3", t=3)]

        forest = build_comment_forest(comments)

        assert shape(forest) == [(0, "C2"), (0, "C3")]

    def test_orphan_is_promoted_to_root_not_grandparent(self) -> None:
        """A reply whose parent vanished should not be re-parented to the grandparent."""
        comments = [
            make_comment("A", t=1),
            make_comment("C", parent="B", t=3),
        ]

        forest = build_comment_forest(comments)

        assert shape(forest) == [(0, "A"), (0, "C")]

    def test_children_sorted_oldest_first_with_id_tiebreak(self) -> None:
        """Siblings should sort by created_at, then by id."""
        comments = [
            make_comment("root", t=0),
            make_comment("z", parent="root", t=5),
            make_comment("b", parent="root", t=2),
            make_comment("a", parent="root", t=2),
            make_comment("m", parent="root", t=1),
        ]

        forest = build_comment_forest(comments)

        assert [child.comment_id for child in forest[0].children] == ["m", "a", "b", "z"]

    def test_unstamped_comments_sort_last(self) -> None:
        """Comments still waiting for a server timestamp should sort after stamped ones."""
        comments = [make_comment("pending", t=None), make_comment("old", t=10)]

        forest = build_comment_forest(comments)

        assert [node.comment_id for node in forest] == ["old", "pending"]

    def test_naive_and_aware_timestamps_mix(self) -> None:
        """A naive timestamp should be read as UTC instead of failing to compare."""
        naive = Comment(
            comment_id="naive",
            topic_id="T1",
            author_id="alice",
            body="x",
            created_at=datetime(2024, 3, 1, 11, 0),
        )
        forest = build_comment_forest([make_comment("aware", t=0), naive])

        assert [node.comment_id for node in forest] == ["naive", "aware"]

    def test_self_parent_is_root(self) -> None:
        """A comment pointing at itself should be a root."""
        forest = build_comment_forest([make_comment("A", parent="A")])

        assert shape(forest) == [(0, "A")]

    def test_duplicate_ids_last_record_wins(self) -> None:
        """A repeated id should appear once, with its last record."""
        first = make_comment("A", t=1)
        second = replace(first, body="edited")

        forest = build_comment_forest([first, second])

        assert count_forest(forest) == 1
        assert forest[0].comment.body == "edited"

    def test_embedded_children_field_is_ignored(self) -> None:
        """Only parentCommentId decides placement, never a stored children list."""
        data = {
            "authorId": "alice",
            "body": "hello",
            "createdAt": None,
            "parentCommentId": None,
            "children": [{"id": "ghost"}],
        }
        comment = Comment.from_document("T1", "A", data)

        forest = build_comment_forest([comment])

        assert shape(forest) == [(0, "A")]

    def test_deep_chain_does_not_recurse(self) -> None:
        """A very deep reply chain should build without hitting the recursion limit."""
        depth = 5000
        comments = [make_comment("n0000", t=0)]
        comments.extend(
            make_comment(f"n{i:04d}", parent=f"n{i - 1:04d}", t=i) for i in range(1, depth)
        )

        forest = build_comment_forest(reversed(comments))

        assert count_forest(forest) == depth
        assert list(iter_forest(forest))[-1][0] == depth - 1


class TestCycleSafety:
    """Tests for corrupt parent cycles."""

    def test_two_cycle_oldest_becomes_root(self) -> None:
        """A <-> B should end with the older comment as root and the other as its reply."""
        comments = [
            make_comment("B", parent="A", t=2),
            make_comment("A", parent="B", t=1),
        ]

        forest = build_comment_forest(comments)

        assert shape(forest) == [(0, "A"), (1, "B")]

    def test_three_cycle_with_tail(self) -> None:
        """Every comment of a cycle and of a branch hanging off it should appear once."""
        comments = [
            make_comment("A", parent="C", t=3),
            make_comment("B", parent="A", t=1),
            make_comment("C", parent="B", t=2),
            make_comment("D", parent="A", t=4),
        ]

        forest = build_comment_forest(comments)

        assert shape(forest) == [(0, "B"), (1, "C"), (2, "A"), (3, "D")]

    def test_separate_cycles_each_broken(self) -> None:
        """Independent cycles should each be broken."""
        comments = [
            make_comment("A", parent="B", t=1),
            make_comment("B", parent="A", t=2),
            make_comment("X", parent="Y", t=4),
            make_comment("Y", parent="X", t=3),
        ]

        forest = build_comment_forest(comments)

        assert [node.comment_id for node in forest] == ["A", "Y"]
        assert count_forest(forest) == 4

    @pytest.mark.parametrize("seed", range(25))
    def test_random_corrupt_graphs_are_complete(self, seed: int) -> None:
        """Every comment should appear exactly once whatever the parent links are."""
        rng = random.Random(seed)
        comments = _random_comments(rng, rng.randint(1, 120))

        forest = build_comment_forest(comments)

        ids = _all_ids(forest)
        assert len(ids) == len(set(ids))
        assert set(ids) == {comment.comment_id for comment in comments}
        _assert_ordered(forest)


class TestDeterminism:
    """Tests for order independence."""

    @pytest.mark.parametrize("seed", range(15))
    def test_shuffled_input_builds_same_forest(self, seed: int) -> None:
        """Any input order should produce a structurally identical forest."""
        rng = random.Random(1000 + seed)
        comments = _random_comments(rng, 80)
        expected = shape(build_comment_forest(comments))

        for _ in range(5):
            shuffled = comments[:]
            rng.shuffle(shuffled)
            assert shape(build_comment_forest(shuffled)) == expected


class TestReuseUnchanged:
    """Tests for keeping unchanged nodes across rebuilds."""

    def _comments(self) -> list[Comment]:
        return [
            make_comment("C1", t=1),
            make_comment("C2", parent="C1", t=2),
            make_comment("C3", t=3),
            make_comment("C4", parent="C3", t=4),
        ]

    def test_identical_snapshot_returns_previous_forest(self) -> None:
        """Rebuilding an unchanged snapshot should hand back the same object."""
        previous = build_comment_forest(self._comments())

        rebuilt = build_comment_forest(list(reversed(self._comments())), previous=previous)

        assert rebuilt is previous

    def test_only_changed_branch_is_replaced(self) -> None:
        """A reaction on C4 should replace C3 and C4 but keep the C1 subtree."""
        comments = self._comments()
        previous = build_comment_forest(comments)
        liked, _ = ReactionSet().toggled(ReactionKind.LIKE, "bob")
        comments[3] = replace(comments[3], reactions=liked)

        rebuilt = build_comment_forest(comments, previous=previous)

        assert rebuilt is not previous
        assert rebuilt[0] is previous[0]
        assert rebuilt[1] is not previous[1]
        assert rebuilt[1].children[0].comment.reactions.has(ReactionKind.LIKE, "bob")

    def test_new_reply_replaces_ancestors_only(self) -> None:
        """Adding a reply under C1 should keep the untouched C3 subtree."""
        comments = self._comments()
        previous = build_comment_forest(comments)
        comments.append(make_comment("C5", parent="C1", t=5))

        rebuilt = build_comment_forest(comments, previous=previous)

        assert rebuilt[0] is not previous[0]
        assert rebuilt[0].children[0] is previous[0].children[0]
        assert rebuilt[1] is previous[1]
