"""Comment tree builder.

Turns the flat, unordered comment snapshot of a topic into an ordered
forest. The builder is pure: the same set of comments always yields a
structurally identical forest, whatever order they arrive in.

Rules:
- a comment whose parent is missing (deleted, never existed, or itself)
  is a root
- parent cycles are broken by demoting the oldest comment of the cycle
  to a root, so corrupt data stays visible instead of looping
- roots and every children list are ordered by ``created_at`` ascending,
  ties broken by comment id; comments with no timestamp yet sort last
- every comment appears exactly once

Everything is iterative so arbitrarily deep reply chains are safe.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime

from src.forum.models import Comment


_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ForestNode:
    """A comment with its ordered direct replies."""

    comment: Comment
    children: tuple["ForestNode", ...] = ()

    @property
    def comment_id(self) -> str:
        return self.comment.comment_id


Forest = tuple[ForestNode, ...]


def comment_sort_key(comment: Comment) -> tuple[bool, datetime, str]:
    """Chronological key; pending server timestamps sort after everything."""
    created_at = comment.created_at
    if created_at is None:
        return (True, _EPOCH, comment.comment_id)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return (False, created_at, comment.comment_id)


def _resolve_parents(index: dict[str, Comment]) -> dict[str, str | None]:
    parent_of: dict[str, str | None] = {}
    for comment_id, comment in index.items():
        parent_id = comment.parent_comment_id
        if parent_id and parent_id != comment_id and parent_id in index:
            parent_of[comment_id] = parent_id
        else:
            parent_of[comment_id] = None
    return parent_of


def _break_cycles(
    parent_of: dict[str, str | None], order: list[str], index: dict[str, Comment]
) -> None:
    """Detach one comment from every parent cycle, in place.

    Each comment has at most one parent, so every cycle is simple and
    removing one edge breaks it. The member demoted is the one with the
    smallest sort key.
    """
    done: set[str] = set()
    for start in order:
        if start in done:
            continue
        path: list[str] = []
        on_path: dict[str, int] = {}
        node: str | None = start
        while node is not None and node not in done and node not in on_path:
            on_path[node] = len(path)
            path.append(node)
            node = parent_of[node]

        if node is not None and node in on_path:
            cycle = path[on_path[node] :]
            oldest = min(cycle, key=lambda cid: comment_sort_key(index[cid]))
            parent_of[oldest] = None

        done.update(path)


def build_comment_forest(
    comments: Iterable[Comment], previous: Forest | None = None
) -> Forest:
    """Build the ordered reply forest of one topic.

    Args:
        comments: Every live comment of the topic, in any order. Embedded
            child lists are never trusted; only ``parent_comment_id`` is.
            If an id repeats, the last record wins.
        previous: A forest from an earlier build. Subtrees whose comments
            and structure are unchanged are returned as the very same
            objects, so callers can skip re-rendering them.

    Returns:
        Root nodes in chronological order.
    """
    index: dict[str, Comment] = {}
    for comment in comments:
        index[comment.comment_id] = comment
    if not index:
        return ()

    order = sorted(index, key=lambda cid: comment_sort_key(index[cid]))
    parent_of = _resolve_parents(index)
    _break_cycles(parent_of, order, index)

    # ``order`` is already sorted, so appending keeps every list sorted
    children_of: dict[str, list[str]] = {cid: [] for cid in order}
    roots: list[str] = []
    for comment_id in order:
        parent_id = parent_of[comment_id]
        if parent_id is None:
            roots.append(comment_id)
        else:
            children_of[parent_id].append(comment_id)

    reusable = _index_nodes(previous) if previous else {}

    # Post-order: a node is built once all of its children are
    built: dict[str, ForestNode] = {}
    stack: list[tuple[str, bool]] = [(cid, False) for cid in reversed(roots)]
    while stack:
        comment_id, expanded = stack.pop()
        if not expanded:
            stack.append((comment_id, True))
            stack.extend((child, False) for child in reversed(children_of[comment_id]))
            continue

        children = tuple(built[child] for child in children_of[comment_id])
        old = reusable.get(comment_id)
        if old is not None and _same_node(old, index[comment_id], children):
            built[comment_id] = old
        else:
            built[comment_id] = ForestNode(index[comment_id], children)

    forest = tuple(built[cid] for cid in roots)
    if previous is not None and len(previous) == len(forest):
        if all(a is b for a, b in zip(previous, forest, strict=True)):
            return previous
    return forest


def _same_node(old: ForestNode, comment: Comment, children: Forest) -> bool:
    if old.comment != comment or len(old.children) != len(children):
        return False
    return all(a is b for a, b in zip(old.children, children, strict=True))


def _index_nodes(forest: Forest) -> dict[str, ForestNode]:
    return {node.comment_id: node for _, node in iter_forest(forest)}


def iter_forest(forest: Forest) -> Iterator[tuple[int, ForestNode]]:
    """Yield ``(depth, node)`` in display order (pre-order)."""
    stack = [(0, node) for node in reversed(forest)]
    while stack:
        depth, node = stack.pop()
        yield depth, node
        stack.extend((depth + 1, child) for child in reversed(node.children))


def count_forest(forest: Forest) -> int:
    """Number of comments in the forest.

    This is the authoritative reply count of a topic.
    """
    return sum(1 for _ in iter_forest(forest))
