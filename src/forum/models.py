"""Domain models for the discussion forum.

Document layout in the store:
- topics/{topic_id}: a forum post that roots a thread
- topics/{topic_id}/comments/{comment_id}: replies, partitioned by topic

Threading uses an adjacency list: ``parentCommentId`` points at another
comment of the same topic, or is null for a reply to the topic itself.
Nested ``children`` are never persisted; the tree is always derived.

Reactions are membership sets of user ids, one per kind and entity, so a
toggle is naturally idempotent under retried writes.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Fixed set of topic categories."""

    PROFESORES = "profesores"
    ESTUDIANTES = "estudiantes"
    RECURSOS = "recursos"
    GENERAL = "general"


class ReactionKind(str, Enum):
    """The two independent reaction kinds."""

    LIKE = "like"
    THANK = "thank"

    @property
    def field(self) -> str:
        """Document field holding the member ids for this kind."""
        return _REACTION_FIELDS[self]


_REACTION_FIELDS = {
    ReactionKind.LIKE: "likes",
    ReactionKind.THANK: "thanks",
}


class EntityKind(str, Enum):
    """Kinds of reactable entities."""

    TOPIC = "topic"
    COMMENT = "comment"


@dataclass(frozen=True)
class EntityRef:
    """Address of a topic or comment document."""

    kind: EntityKind
    topic_id: str
    comment_id: str | None = None

    @classmethod
    def for_topic(cls, topic_id: str) -> "EntityRef":
        return cls(EntityKind.TOPIC, topic_id)

    @classmethod
    def for_comment(cls, topic_id: str, comment_id: str) -> "EntityRef":
        return cls(EntityKind.COMMENT, topic_id, comment_id)

    @property
    def entity_id(self) -> str:
        """Id of the addressed document itself."""
        if self.kind is EntityKind.COMMENT:
            return self.comment_id or ""
        return self.topic_id

    @property
    def path(self) -> str:
        """Slash-separated document path."""
        if self.kind is EntityKind.COMMENT:
            return f"topics/{self.topic_id}/comments/{self.comment_id}"
        return f"topics/{self.topic_id}"

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class ReactionSet:
    """Per-entity user-id sets, one per reaction kind."""

    likes: frozenset[str] = frozenset()
    thanks: frozenset[str] = frozenset()

    def members(self, kind: ReactionKind) -> frozenset[str]:
        return self.likes if kind is ReactionKind.LIKE else self.thanks

    def has(self, kind: ReactionKind, user_id: str) -> bool:
        return user_id in self.members(kind)

    def toggled(self, kind: ReactionKind, user_id: str) -> tuple["ReactionSet", bool]:
        """Flip ``user_id``'s membership for ``kind``.

        Returns:
            The new set and the new membership of ``user_id``.
        """
        current = self.members(kind)
        if user_id in current:
            updated, is_member = current - {user_id}, False
        else:
            updated, is_member = current | {user_id}, True
        return replace(self, **{kind.field: updated}), is_member

    def counts(self) -> dict[str, int]:
        return {kind.value: len(self.members(kind)) for kind in ReactionKind}

    def field_value(self, kind: ReactionKind) -> list[str]:
        """Members of ``kind`` as stored: a sorted array of ids."""
        return sorted(self.members(kind))

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "ReactionSet":
        return cls(
            likes=frozenset(data.get("likes") or ()),
            thanks=frozenset(data.get("thanks") or ()),
        )


@dataclass(frozen=True)
class Comment:
    """A reply inside a topic's thread."""

    comment_id: str
    topic_id: str
    author_id: str
    body: str
    created_at: datetime | None
    parent_comment_id: str | None = None
    reactions: ReactionSet = field(default_factory=ReactionSet)
    author_name: str | None = None
    edited_at: datetime | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef.for_comment(self.topic_id, self.comment_id)

    @classmethod
    def from_document(
        cls, topic_id: str, comment_id: str, data: dict[str, Any]
    ) -> "Comment":
        """Create Comment from a stored document.

        Any embedded ``children`` field is ignored.
        """
        return cls(
            comment_id=comment_id,
            topic_id=data.get("topicId") or topic_id,
            author_id=data["authorId"],
            body=data.get("body") or "",
            created_at=data.get("createdAt"),
            parent_comment_id=data.get("parentCommentId") or None,
            reactions=ReactionSet.from_document(data),
            author_name=data.get("authorName"),
            edited_at=data.get("editedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "topicId": self.topic_id,
            "authorId": self.author_id,
            "authorName": self.author_name,
            "body": self.body,
            "createdAt": self.created_at,
            "parentCommentId": self.parent_comment_id,
            "likes": self.reactions.field_value(ReactionKind.LIKE),
            "thanks": self.reactions.field_value(ReactionKind.THANK),
            "editedAt": self.edited_at,
        }


@dataclass(frozen=True)
class Topic:
    """A forum post that roots a discussion thread."""

    topic_id: str
    author_id: str
    title: str
    body: str
    category: Category
    created_at: datetime | None
    reactions: ReactionSet = field(default_factory=ReactionSet)
    reply_count: int = 0
    author_name: str | None = None
    edited_at: datetime | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef.for_topic(self.topic_id)

    @classmethod
    def from_document(cls, topic_id: str, data: dict[str, Any]) -> "Topic":
        """Create Topic from a stored document.

        A negative, missing or malformed ``replyCount`` reads as zero.
        """
        return cls(
            topic_id=topic_id,
            author_id=data["authorId"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            category=Category(data.get("category") or Category.GENERAL.value),
            created_at=data.get("createdAt"),
            reactions=ReactionSet.from_document(data),
            reply_count=next_reply_count(data.get("replyCount"), 0),
            author_name=data.get("authorName"),
            edited_at=data.get("editedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "authorId": self.author_id,
            "authorName": self.author_name,
            "title": self.title,
            "body": self.body,
            "category": self.category.value,
            "createdAt": self.created_at,
            "likes": self.reactions.field_value(ReactionKind.LIKE),
            "thanks": self.reactions.field_value(ReactionKind.THANK),
            "replyCount": self.reply_count,
            "editedAt": self.edited_at,
        }


def next_reply_count(current: Any, delta: int) -> int:
    """Apply ``delta`` to a stored count, treating junk as zero and flooring at zero."""
    try:
        value = int(current or 0)
    except (TypeError, ValueError):
        value = 0
    return max(0, value + delta)


# ==============================================================================
# Factory Functions
# ==============================================================================


def new_topic(
    topic_id: str,
    author_id: str,
    title: str,
    body: str,
    category: Category,
    created_at: Any,
    author_name: str | None = None,
) -> Topic:
    """Create a topic with no reactions and no replies.

    ``created_at`` is usually the store's server-timestamp sentinel.
    """
    return Topic(
        topic_id=topic_id,
        author_id=author_id,
        title=title,
        body=body,
        category=category,
        created_at=created_at,
        author_name=author_name,
    )


def new_comment(
    topic_id: str,
    comment_id: str,
    author_id: str,
    body: str,
    created_at: Any,
    parent_comment_id: str | None = None,
    author_name: str | None = None,
) -> Comment:
    """Create a comment with empty reaction sets."""
    return Comment(
        comment_id=comment_id,
        topic_id=topic_id,
        author_id=author_id,
        body=body,
        created_at=created_at,
        parent_comment_id=parent_comment_id,
        author_name=author_name,
    )


def utcnow() -> datetime:
    return datetime.now(UTC)
