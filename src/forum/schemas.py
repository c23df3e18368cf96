"""Pydantic schemas for the forum API.

Request/Response models with validation for:
- Topic and comment CRUD
- Reaction toggles
- Thread reads (one-shot and live)
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.config.settings import get_settings
from src.forum.models import Category, Comment, ReactionKind, ReactionSet, Topic
from src.forum.reconciler import ThreadState, ThreadView
from src.forum.tree import Forest, iter_forest


_settings = get_settings()


# ==============================================================================
# Request Schemas
# ==============================================================================


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        msg = "Value cannot be empty"
        raise ValueError(msg)
    return v


class CreateTopicRequest(BaseModel):
    """Request to create a new topic."""

    title: str = Field(..., min_length=1, max_length=_settings.topic_title_max_length)
    body: str = Field(..., min_length=1, max_length=_settings.topic_body_max_length)
    category: Category = Category.GENERAL

    @field_validator("title", "body")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Strip whitespace and reject blank text."""
        return _strip_required(v)


class UpdateTopicRequest(BaseModel):
    """Request to edit a topic. Omitted fields are left unchanged."""

    title: str | None = Field(None, min_length=1, max_length=_settings.topic_title_max_length)
    body: str | None = Field(None, min_length=1, max_length=_settings.topic_body_max_length)
    category: Category | None = None

    @field_validator("title", "body")
    @classmethod
    def validate_text(cls, v: str | None) -> str | None:
        return None if v is None else _strip_required(v)


class CreateCommentRequest(BaseModel):
    """Request to reply to a topic, or to a comment when ``parent_comment_id`` is set."""

    body: str = Field(..., min_length=1, max_length=_settings.comment_body_max_length)
    parent_comment_id: str | None = Field(None, min_length=1)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        return _strip_required(v)


class UpdateCommentRequest(BaseModel):
    """Request to edit a comment."""

    body: str = Field(..., min_length=1, max_length=_settings.comment_body_max_length)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        return _strip_required(v)


# ==============================================================================
# Response Schemas
# ==============================================================================


class ReactionSummary(BaseModel):
    """Reaction counts of an entity and whether the caller is among them."""

    like: int = 0
    thank: int = 0
    liked: bool = False
    thanked: bool = False

    @classmethod
    def from_reactions(
        cls, reactions: ReactionSet, user_id: str | None = None
    ) -> "ReactionSummary":
        counts = reactions.counts()
        return cls(
            like=counts[ReactionKind.LIKE.value],
            thank=counts[ReactionKind.THANK.value],
            liked=bool(user_id) and reactions.has(ReactionKind.LIKE, user_id),
            thanked=bool(user_id) and reactions.has(ReactionKind.THANK, user_id),
        )


class AuthorResponse(BaseModel):
    """Author information in topic and comment responses."""

    id: str
    name: str | None = None


class TopicResponse(BaseModel):
    """Response for a single topic."""

    id: str
    author: AuthorResponse
    title: str
    body: str
    category: Category
    reply_count: int = 0
    reactions: ReactionSummary = Field(default_factory=ReactionSummary)
    created_at: datetime | None = None
    edited_at: datetime | None = None

    @classmethod
    def from_topic(cls, topic: Topic, user_id: str | None = None) -> "TopicResponse":
        return cls(
            id=topic.topic_id,
            author=AuthorResponse(id=topic.author_id, name=topic.author_name),
            title=topic.title,
            body=topic.body,
            category=topic.category,
            reply_count=topic.reply_count,
            reactions=ReactionSummary.from_reactions(topic.reactions, user_id),
            created_at=topic.created_at,
            edited_at=topic.edited_at,
        )


class TopicListResponse(BaseModel):
    """List of topics, newest first."""

    items: list[TopicResponse]
    total: int


class CommentResponse(BaseModel):
    """Response for a single comment."""

    id: str
    topic_id: str
    parent_comment_id: str | None = None
    author: AuthorResponse
    body: str
    reactions: ReactionSummary = Field(default_factory=ReactionSummary)
    created_at: datetime | None = None
    edited_at: datetime | None = None

    @classmethod
    def from_comment(cls, comment: Comment, user_id: str | None = None) -> "CommentResponse":
        return cls(
            id=comment.comment_id,
            topic_id=comment.topic_id,
            parent_comment_id=comment.parent_comment_id,
            author=AuthorResponse(id=comment.author_id, name=comment.author_name),
            body=comment.body,
            reactions=ReactionSummary.from_reactions(comment.reactions, user_id),
            created_at=comment.created_at,
            edited_at=comment.edited_at,
        )


class ThreadNodeResponse(CommentResponse):
    """One comment of a thread, in display order.

    Threads are sent flat: nodes come pre-ordered (each parent right before
    its replies, siblings oldest first), ``depth`` is 0 for top-level
    replies and ``reply_ids`` lists the direct replies in order. Clients
    rebuild nesting from these, so arbitrarily deep chains serialize.
    """

    depth: int = 0
    reply_ids: list[str] = Field(default_factory=list)


def forest_to_response(
    forest: Forest, user_id: str | None = None
) -> list[ThreadNodeResponse]:
    """Flatten a built forest into display-ordered nodes."""
    return [
        ThreadNodeResponse.from_comment(node.comment, user_id).model_copy(
            update={
                "depth": depth,
                "reply_ids": [child.comment_id for child in node.children],
            }
        )
        for depth, node in iter_forest(forest)
    ]


class ThreadResponse(BaseModel):
    """A topic with its reply forest."""

    topic: TopicResponse
    comments: list[ThreadNodeResponse]
    total_comments: int


class SubscriptionFaultResponse(BaseModel):
    """Connectivity warning attached to a live thread view."""

    message: str
    attempts: int
    persistent: bool


class ThreadViewMessage(BaseModel):
    """Live thread update pushed over the WebSocket."""

    type: Literal["thread"] = "thread"
    topic_id: str
    state: ThreadState
    version: int
    forest: list[ThreadNodeResponse]
    fault: SubscriptionFaultResponse | None = None

    @classmethod
    def from_view(cls, view: ThreadView, user_id: str | None = None) -> "ThreadViewMessage":
        fault = None
        if view.fault is not None:
            fault = SubscriptionFaultResponse(
                message=view.fault.message,
                attempts=view.fault.attempts,
                persistent=view.fault.persistent,
            )
        return cls(
            topic_id=view.topic_id,
            state=view.state,
            version=view.version,
            forest=forest_to_response(view.forest, user_id),
            fault=fault,
        )


class CommentCreatedResponse(BaseModel):
    """Id of a newly submitted comment."""

    id: str
    topic_id: str
    parent_comment_id: str | None = None


class ReactionToggleResponse(BaseModel):
    """Outcome of a reaction toggle."""

    kind: ReactionKind
    member: bool
    reactions: ReactionSummary


class ReplyCountResponse(BaseModel):
    """Recounted reply counter of a topic."""

    topic_id: str
    reply_count: int


class TopicDeletedResponse(BaseModel):
    """Outcome of a topic delete."""

    topic_id: str
    comments_removed: int


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
    success: bool = True
