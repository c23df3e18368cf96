"""Forum API endpoints.

Provides routes for:
- Topic CRUD and listings
- Comment submission, edit and delete
- Reaction toggles on topics and comments
- One-shot thread reads
- Reply counter repair (admin)
"""

import structlog
from fastapi import APIRouter, Query, status

from src.auth.dependencies import AdminIdentity, CurrentIdentity, OptionalIdentity
from src.forum.dependencies import ForumServiceDep, handle_forum_error
from src.forum.errors import ForumError
from src.forum.models import Category, EntityRef, ReactionKind
from src.forum.schemas import (
    CommentCreatedResponse,
    CommentResponse,
    CreateCommentRequest,
    CreateTopicRequest,
    MessageResponse,
    ReactionSummary,
    ReactionToggleResponse,
    ReplyCountResponse,
    ThreadResponse,
    TopicDeletedResponse,
    TopicListResponse,
    TopicResponse,
    UpdateCommentRequest,
    UpdateTopicRequest,
    forest_to_response,
)
from src.forum.tree import count_forest


logger = structlog.get_logger(__name__)


router = APIRouter(prefix="/v1/forum", tags=["forum"])


# ==============================================================================
# Topics
# ==============================================================================


@router.post(
    "/topics",
    response_model=TopicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create topic",
)
async def create_topic(
    data: CreateTopicRequest,
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
) -> TopicResponse:
    """Create a new topic in a category."""
    try:
        topic = await forum_service.create_topic(
            author_id=identity.user_id,
            title=data.title,
            body=data.body,
            category=data.category,
            author_name=identity.display_name,
        )
        return TopicResponse.from_topic(topic, identity.user_id)
    except ForumError as e:
        raise handle_forum_error(e) from e


@router.get(
    "/topics",
    response_model=TopicListResponse,
    summary="List topics",
)
async def list_topics(
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
    category: Category | None = Query(None, description="Only topics in this category"),
    limit: int | None = Query(None, ge=1, le=500),
) -> TopicListResponse:
    """List topics newest first."""
    user_id = identity.user_id if identity else None
    topics = await forum_service.list_topics(category=category, limit=limit)
    return TopicListResponse(
        items=[TopicResponse.from_topic(topic, user_id) for topic in topics],
        total=len(topics),
    )


@router.get(
    "/topics/mine",
    response_model=TopicListResponse,
    summary="List my topics",
)
async def list_my_topics(
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
    limit: int | None = Query(None, ge=1, le=500),
) -> TopicListResponse:
    """List topics authored by the caller, newest first."""
    try:
        topics = await forum_service.list_my_topics(identity.user_id, limit=limit)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return TopicListResponse(
        items=[TopicResponse.from_topic(topic, identity.user_id) for topic in topics],
        total=len(topics),
    )


@router.get(
    "/topics/{topic_id}",
    response_model=TopicResponse,
    summary="Get topic",
)
async def get_topic(
    topic_id: str,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> TopicResponse:
    try:
        topic = await forum_service.get_topic(topic_id)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return TopicResponse.from_topic(topic, identity.user_id if identity else None)


@router.patch(
    "/topics/{topic_id}",
    response_model=TopicResponse,
    summary="Edit topic",
)
async def edit_topic(
    topic_id: str,
    data: UpdateTopicRequest,
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
) -> TopicResponse:
    """Edit a topic. Author or admin only."""
    try:
        topic = await forum_service.edit_topic(
            topic_id,
            identity.user_id,
            identity.role,
            title=data.title,
            body=data.body,
            category=data.category,
        )
    except ForumError as e:
        raise handle_forum_error(e) from e
    return TopicResponse.from_topic(topic, identity.user_id)


@router.delete(
    "/topics/{topic_id}",
    response_model=TopicDeletedResponse,
    summary="Delete topic",
)
async def delete_topic(
    topic_id: str,
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
) -> TopicDeletedResponse:
    """Delete a topic and every comment in it. Author or admin only."""
    try:
        removed = await forum_service.delete_topic(topic_id, identity.user_id, identity.role)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return TopicDeletedResponse(topic_id=topic_id, comments_removed=removed)


@router.get(
    "/topics/{topic_id}/thread",
    response_model=ThreadResponse,
    summary="Get topic thread",
)
async def get_thread(
    topic_id: str,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> ThreadResponse:
    """Get a topic with its replies, flattened in display order.

    Each node carries its ``depth`` and ``reply_ids`` so the client can
    rebuild the nesting; siblings are oldest first at every level.
    """
    user_id = identity.user_id if identity else None
    try:
        topic, forest = await forum_service.get_thread(topic_id)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return ThreadResponse(
        topic=TopicResponse.from_topic(topic, user_id),
        comments=forest_to_response(forest, user_id),
        total_comments=count_forest(forest),
    )


# ==============================================================================
# Comments
# ==============================================================================


@router.post(
    "/topics/{topic_id}/comments",
    response_model=CommentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit comment",
)
async def submit_comment(
    topic_id: str,
    data: CreateCommentRequest,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> CommentCreatedResponse:
    """Reply to a topic, or to one of its comments."""
    try:
        comment_id = await forum_service.submit_comment(
            topic_id=topic_id,
            parent_id=data.parent_comment_id,
            body=data.body,
            author_id=identity.user_id if identity else None,
            author_name=identity.display_name if identity else None,
        )
    except ForumError as e:
        raise handle_forum_error(e) from e
    return CommentCreatedResponse(
        id=comment_id, topic_id=topic_id, parent_comment_id=data.parent_comment_id
    )


@router.get(
    "/topics/{topic_id}/comments/{comment_id}",
    response_model=CommentResponse,
    summary="Get comment",
)
async def get_comment(
    topic_id: str,
    comment_id: str,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> CommentResponse:
    try:
        comment = await forum_service.get_comment(topic_id, comment_id)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return CommentResponse.from_comment(comment, identity.user_id if identity else None)


@router.patch(
    "/topics/{topic_id}/comments/{comment_id}",
    response_model=CommentResponse,
    summary="Edit comment",
)
async def edit_comment(
    topic_id: str,
    comment_id: str,
    data: UpdateCommentRequest,
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
) -> CommentResponse:
    """Edit a comment's body. Author or admin only."""
    try:
        comment = await forum_service.edit_comment(
            topic_id, comment_id, data.body, identity.user_id, identity.role
        )
    except ForumError as e:
        raise handle_forum_error(e) from e
    return CommentResponse.from_comment(comment, identity.user_id)


@router.delete(
    "/topics/{topic_id}/comments/{comment_id}",
    response_model=MessageResponse,
    summary="Delete comment",
)
async def delete_comment(
    topic_id: str,
    comment_id: str,
    forum_service: ForumServiceDep,
    identity: CurrentIdentity,
) -> MessageResponse:
    """Delete a comment. Its replies stay, shown as top-level replies."""
    try:
        await forum_service.delete_comment(
            topic_id, comment_id, identity.user_id, identity.role
        )
    except ForumError as e:
        raise handle_forum_error(e) from e
    return MessageResponse(message="Comment deleted")


# ==============================================================================
# Reactions
# ==============================================================================


async def _toggle(
    forum_service, ref: EntityRef, kind: ReactionKind, identity
) -> ReactionToggleResponse:
    user_id = identity.user_id if identity else None
    try:
        member, reactions = await forum_service.toggle_reaction(ref, kind, user_id)
    except ForumError as e:
        raise handle_forum_error(e) from e
    return ReactionToggleResponse(
        kind=kind,
        member=member,
        reactions=ReactionSummary.from_reactions(reactions, user_id),
    )


@router.post(
    "/topics/{topic_id}/reactions/{kind}",
    response_model=ReactionToggleResponse,
    summary="Toggle topic reaction",
)
async def toggle_topic_reaction(
    topic_id: str,
    kind: ReactionKind,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> ReactionToggleResponse:
    """Add the caller's reaction if absent, remove it if present."""
    return await _toggle(forum_service, EntityRef.for_topic(topic_id), kind, identity)


@router.post(
    "/topics/{topic_id}/comments/{comment_id}/reactions/{kind}",
    response_model=ReactionToggleResponse,
    summary="Toggle comment reaction",
)
async def toggle_comment_reaction(
    topic_id: str,
    comment_id: str,
    kind: ReactionKind,
    forum_service: ForumServiceDep,
    identity: OptionalIdentity,
) -> ReactionToggleResponse:
    """Add the caller's reaction if absent, remove it if present."""
    return await _toggle(
        forum_service, EntityRef.for_comment(topic_id, comment_id), kind, identity
    )


# ==============================================================================
# Maintenance
# ==============================================================================


@router.post(
    "/topics/{topic_id}/reply-count/repair",
    response_model=ReplyCountResponse,
    summary="Repair reply counter",
)
async def repair_reply_count(
    topic_id: str,
    forum_service: ForumServiceDep,
    identity: AdminIdentity,
) -> ReplyCountResponse:
    """Recount live comments and overwrite the topic's reply counter."""
    try:
        count = await forum_service.repair_reply_count(topic_id)
    except ForumError as e:
        raise handle_forum_error(e) from e
    logger.info("reply_count_repair_requested", topic_id=topic_id, admin_id=identity.user_id)
    return ReplyCountResponse(topic_id=topic_id, reply_count=count)
