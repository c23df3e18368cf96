"""WebSocket API for live threads.

Provides:
- WS /ws/threads/{topic_id} - Live reply forest of a topic
"""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.auth.dependencies import USER_ID_HEADER
from src.core.logging import get_logger
from src.forum.dependencies import ForumServiceWsDep
from src.forum.errors import TopicNotFoundError
from src.forum.reconciler import ThreadObserver
from src.forum.schemas import ThreadViewMessage


logger = get_logger(__name__)

router = APIRouter(tags=["forum-ws"])

PING_INTERVAL = 30

# Close code for an unknown topic
CLOSE_TOPIC_NOT_FOUND = 4404
# Close codes once the thread can no longer be streamed
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011


async def forward_views(
    observer: ThreadObserver, websocket: WebSocket, user_id: str | None
) -> None:
    """Send every view of the observed thread to the socket."""
    async for view in observer:
        message = ThreadViewMessage.from_view(view, user_id)
        await websocket.send_json(message.model_dump(mode="json"))


async def receive_messages(websocket: WebSocket) -> None:
    """Answer client pings and keep the connection alive until it closes."""
    while True:
        try:
            message = await asyncio.wait_for(
                websocket.receive_json(),
                timeout=PING_INTERVAL,
            )
            if message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
        except TimeoutError:
            await websocket.send_json({"type": "ping"})


@router.websocket("/ws/threads/{topic_id}")
async def thread_websocket(
    websocket: WebSocket,
    topic_id: str,
    forum_service: ForumServiceWsDep,
) -> None:
    """WebSocket endpoint for a live topic thread.

    Connect with: ws://host/ws/threads/<topic_id>

    Messages received:
    - {"type": "thread", "state": ..., "forest": [...], "fault": ...} - Thread view
    - {"type": "ping"} - Keep-alive ping (every 30s)

    Messages you can send:
    - {"type": "ping"} - Answered with {"type": "pong"}

    The server closes with 1011 when views can no longer be delivered and
    with 1001 when the thread feed ends.
    """
    try:
        await forum_service.get_topic(topic_id)
    except TopicNotFoundError:
        await websocket.close(code=CLOSE_TOPIC_NOT_FOUND, reason="Topic not found")
        return

    user_id = (websocket.headers.get(USER_ID_HEADER) or "").strip() or None

    await websocket.accept()
    logger.info("thread_websocket_connected", topic_id=topic_id, user_id=user_id)

    observer = forum_service.observe_thread(topic_id)
    forward_task = asyncio.create_task(forward_views(observer, websocket, user_id))
    receive_task = asyncio.create_task(receive_messages(websocket))
    tasks = {forward_task, receive_task}

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        if receive_task in done:
            error = receive_task.exception()
            if not isinstance(error, WebSocketDisconnect):
                logger.warning("thread_websocket_error", topic_id=topic_id, error=str(error))
        else:
            error = forward_task.exception()
            if error is None:
                logger.info("thread_websocket_feed_ended", topic_id=topic_id)
                await websocket.close(code=CLOSE_GOING_AWAY, reason="Thread feed ended")
            elif not isinstance(error, WebSocketDisconnect):
                logger.error(
                    "thread_websocket_forward_failed",
                    topic_id=topic_id,
                    error=str(error),
                    error_type=type(error).__name__,
                )
                await websocket.close(
                    code=CLOSE_INTERNAL_ERROR, reason="Thread stream failed"
                )

    except RuntimeError as e:
        # Closing a socket the client already dropped
        logger.debug("thread_websocket_close_skipped", topic_id=topic_id, error=str(e))
    finally:
        await observer.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("thread_websocket_disconnected", topic_id=topic_id, user_id=user_id)
