"""FastAPI dependencies for the forum.

Provides dependency injection for:
- Forum service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status

from src.forum.errors import ForumError, PermissionDeniedError
from src.forum.service import ForumService


async def get_forum_service(request: Request) -> ForumService:
    """Get forum service from app state.

    Args:
        request: FastAPI request

    Returns:
        ForumService instance
    """
    return _service_from_state(request.app.state)


async def get_forum_service_ws(websocket: WebSocket) -> ForumService:
    """Same as ``get_forum_service`` for WebSocket routes."""
    return _service_from_state(websocket.app.state)


def _service_from_state(app_state) -> ForumService:
    service = getattr(app_state, "forum_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Forum service not available",
        )
    return service


# Type aliases for dependency injection
ForumServiceDep = Annotated[ForumService, Depends(get_forum_service)]
ForumServiceWsDep = Annotated[ForumService, Depends(get_forum_service_ws)]


def handle_forum_error(error: ForumError) -> HTTPException:
    """Convert forum errors to HTTP exceptions.

    Args:
        error: Forum error

    Returns:
        HTTPException with appropriate status code
    """
    if isinstance(error, PermissionDeniedError) and not error.authenticated:
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error.message)

    status_map = {
        "permission_denied": status.HTTP_403_FORBIDDEN,
        "topic_not_found": status.HTTP_404_NOT_FOUND,
        "comment_not_found": status.HTTP_404_NOT_FOUND,
        "invalid_parent": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "concurrent_update": status.HTTP_409_CONFLICT,
        "reaction_conflict": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
