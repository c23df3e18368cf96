"""Request middleware: forum context and access logging."""

import re
import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from src.core.context import (
    clear_context,
    set_comment_id,
    set_request_id,
    set_topic_id,
)


logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_TOPIC_PATH = re.compile(r"/topics/(?P<topic_id>[^/]+)(?:/comments/(?P<comment_id>[^/]+))?")
# Path segments under /topics that are routes, not topic ids
_TOPIC_ROUTES = frozenset({"mine"})


def forum_path_ids(path: str) -> tuple[str | None, str | None]:
    """Topic and comment ids addressed by a forum URL path.

    >>> forum_path_ids("/v1/forum/topics/T1/comments/C9/reactions/like")
    ('T1', 'C9')
    """
    match = _TOPIC_PATH.search(path)
    if match is None or match["topic_id"] in _TOPIC_ROUTES:
        return None, None
    return match["topic_id"], match["comment_id"]


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the request id and the addressed topic/comment to the log context.

    Every log line emitted while handling ``/topics/{topic_id}/...`` carries
    ``topic_id`` (and ``comment_id`` below ``/comments/{comment_id}``), so a
    single thread's activity can be followed across requests. The request id
    is echoed in the response.
    """

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = exclude_paths or ["/health"]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start_time = time.perf_counter()
        path = request.url.path

        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        topic_id, comment_id = forum_path_ids(path)
        set_topic_id(topic_id)
        set_comment_id(comment_id)
        request.state.request_id = request_id

        should_log = self.log_requests and not any(
            path.startswith(excluded) for excluded in self.exclude_paths
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                method=request.method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        else:
            if should_log:
                log_method = logger.warning if response.status_code >= 400 else logger.info
                log_method(
                    "request_completed",
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()
