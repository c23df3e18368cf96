# Core infrastructure
from src.core.context import (
    RequestContext,
    clear_context,
    get_comment_id,
    get_context,
    get_request_id,
    get_topic_id,
    get_user_id,
    set_comment_id,
    set_request_id,
    set_topic_id,
    set_user_id,
)
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.store import get_store, init_store, shutdown_store


__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_comment_id",
    "get_context",
    "get_logger",
    "get_request_id",
    "get_store",
    "get_topic_id",
    "get_user_id",
    "init_store",
    "set_comment_id",
    "set_request_id",
    "set_topic_id",
    "set_user_id",
    "shutdown_store",
]
