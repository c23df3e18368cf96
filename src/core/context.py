"""Request context management using contextvars.

Each HTTP request or WebSocket session gets a request id, and optionally
the acting user and the topic and comment it addresses. Log processors
read these so call sites never pass them explicitly.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
topic_id_var: ContextVar[str | None] = ContextVar("topic_id", default=None)
comment_id_var: ContextVar[str | None] = ContextVar("comment_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context, generating one if needed."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def set_user_id(user_id: str | None) -> None:
    """Set the acting user for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_topic_id() -> str | None:
    return topic_id_var.get()


def set_topic_id(topic_id: str | None) -> None:
    """Set the topic addressed by the current request or socket."""
    topic_id_var.set(topic_id)


def get_comment_id() -> str | None:
    return comment_id_var.get()


def set_comment_id(comment_id: str | None) -> None:
    comment_id_var.set(comment_id)


def get_context() -> dict[str, Any]:
    """Get the non-empty context variables as a dictionary."""
    values = {
        "request_id": get_request_id(),
        "user_id": get_user_id(),
        "topic_id": get_topic_id(),
        "comment_id": get_comment_id(),
    }
    return {key: value for key, value in values.items() if value}


def clear_context() -> None:
    """Reset all context variables at the end of a request."""
    request_id_var.set("")
    user_id_var.set(None)
    topic_id_var.set(None)
    comment_id_var.set(None)


class RequestContext:
    """Context manager for code running outside the HTTP middleware.

    Usage:
        with RequestContext(user_id="u1", topic_id="T1"):
            logger.info("repair_started")  # carries request_id, user_id, topic_id
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | None = None,
        topic_id: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.user_id = user_id
        self.topic_id = topic_id
        self._tokens: list[tuple[ContextVar[Any], Token[Any]]] = []

    def __enter__(self) -> "RequestContext":
        self._tokens.append(
            (request_id_var, request_id_var.set(self.request_id or generate_request_id()))
        )
        if self.user_id is not None:
            self._tokens.append((user_id_var, user_id_var.set(self.user_id)))
        if self.topic_id is not None:
            self._tokens.append((topic_id_var, topic_id_var.set(self.topic_id)))
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
