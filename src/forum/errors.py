"""Typed failures raised by the forum core."""


class ForumError(Exception):
    """Base forum error."""

    def __init__(self, message: str, code: str = "forum_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class PermissionDeniedError(ForumError):
    """Action attempted without an identity, or by someone other than the owner."""

    def __init__(self, message: str = "Sign in to interact", *, authenticated: bool = False):
        self.authenticated = authenticated
        super().__init__(message, "permission_denied")


class TopicNotFoundError(ForumError):
    """Topic not found."""

    def __init__(self, message: str = "Topic not found"):
        super().__init__(message, "topic_not_found")


class CommentNotFoundError(ForumError):
    """Comment not found."""

    def __init__(self, message: str = "Comment not found"):
        super().__init__(message, "comment_not_found")


class InvalidParentError(ForumError):
    """Reply parent does not exist in the same topic at creation time."""

    def __init__(self, message: str = "Parent comment does not exist in this topic"):
        super().__init__(message, "invalid_parent")


class ConcurrentUpdateError(ForumError):
    """A transactional write ran out of retries against concurrent writers."""

    def __init__(
        self,
        message: str = "The item was changed concurrently, try again",
        code: str = "concurrent_update",
    ):
        super().__init__(message, code)


class ReactionConflictError(ConcurrentUpdateError):
    """A reaction toggle ran out of retries. Safe to retry manually."""

    def __init__(self, message: str = "Could not apply reaction, try again"):
        super().__init__(message, "reaction_conflict")


class SubscriptionFaultError(ForumError):
    """The live change channel of a topic failed.

    Carried on thread views as a non-blocking connectivity warning;
    never raised to writers.
    """

    def __init__(
        self,
        message: str = "Live updates are temporarily unavailable",
        *,
        attempts: int = 1,
        persistent: bool = False,
    ):
        self.attempts = attempts
        self.persistent = persistent
        super().__init__(message, "subscription_fault")
