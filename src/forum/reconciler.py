"""Live thread reconciler.

Keeps one store subscription per observed topic, rebuilds the comment
forest on every snapshot and republishes it to every observer of the
topic.

State per topic::

    UNSUBSCRIBED -> SUBSCRIBING -> LIVE <-> ERROR -> UNSUBSCRIBED

LIVE requires at least one delivered snapshot. On a channel failure the
topic moves to ERROR, keeps serving the last good forest and retries the
subscription in the background with exponential backoff. After
``fault_threshold`` consecutive failures the fault is flagged as a
persistent connectivity problem; cached state is still kept. When the
last observer detaches the subscription is torn down, and the next
``observe`` starts again from SUBSCRIBING.

Observers see conflated updates: a slow observer skips intermediate
views and always gets the newest one.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from enum import Enum

import structlog

from src.forum.errors import SubscriptionFaultError
from src.forum.tree import Forest, build_comment_forest, count_forest
from src.store.base import StoreError, ThreadStore
from src.store.retry import backoff_delay


logger = structlog.get_logger(__name__)


class ThreadState(str, Enum):
    """Subscription state of one topic."""

    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    ERROR = "error"


@dataclass(frozen=True)
class ThreadView:
    """What observers of a topic see at one point in time."""

    topic_id: str
    state: ThreadState
    forest: Forest
    fault: SubscriptionFaultError | None = None
    version: int = 0

    @property
    def connectivity_fault(self) -> bool:
        """Whether the fault has persisted long enough to show the user."""
        return self.fault is not None and self.fault.persistent


class ThreadObserver:
    """Async iterator over the views of one topic.

    Yields the current view right away, then each newer one. Call
    ``close`` (or use ``async with``) to detach.
    """

    def __init__(self, feed: "_TopicFeed"):
        self._feed = feed
        self._pending: ThreadView | None = None
        self._wakeup = asyncio.Event()
        self._closed = False

    @property
    def topic_id(self) -> str:
        return self._feed.topic_id

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, view: ThreadView) -> None:
        self._pending = view
        self._wakeup.set()

    def __aiter__(self) -> "ThreadObserver":
        return self

    async def __anext__(self) -> ThreadView:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._pending is not None:
                view, self._pending = self._pending, None
                self._wakeup.clear()
                return view
            await self._wakeup.wait()

    async def close(self) -> None:
        """Detach from the topic. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._wakeup.set()
        await self._feed.detach(self)

    async def __aenter__(self) -> "ThreadObserver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class _TopicFeed:
    """Subscription task and cached view for one topic."""

    def __init__(self, reconciler: "Reconciler", topic_id: str):
        self.reconciler = reconciler
        self.topic_id = topic_id
        self.state = ThreadState.UNSUBSCRIBED
        self.forest: Forest = ()
        self.fault: SubscriptionFaultError | None = None
        self.failures = 0
        self.version = 0
        self.observers: set[ThreadObserver] = set()
        self.task: asyncio.Task | None = None

    def view(self) -> ThreadView:
        return ThreadView(
            topic_id=self.topic_id,
            state=self.state,
            forest=self.forest,
            fault=self.fault,
            version=self.version,
        )

    def publish(self) -> None:
        self.version += 1
        view = self.view()
        for observer in self.observers:
            observer._push(view)

    def start(self) -> None:
        self.state = ThreadState.SUBSCRIBING
        self.version += 1
        self.task = asyncio.create_task(self._run(), name=f"thread-feed:{self.topic_id}")
        logger.debug("thread_subscribing", topic_id=self.topic_id)

    def attach(self, observer: ThreadObserver) -> None:
        self.observers.add(observer)
        observer._push(self.view())

    async def detach(self, observer: ThreadObserver) -> None:
        self.observers.discard(observer)
        if not self.observers:
            await self.reconciler._release(self)

    async def stop(self) -> None:
        task, self.task = self.task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        self.state = ThreadState.UNSUBSCRIBED
        self.forest = ()
        self.fault = None
        logger.debug("thread_unsubscribed", topic_id=self.topic_id)

    async def _run(self) -> None:
        store = self.reconciler.store
        while True:
            try:
                async with contextlib.aclosing(
                    store.subscribe_comments(self.topic_id)
                ) as snapshots:
                    async for comments in snapshots:
                        self._on_snapshot(comments)
                self._on_fault("Change stream ended")
            except StoreError as e:
                self._on_fault(e.message)
            except Exception as e:
                logger.exception(
                    "thread_snapshot_failed", topic_id=self.topic_id, error=str(e)
                )
                self._on_fault(str(e))

            await asyncio.sleep(
                backoff_delay(
                    self.failures,
                    self.reconciler.retry_base_delay,
                    self.reconciler.retry_max_delay,
                )
            )
            logger.debug(
                "thread_resubscribing", topic_id=self.topic_id, attempt=self.failures + 1
            )

    def _on_snapshot(self, comments) -> None:
        self.forest = build_comment_forest(comments, previous=self.forest)
        if self.state is not ThreadState.LIVE:
            logger.info(
                "thread_live",
                topic_id=self.topic_id,
                comments=len(comments),
                recovered=self.failures > 0,
            )
        self.state = ThreadState.LIVE
        self.fault = None
        self.failures = 0
        self.publish()

    def _on_fault(self, reason: str) -> None:
        self.failures += 1
        persistent = self.failures >= self.reconciler.fault_threshold
        self.state = ThreadState.ERROR
        self.fault = SubscriptionFaultError(attempts=self.failures, persistent=persistent)
        log = logger.error if persistent else logger.warning
        log(
            "thread_subscription_failed",
            topic_id=self.topic_id,
            reason=reason,
            failures=self.failures,
            cached_comments=count_forest(self.forest),
        )
        self.publish()


class Reconciler:
    """Shares one live subscription per topic among all observers."""

    def __init__(
        self,
        store: ThreadStore,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 30.0,
        fault_threshold: int = 3,
    ):
        self.store = store
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.fault_threshold = fault_threshold
        self._feeds: dict[str, _TopicFeed] = {}

    def observe(self, topic_id: str) -> ThreadObserver:
        """Attach an observer to a topic, subscribing if it is not active.

        Must be called from a running event loop.
        """
        feed = self._feeds.get(topic_id)
        if feed is None:
            feed = self._feeds[topic_id] = _TopicFeed(self, topic_id)
            feed.start()
        observer = ThreadObserver(feed)
        feed.attach(observer)
        return observer

    def state(self, topic_id: str) -> ThreadState:
        feed = self._feeds.get(topic_id)
        return feed.state if feed else ThreadState.UNSUBSCRIBED

    def current(self, topic_id: str) -> ThreadView | None:
        """Latest view of an observed topic, or None if nobody observes it."""
        feed = self._feeds.get(topic_id)
        return feed.view() if feed else None

    @property
    def active_topics(self) -> list[str]:
        return sorted(self._feeds)

    async def _release(self, feed: _TopicFeed) -> None:
        if self._feeds.get(feed.topic_id) is feed:
            del self._feeds[feed.topic_id]
        await feed.stop()

    async def close(self) -> None:
        """Tear down every subscription and end every observer."""
        feeds = list(self._feeds.values())
        self._feeds.clear()
        for feed in feeds:
            for observer in list(feed.observers):
                observer._closed = True
                observer._wakeup.set()
            feed.observers.clear()
            await feed.stop()
        if feeds:
            logger.info("reconciler_closed", topics=len(feeds))
