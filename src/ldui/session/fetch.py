# =============================================================================
# Fetch Pipeline
# =============================================================================
# Turns content keys into cached content, off the foreground task.
#
# How it works:
#   1. The event loop calls request(key, frame_id) for every missing key
#   2. A request for a key that is already queued or in flight only records
#      the extra requester (deduplication: one network call per key)
#   3. Each request runs as an asyncio task; network calls go through the
#      forum client, decode/encode work runs in a thread via to_thread()
#   4. The task posts a FetchCompleted / FetchFailed message to the event
#      loop and nothing else: it never touches the cache itself
#   5. The event loop hands the message back to resolve(), on the
#      foreground task, which writes the cache
#
# Cancellation: when every frame that asked for a key has been popped, the
# request is cancelled (Failed(Cancelled)) and dropped from the table. A
# completion that still arrives afterwards carries a stale generation number
# and is discarded by resolve().
# =============================================================================

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Iterable, Protocol

from ldui.api.client import ForumAPIError
from ldui.cache import CacheEvictionRace, CacheFullError, ContentCache
from ldui.core import (
    ContentKey,
    ImageKey,
    PostPage,
    PostPageKey,
    SixelKey,
    TopicPage,
    TopicPageKey,
)
from ldui.rendering.images import DecodeError, ImageRenderer, PixelBuffer

logger = logging.getLogger(__name__)

# Reason recorded on requests cancelled by navigation
CANCELLED = "Cancelled"

# Upper bound on concurrently running requests
DEFAULT_MAX_CONCURRENT = 6


class ForumSource(Protocol):
    """The three forum client calls the pipeline depends on."""

    async def list_topics(self, page: int) -> TopicPage: ...

    async def get_posts(self, topic_id: int, page: int) -> PostPage: ...

    async def fetch_image(self, url: str) -> bytes: ...


class FetchStatus(Enum):
    QUEUED = auto()
    IN_FLIGHT = auto()
    DONE = auto()
    FAILED = auto()


@dataclass
class FetchRequest:
    """
    One fetch of one content key.

    Attributes:
        key: What is being fetched.
        generation: Unique number; completion messages carry it back.
        requesters: Ids of the frames that asked for the key.
        status: Lifecycle state.
        reason: Failure reason when status is FAILED.
        permanent: The failure will not go away by retrying (bad image data).
    """
    key: Any
    generation: int
    requesters: set[int] = field(default_factory=set)
    status: FetchStatus = FetchStatus.QUEUED
    reason: str | None = None
    permanent: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.status in (FetchStatus.QUEUED, FetchStatus.IN_FLIGHT)

    @property
    def cancelled(self) -> bool:
        return self.status is FetchStatus.FAILED and self.reason == CANCELLED


@dataclass(frozen=True)
class FetchCompleted:
    """Posted by a worker when content for key is ready."""
    key: Any
    generation: int
    value: Any
    size: int


@dataclass(frozen=True)
class FetchFailed:
    """Posted by a worker when fetching key failed."""
    key: Any
    generation: int
    reason: str
    permanent: bool = False


class FetchPipeline:
    """
    Deduplicating async fetcher feeding the content cache.

    Usage:
        >>> pipeline = FetchPipeline(client, cache, queue.put_nowait, renderer)
        >>> pipeline.request(TopicPageKey(1), requester=0)
        >>> # later, on the foreground task:
        >>> pipeline.resolve(message)

    Only request(), cancel_for(), resolve() and friends may be called, and
    only from the task that owns the cache.
    """

    def __init__(
        self,
        client: ForumSource,
        cache: ContentCache,
        post: Callable[[Any], None],
        renderer: ImageRenderer | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> None:
        """
        Args:
            client: Forum API client.
            cache: Cache that resolve() writes to (not owned).
            post: Delivers completion messages to the event loop.
            renderer: Image decoder / Sixel encoder.
            max_concurrent: How many requests may run at once.
        """
        self.client = client
        self.cache = cache
        self.renderer = renderer or ImageRenderer()
        self._post = post
        self._requests: dict[Any, FetchRequest] = {}
        self._generations = itertools.count(1)
        self._slots = asyncio.Semaphore(max_concurrent)

    # -------------------------------------------------------------------------
    # Foreground API
    # -------------------------------------------------------------------------

    def request(self, key: ContentKey, requester: int) -> FetchRequest:
        """
        Ask for key on behalf of frame `requester`.

        If the key is already queued or in flight the existing request is
        returned; no second fetch is started. A failed key is re-armed.
        """
        existing = self._requests.get(key)
        if existing is not None and existing.active:
            existing.requesters.add(requester)
            return existing

        source: PixelBuffer | None = None
        if isinstance(key, SixelKey):
            try:
                source = self.cache.require(key.image_key)
            except CacheEvictionRace:
                # The decoded image went away: fetch that first
                logger.debug(f"{key.image_key} evicted before encoding, refetching")
                return self.request(key.image_key, requester)

        request = FetchRequest(key=key, generation=next(self._generations))
        request.requesters.add(requester)
        self._requests[key] = request
        request.task = asyncio.create_task(self._run(request, source), name=f"fetch {key}")
        logger.debug(f"Requested {key} for frame {requester}")
        return request

    def retry(self, key: ContentKey, requester: int) -> FetchRequest | None:
        """Re-issue a failed request. Permanent failures are left alone."""
        existing = self._requests.get(key)
        if existing is not None and existing.permanent:
            return None
        return self.request(key, requester)

    def forget(self, key: ContentKey) -> None:
        """Drop any record of key (used when content is refreshed)."""
        request = self._requests.get(key)
        if request is not None and not request.active:
            del self._requests[key]

    def cancel_for(self, frame_ids: Iterable[int]) -> list[FetchRequest]:
        """
        Cancel requests no remaining frame is interested in.

        Failed requests lose the popped frames too, and their record is
        dropped once nobody is left to show or retry them.

        Args:
            frame_ids: Frames that were popped.

        Returns:
            The requests that were cancelled.
        """
        popped = set(frame_ids)
        cancelled = []
        for key, request in list(self._requests.items()):
            request.requesters -= popped
            if request.requesters:
                continue
            if not request.active:
                del self._requests[key]
                continue
            if request.task is not None:
                request.task.cancel()
            request.status = FetchStatus.FAILED
            request.reason = CANCELLED
            del self._requests[key]
            cancelled.append(request)
        if cancelled:
            logger.debug(f"Cancelled {len(cancelled)} fetches for frames {sorted(popped)}")
        return cancelled

    def resolve(self, message: FetchCompleted | FetchFailed) -> bool:
        """
        Apply a completion message on the foreground task.

        Returns:
            True if the message changed anything, False if it was stale
            (cancelled request, superseded generation) and got discarded.
        """
        request = self._requests.get(message.key)
        if request is None or request.generation != message.generation or not request.active:
            logger.debug(f"Discarding late result for {message.key}")
            return False

        if isinstance(message, FetchFailed):
            self._fail(request, message.reason, message.permanent)
            return True

        try:
            self.cache.put(message.key, message.value, message.size)
        except CacheFullError as e:
            self._fail(request, f"Too large to cache: {e}", permanent=False)
            return True

        request.status = FetchStatus.DONE
        del self._requests[message.key]
        logger.debug(f"Fetched {message.key} ({message.size} bytes)")
        return True

    def _fail(self, request: FetchRequest, reason: str, permanent: bool) -> None:
        request.status = FetchStatus.FAILED
        request.reason = reason
        request.permanent = permanent
        logger.warning(f"Fetch of {request.key} failed: {reason}")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get(self, key: ContentKey) -> FetchRequest | None:
        return self._requests.get(key)

    def failures(self) -> dict[Any, str]:
        """Key -> reason for every failed request still on record."""
        return {
            key: request.reason or "Unknown error"
            for key, request in self._requests.items()
            if request.status is FetchStatus.FAILED
        }

    def loading(self) -> frozenset:
        """Keys with a request queued or in flight."""
        return frozenset(key for key, request in self._requests.items() if request.active)

    @property
    def in_flight(self) -> int:
        return sum(
            1 for request in self._requests.values()
            if request.status is FetchStatus.IN_FLIGHT
        )

    def close(self) -> None:
        """Cancel everything still running."""
        for request in self._requests.values():
            if request.task is not None and not request.task.done():
                request.task.cancel()
        self._requests.clear()

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    async def _run(self, request: FetchRequest, source: PixelBuffer | None) -> None:
        """Worker task: load the value, post exactly one message."""
        async with self._slots:
            if request.status is FetchStatus.QUEUED:
                request.status = FetchStatus.IN_FLIGHT
            try:
                value, size = await self._load(request.key, source)
            except DecodeError as e:
                message: Any = FetchFailed(request.key, request.generation, str(e), permanent=True)
            except ForumAPIError as e:
                message = FetchFailed(request.key, request.generation, str(e))
            except Exception as e:
                # Parser or codec bug: keep the session alive, keep the traceback
                logger.exception(f"Unexpected error fetching {request.key}")
                message = FetchFailed(request.key, request.generation, str(e) or type(e).__name__)
            else:
                message = FetchCompleted(request.key, request.generation, value, size)
        self._post(message)

    async def _load(self, key: Any, source: PixelBuffer | None) -> tuple[Any, int]:
        if isinstance(key, TopicPageKey):
            page = await self.client.list_topics(key.page)
            return page, page.estimated_size()

        if isinstance(key, PostPageKey):
            page = await self.client.get_posts(key.topic_id, key.page)
            return page, page.estimated_size()

        if isinstance(key, ImageKey):
            data = await self.client.fetch_image(key.url)
            pixels = await asyncio.to_thread(self.renderer.decode, data)
            logger.debug(f"Decoded {key.url}: {pixels.width}x{pixels.height}")
            return pixels, pixels.estimated_size()

        if isinstance(key, SixelKey):
            if source is None:
                raise DecodeError(f"No decoded image for {key.url}")
            sixel = await asyncio.to_thread(self.renderer.render_sixel, source, key.cols, key.rows)
            return sixel, sixel.estimated_size()

        raise TypeError(f"Unknown content key: {key!r}")

