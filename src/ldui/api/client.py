# =============================================================================
# Discourse API Client
# =============================================================================
# Provides an async client for the parts of the Discourse REST API the
# browser needs, built on httpx.
#
# Key responsibilities:
#   - Latest topics listing, page by page   (GET /latest.json?page=N)
#   - Posts of a topic, page by page        (GET /t/{id}.json?page=N)
#   - Raw image downloads                   (GET <image url>)
#   - User API key authentication           (User-Api-Key header)
#
# Design notes:
#   - All methods are async; parsing HTML bodies happens in a worker thread
#   - Errors surface as ForumAPIError subclasses whose message is the reason
#     string shown in the UI
#   - Topic pages are 1-based for callers and 0-based on the wire
# =============================================================================

import asyncio
import html
import logging
from datetime import datetime
from typing import Any

import httpx

from ldui import __app_name__, __version__
from ldui.core import Post, PostPage, Topic, TopicPage
from ldui.rendering.text import TextRenderer, TextRenderOptions

logger = logging.getLogger(__name__)

# Discourse serves topic posts in chunks of this many posts
DEFAULT_CHUNK_SIZE = 20


class ForumClient:
    """
    Async Discourse client for LDUI.

    Usage:
        >>> async with ForumClient("https://linux.do", api_key) as client:
        ...     page = await client.list_topics(1)
        ...     posts = await client.get_posts(page.topics[0].id, 1)

    Attributes:
        base_url: Site URL without trailing slash.
    """

    # Timeout for HTTP operations (seconds)
    TIMEOUT = 30.0

    # Largest image we are willing to download
    MAX_IMAGE_BYTES = 16 * 1024 * 1024

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        max_image_bytes: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Forum site URL, e.g. "https://linux.do".
            api_key: User API key, if the user generated one.
            timeout: Request timeout in seconds (None keeps TIMEOUT).
            max_image_bytes: Download cap for images.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.max_image_bytes = max_image_bytes or self.MAX_IMAGE_BYTES

        headers = {
            "User-Agent": f"{__app_name__}/{__version__}",
            "Accept": "application/json",
        }
        if api_key:
            headers["User-Api-Key"] = api_key

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout or self.TIMEOUT),
            follow_redirects=True,
            transport=transport,
        )
        self._text = TextRenderer(TextRenderOptions(base_url=self.base_url))

    async def __aenter__(self) -> "ForumClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    # =========================================================================
    # Topics
    # =========================================================================

    async def list_topics(self, page: int) -> TopicPage:
        """
        Fetch one page of the latest topics.

        Args:
            page: 1-based page number.

        Raises:
            NetworkError: On connection problems.
            ForumAPIError: On HTTP errors or unexpected payloads.
        """
        logger.info(f"Fetching latest topics, page {page}")
        data = await self._get_json("/latest.json", params={"page": page - 1})

        topic_list = data.get("topic_list")
        if not isinstance(topic_list, dict) or not isinstance(topic_list.get("topics"), list):
            raise ForumAPIError("Unable to parse topic list")

        try:
            topics = tuple(parse_topic(item) for item in topic_list["topics"])
        except (KeyError, TypeError, ValueError) as e:
            raise ForumAPIError(f"Unable to parse topics: {e}") from e

        has_more = bool(topic_list.get("more_topics_url")) and bool(topics)
        logger.info(f"Fetched {len(topics)} topics on page {page}")
        return TopicPage(page=page, topics=topics, has_more=has_more)

    # =========================================================================
    # Posts
    # =========================================================================

    async def get_posts(self, topic_id: int, page: int) -> PostPage:
        """
        Fetch one page of posts of a topic.

        A 404 past the first page means the topic has no more posts and is
        reported as an empty page rather than an error.

        Raises:
            NetworkError: On connection problems.
            ForumAPIError: On HTTP errors or unexpected payloads.
        """
        logger.info(f"Fetching posts of topic {topic_id}, page {page}")
        try:
            data = await self._get_json(f"/t/{topic_id}.json", params={"page": page})
        except ForumAPIError as e:
            if e.status_code == 404 and page > 1:
                return PostPage(topic_id=topic_id, page=page, has_more=False)
            raise

        # HTML to text conversion is CPU work, keep it off the UI task
        result = await asyncio.to_thread(self._parse_post_page, data, topic_id, page)
        logger.info(f"Fetched {len(result.posts)} posts of topic {topic_id}, page {page}")
        return result

    def _parse_post_page(self, data: dict[str, Any], topic_id: int, page: int) -> PostPage:
        stream = data.get("post_stream")
        if not isinstance(stream, dict) or not isinstance(stream.get("posts"), list):
            raise ForumAPIError("Unable to parse post list")

        try:
            posts = tuple(self.parse_post(item, topic_id) for item in stream["posts"])
        except (KeyError, TypeError, ValueError) as e:
            raise ForumAPIError(f"Unable to parse posts: {e}") from e

        chunk_size = int(data.get("chunk_size") or DEFAULT_CHUNK_SIZE)
        posts_count = int(data.get("posts_count") or 0)
        has_more = bool(posts) and page * chunk_size < posts_count

        return PostPage(
            topic_id=topic_id,
            page=page,
            posts=posts,
            title=data.get("title") or "",
            has_more=has_more,
        )

    def parse_post(self, item: dict[str, Any], topic_id: int) -> Post:
        """Convert one post JSON object into a Post, rendering its HTML."""
        cooked = item.get("cooked") or ""
        return Post(
            id=int(item["id"]),
            topic_id=int(item.get("topic_id") or topic_id),
            username=item.get("username") or "",
            raw=cooked,
            text=self._text.render(cooked),
            images=self._text.extract_images(cooked),
            created_at=parse_timestamp(item.get("created_at")),
            post_number=int(item.get("post_number") or 0),
        )

    # =========================================================================
    # Images
    # =========================================================================

    async def fetch_image(self, url: str) -> bytes:
        """
        Download raw image bytes.

        Relative URLs are resolved against the site URL.

        Raises:
            NetworkError: On connection problems.
            ForumAPIError: On HTTP errors or oversized images.
        """
        logger.debug(f"Downloading image: {url}")
        limit = self.max_image_bytes
        try:
            async with self._http.stream("GET", url) as response:
                self._check_status(response)
                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > limit:
                    raise ForumAPIError(f"Image too large: {declared} bytes")

                data = bytearray()
                async for chunk in response.aiter_bytes():
                    data.extend(chunk)
                    if len(data) > limit:
                        raise ForumAPIError(f"Image too large: over {limit} bytes")
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {url}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request failed: {e}") from e
        return bytes(data)

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    async def _request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = await self._http.get(url, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {url}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request failed: {e}") from e

        self._check_status(response)
        return response

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise ForumAuthError(
                f"Not authorized (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise ForumAPIError(
                f"Request failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request(path, params=params)
        logger.debug(f"GET {response.url} -> {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise ForumAPIError(f"Unable to parse response: {e}") from e
        if not isinstance(data, dict):
            raise ForumAPIError("Unexpected response payload")
        return data


# =============================================================================
# Parsing helpers
# =============================================================================

def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Discourse ISO-8601 timestamp ("2024-01-15T10:30:00.000Z")."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Could not parse timestamp: {value}")
        return None


def parse_topic(item: dict[str, Any]) -> Topic:
    """Convert one topic JSON object from /latest.json into a Topic."""
    tags = item.get("tags") or ()
    return Topic(
        id=int(item["id"]),
        title=html.unescape(item.get("fancy_title") or item.get("title") or ""),
        posts_count=int(item.get("posts_count") or 0),
        views=int(item.get("views") or 0),
        created_at=parse_timestamp(item.get("created_at")),
        last_posted_at=parse_timestamp(item.get("last_posted_at")),
        tags=tuple(t["name"] if isinstance(t, dict) else str(t) for t in tags),
    )


# =============================================================================
# Exceptions
# =============================================================================

class ForumAPIError(Exception):
    """Base exception for forum API errors. The message is the UI reason."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(ForumAPIError):
    """Transient transport failure (DNS, connect, timeout). Retryable."""
    pass


class ForumAuthError(ForumAPIError):
    """The server rejected our credentials."""
    pass
