# =============================================================================
# Post Model
# =============================================================================
# Represents a single post inside a topic, plus the images it embeds.
#
# Discourse returns post bodies as "cooked" HTML. We keep the raw HTML around
# and store a plain-text rendering next to it, produced off the UI task when
# the page is parsed. Embedded <img> tags become ImageRef values; their
# decode status is resolved later against the content cache.
# =============================================================================

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto


class ImageStatus(Enum):
    """Lifecycle of an embedded image."""
    PENDING = auto()    # Not fetched/decoded yet
    DECODED = auto()    # Pixels available in the cache
    FAILED = auto()     # Fetch or decode failed


@dataclass(frozen=True)
class ImageRef:
    """
    Reference to an image embedded in a post.

    Attributes:
        url: Absolute image URL (relative URLs are resolved at parse time).
        alt: Alt text from the <img> tag, used in placeholders.
        width: Pixel width, known once decoded.
        height: Pixel height, known once decoded.
        status: Decode status.
        error: Failure reason when status is FAILED.
    """
    url: str
    alt: str = ""
    width: int | None = None
    height: int | None = None
    status: ImageStatus = ImageStatus.PENDING
    error: str | None = None

    def decoded(self, width: int, height: int) -> "ImageRef":
        """Return a copy marked as decoded with its pixel dimensions."""
        return replace(self, width=width, height=height,
                       status=ImageStatus.DECODED, error=None)

    def failed(self, reason: str) -> "ImageRef":
        """Return a copy marked as failed."""
        return replace(self, status=ImageStatus.FAILED, error=reason)

    @property
    def label(self) -> str:
        """Short human label: alt text or the file name from the URL."""
        if self.alt:
            return self.alt
        tail = self.url.rstrip("/").rsplit("/", 1)[-1]
        return tail.split("?", 1)[0] or "image"


@dataclass(frozen=True)
class Post:
    """
    A post in a topic.

    Attributes:
        id: Discourse post id.
        topic_id: Id of the owning topic (back reference only).
        username: Author's username.
        raw: Cooked HTML body as delivered by the server.
        text: Plain-text rendering of the body.
        images: Embedded images, in document order.
        created_at: Creation timestamp.
        post_number: Position of the post within its topic (1-based).
    """
    id: int
    topic_id: int
    username: str
    raw: str = ""
    text: str = ""
    images: tuple[ImageRef, ...] = ()
    created_at: datetime | None = None
    post_number: int = 0

    @property
    def author(self) -> str:
        return self.username


@dataclass(frozen=True)
class PostPage:
    """
    One page of posts of a topic.

    Attributes:
        topic_id: Owning topic.
        page: 1-based page index.
        posts: Posts on this page, in stream order.
        title: Topic title, when the server includes it with the posts.
        has_more: False when this is the last page of the topic.
    """
    topic_id: int
    page: int
    posts: tuple[Post, ...] = field(default_factory=tuple)
    title: str = ""
    has_more: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.posts

    def estimated_size(self) -> int:
        """Rough byte estimate for the content cache budget."""
        size = 128 + len(self.title) * 2
        for post in self.posts:
            size += 200 + (len(post.raw) + len(post.text)) * 2
            size += sum(96 + len(img.url) for img in post.images)
        return size
