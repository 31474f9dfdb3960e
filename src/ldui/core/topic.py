# =============================================================================
# Topic Model
# =============================================================================
# Represents a forum topic as listed on the "latest" page of a Discourse site.
#
# Topics arrive in pages. A TopicPage is the unit we cache and fetch: the
# topic list screen stitches consecutive pages together into one sequence,
# appending new pages as the user scrolls past the end.
# =============================================================================

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Topic:
    """
    A forum topic (thread).

    Attributes:
        id: Discourse topic id.
        title: Topic title as shown in the list.
        posts_count: Number of posts (replies + opening post).
        views: View counter reported by the server.
        created_at: When the topic was opened.
        last_posted_at: Last activity timestamp (None for brand new topics).
        tags: Tag names attached to the topic.

    Example:
        >>> topic = Topic(id=42, title="Hello", posts_count=3, views=10)
    """
    id: int
    title: str
    posts_count: int = 0
    views: int = 0
    created_at: datetime | None = None
    last_posted_at: datetime | None = None
    tags: tuple[str, ...] = ()

    @property
    def reply_count(self) -> int:
        """Replies exclude the opening post."""
        return max(self.posts_count - 1, 0)

    @property
    def last_activity(self) -> datetime | None:
        """The most recent timestamp we know about."""
        return self.last_posted_at or self.created_at

    def __str__(self) -> str:
        return f"#{self.id} {self.title}"


@dataclass(frozen=True)
class TopicPage:
    """
    One page of the latest-topics listing.

    Attributes:
        page: 1-based page index (the UI numbering, not the wire numbering).
        topics: Topics on this page, in server order.
        has_more: False when the server reported no further pages.
    """
    page: int
    topics: tuple[Topic, ...] = field(default_factory=tuple)
    has_more: bool = True

    @property
    def is_empty(self) -> bool:
        """An empty page means the listing is exhausted."""
        return not self.topics

    def estimated_size(self) -> int:
        """Rough byte estimate for the content cache budget."""
        size = 128
        for topic in self.topics:
            size += 160 + len(topic.title) * 2 + sum(len(t) for t in topic.tags)
        return size
