# =============================================================================
# Content Keys
# =============================================================================
# A content key names one fetchable unit of content. The same key is used to
# look things up in the content cache and to deduplicate fetches, so keys
# must be immutable and hashable.
#
#   TopicPageKey(page)           - a page of the latest-topics listing
#   PostPageKey(topic_id, page)  - a page of posts of one topic
#   ImageKey(url)                - a fetched + decoded image
#   SixelKey(url, cols, rows)    - an image encoded as Sixel for a cell box
# =============================================================================

from dataclasses import dataclass


@dataclass(frozen=True)
class TopicPageKey:
    page: int

    def __str__(self) -> str:
        return f"topics/page-{self.page}"


@dataclass(frozen=True)
class PostPageKey:
    topic_id: int
    page: int

    def __str__(self) -> str:
        return f"t/{self.topic_id}/page-{self.page}"


@dataclass(frozen=True)
class ImageKey:
    url: str

    def __str__(self) -> str:
        return f"image:{self.url}"


@dataclass(frozen=True)
class SixelKey:
    url: str
    cols: int
    rows: int

    @property
    def image_key(self) -> ImageKey:
        """The decoded image this payload is encoded from."""
        return ImageKey(self.url)

    def __str__(self) -> str:
        return f"sixel:{self.cols}x{self.rows}:{self.url}"


ContentKey = TopicPageKey | PostPageKey | ImageKey | SixelKey
