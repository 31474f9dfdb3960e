# =============================================================================
# LDUI Core Module
# =============================================================================
# Core domain models for LDUI. These are pure Python dataclasses with no
# external dependencies, so they can be imported anywhere (including worker
# threads) without causing circular imports.
#
#   - Topic / TopicPage: entries of the latest-topics listing
#   - Post / PostPage: posts of a topic, fetched page by page
#   - ImageRef: an image embedded in a post
#   - Content keys: identifiers shared by the cache and the fetch pipeline
# =============================================================================

from ldui.core.keys import ContentKey, ImageKey, PostPageKey, SixelKey, TopicPageKey
from ldui.core.post import ImageRef, ImageStatus, Post, PostPage
from ldui.core.topic import Topic, TopicPage

__all__ = [
    "ContentKey",
    "ImageKey",
    "ImageRef",
    "ImageStatus",
    "Post",
    "PostPage",
    "PostPageKey",
    "SixelKey",
    "Topic",
    "TopicPage",
    "TopicPageKey",
]
