# =============================================================================
# Forum API Module
# =============================================================================
# Async Discourse REST client plus the one-shot User API Key generator.
#
# The session engine only depends on the three client calls:
#   - list_topics(page)
#   - get_posts(topic_id, page)
#   - fetch_image(url)
# =============================================================================

from ldui.api.client import (
    ForumAPIError,
    ForumAuthError,
    ForumClient,
    NetworkError,
)

__all__ = [
    "ForumAPIError",
    "ForumAuthError",
    "ForumClient",
    "NetworkError",
]
