# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the LDUI test suite.
#
# FakeForumClient stands in for ForumClient: it serves canned topic pages,
# post pages and image bytes, counts calls, and can hold requests open
# (gates) or fail them, which is what the fetch pipeline tests need.
# =============================================================================

import asyncio
import tempfile
from collections import Counter
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from ldui.api.client import ForumAPIError
from ldui.core import ImageRef, Post, PostPage, Topic, TopicPage
from ldui.rendering.images import TerminalCapabilities


def png_bytes(width: int = 16, height: int = 12, color=(200, 40, 40)) -> bytes:
    """A small solid-colour PNG."""
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_topics(start: int, count: int) -> tuple[Topic, ...]:
    return tuple(
        Topic(
            id=start + i,
            title=f"Topic {start + i}",
            posts_count=3,
            views=10 * (i + 1),
            created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        )
        for i in range(count)
    )


def make_post(topic_id: int, number: int, text: str = "Hello world", images=()) -> Post:
    return Post(
        id=topic_id * 1000 + number,
        topic_id=topic_id,
        username=f"user{number}",
        raw=f"<p>{text}</p>",
        text=text,
        images=tuple(images),
        created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        post_number=number,
    )


class FakeForumClient:
    """
    In-memory forum.

    Attributes:
        topic_pages: page -> TopicPage
        post_pages: (topic_id, page) -> PostPage
        images: url -> bytes
        errors: call key -> reason; matching calls raise ForumAPIError
        gates: call key -> asyncio.Event; matching calls wait for it
        calls: Counter of call keys
    """

    def __init__(self) -> None:
        self.topic_pages: dict[int, TopicPage] = {}
        self.post_pages: dict[tuple[int, int], PostPage] = {}
        self.images: dict[str, bytes] = {}
        self.errors: dict[tuple, str] = {}
        self.gates: dict[tuple, asyncio.Event] = {}
        self.calls: Counter = Counter()
        self.closed = False

    async def _enter(self, call: tuple) -> None:
        self.calls[call] += 1
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        reason = self.errors.get(call)
        if reason is not None:
            raise ForumAPIError(reason)

    async def list_topics(self, page: int) -> TopicPage:
        await self._enter(("topics", page))
        return self.topic_pages.get(page, TopicPage(page=page, has_more=False))

    async def get_posts(self, topic_id: int, page: int) -> PostPage:
        await self._enter(("posts", topic_id, page))
        return self.post_pages.get(
            (topic_id, page), PostPage(topic_id=topic_id, page=page, has_more=False)
        )

    async def fetch_image(self, url: str) -> bytes:
        await self._enter(("image", url))
        if url not in self.images:
            raise ForumAPIError("Request failed with HTTP 404", status_code=404)
        return self.images[url]

    async def close(self) -> None:
        self.closed = True


async def settle(rounds: int = 10) -> None:
    """Let pending tasks (and their to_thread hops) run."""
    for _ in range(rounds):
        await asyncio.sleep(0.01)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def xdg_dirs(temp_dir, monkeypatch):
    """Point all XDG directories into a temporary directory."""
    for name in ("XDG_CONFIG_HOME", "XDG_CACHE_HOME", "XDG_STATE_HOME"):
        monkeypatch.setenv(name, str(temp_dir / name.lower()))
    return temp_dir


@pytest.fixture
def sample_topic():
    """Create a sample Topic for testing."""
    return Topic(
        id=1001,
        title="Welcome to the forum",
        posts_count=12,
        views=3400,
        created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        last_posted_at=datetime(2024, 1, 16, 8, 0, tzinfo=timezone.utc),
        tags=("announcement",),
    )


@pytest.fixture
def sample_image():
    return ImageRef(url="https://cdn.example.com/uploads/cat.png", alt="cat")


@pytest.fixture
def sample_post_page(sample_image):
    """Two posts, the second with one image."""
    return PostPage(
        topic_id=1001,
        page=1,
        posts=(
            make_post(1001, 1, "First post"),
            make_post(1001, 2, "Look at this", images=[sample_image]),
        ),
        title="Welcome to the forum",
        has_more=False,
    )


@pytest.fixture
def fake_client():
    client = FakeForumClient()
    client.topic_pages[1] = TopicPage(page=1, topics=make_topics(1, 30), has_more=True)
    client.topic_pages[2] = TopicPage(page=2, topics=make_topics(31, 30), has_more=False)
    return client


@pytest.fixture
def sixel_caps():
    return TerminalCapabilities(sixel_supported=True)


@pytest.fixture
def text_caps():
    return TerminalCapabilities(sixel_supported=False)


@pytest.fixture
def png():
    return png_bytes()
