# =============================================================================
# Forum API Client Tests
# =============================================================================
# The client talks to an httpx.MockTransport serving canned Discourse JSON.
# =============================================================================

from datetime import datetime, timezone

import httpx
import pytest

from ldui.api.client import (
    ForumAPIError,
    ForumAuthError,
    ForumClient,
    NetworkError,
    parse_timestamp,
    parse_topic,
)

SITE = "https://forum.example.com"

LATEST = {
    "topic_list": {
        "more_topics_url": "/latest?page=1",
        "topics": [
            {
                "id": 11,
                "title": "Plain title",
                "fancy_title": "Fish &amp; chips",
                "posts_count": 4,
                "views": 120,
                "created_at": "2024-01-15T10:30:00.000Z",
                "last_posted_at": "2024-01-16T08:00:00.000Z",
                "tags": ["food", {"name": "uk"}],
            },
            {"id": 12, "title": "Second", "posts_count": 1, "views": 3},
        ],
    }
}

TOPIC = {
    "id": 11,
    "title": "Fish & chips",
    "posts_count": 25,
    "chunk_size": 20,
    "post_stream": {
        "posts": [
            {
                "id": 501,
                "username": "alice",
                "cooked": '<p>Look</p><p><img src="/uploads/fish.png" alt="fish"></p>',
                "created_at": "2024-01-15T10:30:00.000Z",
                "post_number": 1,
            },
            {
                "id": 502,
                "username": "bob",
                "cooked": "<p>Nice</p>",
                "created_at": "2024-01-15T11:00:00.000Z",
                "post_number": 2,
            },
        ]
    },
}


def make_client(handler, **kwargs) -> ForumClient:
    return ForumClient(SITE, transport=httpx.MockTransport(handler), **kwargs)


async def test_list_topics():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.url.path == "/latest.json"
        return httpx.Response(200, json=LATEST)

    async with make_client(handler, api_key="secret") as client:
        page = await client.list_topics(1)

    assert seen[0].url.params["page"] == "0"
    assert seen[0].headers["User-Api-Key"] == "secret"
    assert page.page == 1
    assert page.has_more
    assert [t.id for t in page.topics] == [11, 12]
    assert page.topics[0].title == "Fish & chips"
    assert page.topics[0].tags == ("food", "uk")
    assert page.topics[0].reply_count == 3


async def test_no_api_key_header_without_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "User-Api-Key" not in request.headers
        return httpx.Response(200, json={"topic_list": {"topics": []}})

    async with make_client(handler) as client:
        page = await client.list_topics(3)

    assert page.is_empty
    assert not page.has_more


async def test_get_posts():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/t/11.json"
        assert request.url.params["page"] == "1"
        return httpx.Response(200, json=TOPIC)

    async with make_client(handler) as client:
        page = await client.get_posts(11, 1)

    assert page.title == "Fish & chips"
    assert page.has_more
    first = page.posts[0]
    assert first.author == "alice"
    assert first.topic_id == 11
    assert "Look" in first.text
    assert first.images[0].url == f"{SITE}/uploads/fish.png"
    assert first.created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


async def test_last_post_page_has_no_more():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=TOPIC)

    async with make_client(handler) as client:
        page = await client.get_posts(11, 2)

    assert not page.has_more


async def test_missing_later_page_is_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async with make_client(handler) as client:
        page = await client.get_posts(11, 3)
        assert page.is_empty
        assert not page.has_more

        with pytest.raises(ForumAPIError) as excinfo:
            await client.get_posts(11, 1)
    assert excinfo.value.status_code == 404


async def test_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    async with make_client(handler, api_key="revoked") as client:
        with pytest.raises(ForumAuthError):
            await client.list_topics(1)


async def test_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(NetworkError):
            await client.list_topics(1)


async def test_malformed_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/latest.json":
            return httpx.Response(200, content=b"<html>maintenance</html>")
        return httpx.Response(200, json={"post_stream": "nope"})

    async with make_client(handler) as client:
        with pytest.raises(ForumAPIError):
            await client.list_topics(1)
        with pytest.raises(ForumAPIError):
            await client.get_posts(11, 1)


async def test_fetch_image():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("big.png"):
            return httpx.Response(200, content=b"x" * 2048)
        return httpx.Response(200, content=b"\x89PNG data")

    async with make_client(handler, max_image_bytes=1024) as client:
        assert await client.fetch_image(f"{SITE}/small.png") == b"\x89PNG data"
        with pytest.raises(ForumAPIError, match="too large"):
            await client.fetch_image(f"{SITE}/big.png")


async def test_fetch_image_stops_reading_past_the_cap():
    sent = []

    async def chunks():
        for _ in range(64):
            sent.append(512)
            yield b"x" * 512

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=chunks())

    async with make_client(handler, max_image_bytes=1024) as client:
        with pytest.raises(ForumAPIError, match="too large"):
            await client.fetch_image(f"{SITE}/endless.png")

    assert len(sent) < 64


async def test_fetch_image_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async with make_client(handler) as client:
        with pytest.raises(ForumAPIError) as excinfo:
            await client.fetch_image("/uploads/missing.png")

    assert excinfo.value.status_code == 404


def test_parse_timestamp():
    assert parse_timestamp("2024-01-15T10:30:00.000Z") == datetime(
        2024, 1, 15, 10, 30, tzinfo=timezone.utc
    )
    assert parse_timestamp(None) is None
    assert parse_timestamp("yesterday") is None


def test_parse_topic_requires_id():
    with pytest.raises(KeyError):
        parse_topic({"title": "no id"})
