# =============================================================================
# Fetch Pipeline Tests
# =============================================================================
# The pipeline posts completion messages instead of writing the cache, so
# each test collects them in a list and resolves them by hand, the way the
# session's event loop does.
# =============================================================================

import asyncio

import pytest

from conftest import settle
from ldui.cache import ContentCache
from ldui.core import ImageKey, PostPageKey, SixelKey, TopicPage, TopicPageKey
from ldui.rendering.images import PixelBuffer, SixelImage
from ldui.session.fetch import (
    CANCELLED,
    FetchCompleted,
    FetchFailed,
    FetchPipeline,
    FetchStatus,
)

IMAGE_URL = "https://cdn.example.com/uploads/cat.png"


@pytest.fixture
def messages():
    return []


@pytest.fixture
def cache():
    return ContentCache(budget_bytes=10 * 1024 * 1024)


@pytest.fixture
async def pipeline(fake_client, cache, messages):
    pipeline = FetchPipeline(fake_client, cache, messages.append)
    yield pipeline
    pipeline.close()


def resolve_all(pipeline, messages):
    results = [pipeline.resolve(message) for message in messages]
    messages.clear()
    return results


async def test_request_fetches_into_cache(pipeline, fake_client, cache, messages):
    request = pipeline.request(TopicPageKey(1), requester=0)
    assert request.active
    assert TopicPageKey(1) in pipeline.loading()

    await settle()
    assert len(messages) == 1
    assert isinstance(messages[0], FetchCompleted)

    assert resolve_all(pipeline, messages) == [True]
    page = cache.get(TopicPageKey(1))
    assert isinstance(page, TopicPage)
    assert len(page.topics) == 30
    assert pipeline.loading() == frozenset()
    assert pipeline.get(TopicPageKey(1)) is None


async def test_duplicate_requests_share_one_fetch(pipeline, fake_client, messages):
    gate = asyncio.Event()
    fake_client.gates[("topics", 1)] = gate

    first = pipeline.request(TopicPageKey(1), requester=0)
    second = pipeline.request(TopicPageKey(1), requester=3)
    await settle()

    assert second is first
    assert first.requesters == {0, 3}
    assert first.status is FetchStatus.IN_FLIGHT
    assert pipeline.in_flight == 1

    gate.set()
    await settle()

    assert fake_client.calls[("topics", 1)] == 1
    assert len(messages) == 1


async def test_cancel_when_last_requester_popped(pipeline, fake_client, cache, messages):
    fake_client.gates[("posts", 7, 1)] = asyncio.Event()
    request = pipeline.request(PostPageKey(7, 1), requester=1)
    await settle()

    cancelled = pipeline.cancel_for([1])

    assert cancelled == [request]
    assert request.cancelled
    assert request.reason == CANCELLED
    assert pipeline.loading() == frozenset()
    assert pipeline.failures() == {}


async def test_late_completion_after_cancel_is_discarded(pipeline, fake_client, cache):
    fake_client.gates[("posts", 7, 1)] = asyncio.Event()
    request = pipeline.request(PostPageKey(7, 1), requester=1)
    await settle()
    pipeline.cancel_for([1])

    late = FetchCompleted(PostPageKey(7, 1), request.generation, "stale page", 10)

    assert pipeline.resolve(late) is False
    assert PostPageKey(7, 1) not in cache


async def test_cancel_keeps_requests_other_frames_need(pipeline, fake_client):
    fake_client.gates[("topics", 1)] = asyncio.Event()
    request = pipeline.request(TopicPageKey(1), requester=0)
    pipeline.request(TopicPageKey(1), requester=1)

    assert pipeline.cancel_for([1]) == []
    assert request.active
    assert request.requesters == {0}


async def test_failure_then_retry(pipeline, fake_client, cache, messages):
    fake_client.errors[("topics", 1)] = "Request failed with HTTP 502"
    first = pipeline.request(TopicPageKey(1), requester=0)
    await settle()
    resolve_all(pipeline, messages)

    assert pipeline.failures() == {TopicPageKey(1): "Request failed with HTTP 502"}
    assert not first.permanent

    del fake_client.errors[("topics", 1)]
    second = pipeline.retry(TopicPageKey(1), requester=0)
    assert second is not None
    assert second.generation > first.generation

    await settle()
    resolve_all(pipeline, messages)

    assert fake_client.calls[("topics", 1)] == 2
    assert TopicPageKey(1) in cache
    assert pipeline.failures() == {}


async def test_failed_request_dropped_with_its_frames(pipeline, fake_client, messages):
    fake_client.errors[("posts", 7, 1)] = "Request failed with HTTP 502"
    pipeline.request(PostPageKey(7, 1), requester=1)
    pipeline.request(PostPageKey(7, 1), requester=2)
    await settle()
    resolve_all(pipeline, messages)
    assert PostPageKey(7, 1) in pipeline.failures()

    assert pipeline.cancel_for([2]) == []
    assert PostPageKey(7, 1) in pipeline.failures()

    assert pipeline.cancel_for([1]) == []
    assert pipeline.failures() == {}
    assert pipeline.get(PostPageKey(7, 1)) is None


async def test_stale_generation_is_discarded(pipeline, fake_client, cache, messages):
    fake_client.errors[("topics", 1)] = "boom"
    first = pipeline.request(TopicPageKey(1), requester=0)
    await settle()
    resolve_all(pipeline, messages)

    fake_client.gates[("topics", 1)] = asyncio.Event()
    pipeline.retry(TopicPageKey(1), requester=0)

    stale = FetchFailed(TopicPageKey(1), first.generation, "old failure")
    assert pipeline.resolve(stale) is False
    assert TopicPageKey(1) in pipeline.loading()


async def test_decode_failure_is_permanent(pipeline, fake_client, messages):
    fake_client.images[IMAGE_URL] = b"definitely not an image"
    pipeline.request(ImageKey(IMAGE_URL), requester=2)
    await settle()

    assert isinstance(messages[0], FetchFailed)
    assert messages[0].permanent
    resolve_all(pipeline, messages)

    assert ImageKey(IMAGE_URL) in pipeline.failures()
    assert pipeline.retry(ImageKey(IMAGE_URL), requester=2) is None
    assert fake_client.calls[("image", IMAGE_URL)] == 1


async def test_image_is_decoded_to_pixels(pipeline, fake_client, cache, messages, png):
    fake_client.images[IMAGE_URL] = png
    pipeline.request(ImageKey(IMAGE_URL), requester=2)
    await settle()
    resolve_all(pipeline, messages)

    pixels = cache.get(ImageKey(IMAGE_URL))
    assert isinstance(pixels, PixelBuffer)
    assert pixels.size == (16, 12)


async def test_sixel_request_encodes_cached_pixels(pipeline, cache, messages):
    pixels = PixelBuffer(width=4, height=6, pixels=b"\xff\x00\x00" * 24)
    cache.put(ImageKey(IMAGE_URL), pixels, pixels.estimated_size())

    request = pipeline.request(SixelKey(IMAGE_URL, 10, 5), requester=2)
    assert request.key == SixelKey(IMAGE_URL, 10, 5)
    await settle()
    resolve_all(pipeline, messages)

    sixel = cache.get(SixelKey(IMAGE_URL, 10, 5))
    assert isinstance(sixel, SixelImage)
    assert sixel.data.startswith(b"\x1bP")


async def test_sixel_request_without_pixels_fetches_image_first(pipeline, fake_client):
    fake_client.gates[("image", IMAGE_URL)] = asyncio.Event()
    request = pipeline.request(SixelKey(IMAGE_URL, 10, 5), requester=2)
    assert request.key == ImageKey(IMAGE_URL)


async def test_result_too_large_for_cache_becomes_failure(fake_client, messages):
    tiny = ContentCache(budget_bytes=64)
    pipeline = FetchPipeline(fake_client, tiny, messages.append)
    pipeline.request(TopicPageKey(1), requester=0)
    await settle()

    assert resolve_all(pipeline, messages) == [True]
    assert TopicPageKey(1) not in tiny
    assert "Too large" in pipeline.failures()[TopicPageKey(1)]
    pipeline.close()
