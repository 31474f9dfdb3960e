# =============================================================================
# Session Event Loop Tests
# =============================================================================
# End-to-end runs of the session against the fake forum: keys go in as
# KeyPressed events, frame diffs come out through the sink.
# =============================================================================

import asyncio

from conftest import make_post, settle
from ldui.core import ImageKey, ImageRef, PostPage, PostPageKey, SixelKey, TopicPageKey
from ldui.session import FetchCompleted, KeyPressed, Resized, Screen, Session, Tick

IMAGE_URL = "https://cdn.example.com/uploads/cat.png"


def make_session(client, caps, frames):
    return Session(client, caps, frames.append, site="https://forum.example.com")


async def drain(session: Session, rounds: int = 5) -> None:
    """Let fetches finish and dispatch every message they posted."""
    for _ in range(rounds):
        await settle()
        while not session.queue.empty():
            session.dispatch(session.queue.get_nowait())


def screen_text(session: Session) -> str:
    return session.engine.previous.text()


async def test_initial_load(fake_client, text_caps):
    frames = []
    session = make_session(fake_client, text_caps, frames)

    session.start()
    assert frames[0].full
    assert "Loading" in screen_text(session)

    await drain(session)

    assert "Topic 1" in screen_text(session)
    assert TopicPageKey(1) in session.cache
    assert fake_client.calls[("topics", 1)] == 1
    session.pipeline.close()


async def test_failed_load_then_retry(fake_client, text_caps):
    fake_client.errors[("topics", 1)] = "HTTP 502"
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)

    assert "Failed to load page 1: HTTP 502" in screen_text(session)

    del fake_client.errors[("topics", 1)]
    assert session.dispatch(KeyPressed("r", "r"))
    await drain(session)

    assert "Topic 1" in screen_text(session)
    assert fake_client.calls[("topics", 1)] == 2
    session.pipeline.close()


async def test_late_completion_after_back_is_discarded(fake_client, text_caps):
    fake_client.gates[("posts", 1, 1)] = asyncio.Event()
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)

    session.dispatch(KeyPressed("enter"))
    assert session.state.active.screen is Screen.POST_DETAIL
    request = session.pipeline.get(PostPageKey(1, 1))
    assert request is not None

    session.dispatch(KeyPressed("escape"))
    assert session.state.active.screen is Screen.TOPIC_LIST
    assert request.cancelled

    page = PostPage(topic_id=1, page=1, posts=(make_post(1, 1),))
    late = FetchCompleted(PostPageKey(1, 1), request.generation, page, 500)

    assert session.dispatch(late) is False
    assert PostPageKey(1, 1) not in session.cache
    assert len(session.state.stack) == 1
    session.pipeline.close()


async def test_open_image_with_sixel(fake_client, sixel_caps, png):
    fake_client.post_pages[(1, 1)] = PostPage(
        topic_id=1,
        page=1,
        posts=(make_post(1, 1, "Look", images=[ImageRef(url=IMAGE_URL, alt="cat")]),),
        has_more=False,
    )
    fake_client.images[IMAGE_URL] = png
    frames = []
    session = make_session(fake_client, sixel_caps, frames)
    session.start()
    await drain(session)

    session.dispatch(KeyPressed("enter"))
    await drain(session)
    assert ImageKey(IMAGE_URL) in session.cache

    session.dispatch(KeyPressed("tab"))
    session.dispatch(KeyPressed("enter"))
    assert session.state.active.screen is Screen.IMAGE_VIEWER
    await drain(session)

    assert any(isinstance(key, SixelKey) for key in session.cache.keys())
    placements = session.engine.previous.images
    assert len(placements) == 1
    assert placements[0].data.startswith(b"\x1bP")
    assert any(frame.images for frame in frames)
    assert fake_client.calls[("image", IMAGE_URL)] == 1
    session.pipeline.close()


async def test_failed_image_is_forgotten_after_back(fake_client, text_caps):
    fake_client.post_pages[(1, 1)] = PostPage(
        topic_id=1,
        page=1,
        posts=(make_post(1, 1, "Look", images=[ImageRef(url=IMAGE_URL, alt="cat")]),),
        has_more=False,
    )
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)

    session.dispatch(KeyPressed("enter"))
    await drain(session)
    assert ImageKey(IMAGE_URL) in session.pipeline.failures()
    assert "1 failed" in screen_text(session).splitlines()[-1]

    session.dispatch(KeyPressed("escape"))
    assert session.state.active.screen is Screen.TOPIC_LIST
    assert session.pipeline.failures() == {}
    assert "failed" not in screen_text(session).splitlines()[-1]

    session.dispatch(KeyPressed("r", "r"))
    await drain(session)
    assert "failed" not in screen_text(session).splitlines()[-1]
    assert fake_client.calls[("image", IMAGE_URL)] == 1
    session.pipeline.close()


async def test_image_without_sixel_shows_placeholder(fake_client, text_caps, png):
    fake_client.post_pages[(1, 1)] = PostPage(
        topic_id=1,
        page=1,
        posts=(make_post(1, 1, "Look", images=[ImageRef(url=IMAGE_URL, alt="cat")]),),
        has_more=False,
    )
    fake_client.images[IMAGE_URL] = png
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)

    for key in ("enter", "tab", "enter"):
        session.dispatch(KeyPressed(key))
        await drain(session)

    assert "[image]" in screen_text(session)
    assert not any(frame.images for frame in frames)
    assert not any(isinstance(key, SixelKey) for key in session.cache.keys())
    session.pipeline.close()


async def test_tick_only_redraws_while_loading(fake_client, text_caps):
    fake_client.gates[("topics", 1)] = gate = asyncio.Event()
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()

    assert session.dispatch(Tick())
    assert session.spinner == 1

    gate.set()
    await drain(session)
    assert session.dispatch(Tick()) is False
    session.pipeline.close()


async def test_resize_redraws_everything(fake_client, text_caps):
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)
    frames.clear()

    session.dispatch(Resized(100, 30))

    assert frames[-1].full
    assert frames[-1].width == 100
    assert frames[-1].height == 30
    session.pipeline.close()


async def test_unmapped_key_changes_nothing(fake_client, text_caps):
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.start()
    await drain(session)
    frames.clear()

    assert session.dispatch(KeyPressed("z", "z")) is False
    assert frames == []
    session.pipeline.close()


async def test_run_until_quit(fake_client, text_caps):
    frames = []
    session = make_session(fake_client, text_caps, frames)
    session.post(KeyPressed("q", "q"))

    await asyncio.wait_for(session.run(), timeout=2)

    assert session.finished
    assert session.pipeline.loading() == frozenset()
