# =============================================================================
# Text Rendering and Layout Tests
# =============================================================================

from rich.cells import cell_len

from conftest import make_post
from ldui.core import ImageRef, PostPage
from ldui.rendering.layout import fit_cells, layout_posts, topic_row, wrap_cells
from ldui.rendering.text import TextRenderer, TextRenderOptions

COOKED = """
<p>Hello <strong>world</strong></p>
<p><img src="/uploads/default/original/1X/cat.png" alt="a cat" width="640" height="480"></p>
<div class="meta">cat.png 640×480 52 KB</div>
<p><img class="emoji" src="/images/emoji/smile.png" alt=":smile:"></p>
<p><img class="avatar" src="/user_avatar/bob.png"></p>
<p><img src="//cdn.example.com/dog.jpg"></p>
<p>Bye</p>
"""


def test_render_strips_markup_and_image_captions():
    text = TextRenderer().render(COOKED)

    assert "Hello world" in text
    assert "Bye" in text
    assert "52 KB" not in text
    assert "<" not in text
    assert "\n\n\n" not in text


def test_render_empty():
    assert TextRenderer().render("") == ""
    assert TextRenderer().render("   ") == ""


def test_extract_images_skips_decorations_and_resolves_urls():
    renderer = TextRenderer(TextRenderOptions(base_url="https://linux.do"))

    images = renderer.extract_images(COOKED)

    assert images == (
        ImageRef(url="https://linux.do/uploads/default/original/1X/cat.png", alt="a cat"),
        ImageRef(url="https://cdn.example.com/dog.jpg"),
    )


def test_extract_images_deduplicates():
    html = '<a href="/big.png"><img src="/small.png"></a><img src="/small.png">'
    images = TextRenderer(TextRenderOptions(base_url="https://linux.do")).extract_images(html)
    assert [image.url for image in images] == ["https://linux.do/small.png"]


def test_fit_cells_pads_and_truncates():
    assert fit_cells("abc", 5) == "abc  "
    assert fit_cells("abcdef", 4) == "abc…"
    assert cell_len(fit_cells("你好世界", 5)) == 5
    assert fit_cells("x", 0) == ""


def test_wrap_cells_respects_width():
    lines = wrap_cells("the quick brown fox jumps over the lazy dog", 10)
    assert all(cell_len(line) <= 10 for line in lines)
    assert " ".join(lines) == "the quick brown fox jumps over the lazy dog"


def test_wrap_cells_breaks_cjk():
    lines = wrap_cells("这是一个很长的中文句子没有空格", 8)
    assert all(cell_len(line) <= 8 for line in lines)
    assert "".join(lines) == "这是一个很长的中文句子没有空格"


def test_topic_row_fills_width(sample_topic):
    title, meta = topic_row(sample_topic, 100)
    assert cell_len(title) + cell_len(meta) == 100
    assert "Welcome to the forum" in title
    assert "[announcement]" in title
    assert "11 replies" in meta


def test_layout_posts_anchors_images(sample_post_page, sample_image):
    layout = layout_posts((sample_post_page,), 80)

    assert layout.images == (sample_image,)
    anchor = layout.lines[layout.anchors[0]]
    assert anchor.image == 0
    assert anchor.style == "image"
    assert layout.lines[0].style == "post-header"
    assert "#1 user1" in layout.lines[0].text
    assert all(cell_len(line.text) <= 80 for line in layout.lines)


def test_layout_posts_wraps_long_text():
    post = make_post(5, 1, "word " * 60)
    layout = layout_posts((PostPage(topic_id=5, page=1, posts=(post,)),), 40)

    body = [line for line in layout.lines if line.style == "body" and line.text]
    assert len(body) > 1
    assert all(line.text.startswith("  ") for line in body)
