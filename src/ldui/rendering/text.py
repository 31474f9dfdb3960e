# =============================================================================
# Text-Based HTML Rendering
# =============================================================================
# Converts Discourse "cooked" post HTML to plain terminal text using
# inscriptis, and pulls out the images a post embeds.
#
# inscriptis is a battle-tested HTML-to-text converter that handles:
#   - Quotes, lists and code blocks
#   - Proper whitespace and line break handling
#   - Tables (Discourse renders markdown tables as HTML tables)
#
# Images are not drawn inline by inscriptis; they become ImageRef values and
# the layout places an image line (or a Sixel block) for each of them.
# =============================================================================

import re
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from inscriptis import get_text
from inscriptis.css_profiles import CSS_PROFILES
from inscriptis.model.config import ParserConfig

from ldui.core import ImageRef


# Classes Discourse puts on images that are decoration, not content
SKIPPED_IMAGE_CLASSES = {"avatar", "emoji", "icon", "site-icon", "onebox-avatar"}

# "image 1920×1080 123 KB" captions under lightboxed images
_IMAGE_SIZE_INFO = re.compile(r"\d+\s*×\s*\d+.*\b\d+(\.\d+)?\s*(B|KB|MB|GB)\b")


@dataclass
class TextRenderOptions:
    """
    Options for text rendering.

    Attributes:
        display_links: Show link targets after link text.
        base_url: Site URL used to resolve relative image URLs.
    """
    display_links: bool = False
    base_url: str = ""


class TextRenderer:
    """
    Renders post HTML to terminal text using inscriptis.

    Usage:
        >>> renderer = TextRenderer(TextRenderOptions(base_url="https://linux.do"))
        >>> text = renderer.render(post_html)
        >>> images = renderer.extract_images(post_html)
    """

    def __init__(self, options: TextRenderOptions | None = None) -> None:
        self.options = options or TextRenderOptions()

        self._config = ParserConfig(
            css=CSS_PROFILES['strict'],
            display_links=self.options.display_links,
            display_images=False,
            display_anchors=False,
        )

    def render(self, html_content: str) -> str:
        """
        Convert post HTML to plain text.

        Returns:
            Plain text with blank-line runs collapsed and image size captions
            removed.
        """
        if not html_content or not html_content.strip():
            return ""

        soup = BeautifulSoup(html_content, "lxml")

        # Lightbox captions and images are shown by the image layout instead
        for node in soup.select("div.meta, img"):
            node.decompose()

        text = get_text(str(soup), self._config)
        return self._clean_output(text)

    def _clean_output(self, text: str) -> str:
        """Clean up the rendered output."""
        # Remove zero-width characters
        text = re.sub(r'[\u200b\u200c\u200d\u2060\ufeff]+', '', text)

        lines = [line.rstrip() for line in text.split('\n')]
        lines = [line for line in lines if not _IMAGE_SIZE_INFO.search(line)]
        text = '\n'.join(lines)

        # Normalize multiple blank lines to max 1
        text = re.sub(r'\n{3,}', '\n\n', text)

        return text.strip()

    def extract_images(self, html_content: str) -> tuple[ImageRef, ...]:
        """
        Extract content images from post HTML.

        Skips avatars, emoji, icons and inline data: URLs. Relative URLs are
        resolved against the configured base URL. Duplicate URLs (thumbnail
        plus lightbox link) are reported once.
        """
        if not html_content:
            return ()

        soup = BeautifulSoup(html_content, "lxml")
        images: list[ImageRef] = []
        seen: set[str] = set()

        for img in soup.find_all("img"):
            classes = set(img.get("class") or [])
            if classes & SKIPPED_IMAGE_CLASSES:
                continue
            src = (img.get("src") or "").strip()
            if not src or src.startswith("data:"):
                continue
            url = self._absolute(src)
            if url in seen:
                continue
            seen.add(url)
            images.append(ImageRef(url=url, alt=(img.get("alt") or "").strip()))

        return tuple(images)

    def _absolute(self, src: str) -> str:
        if src.startswith("//"):
            return "https:" + src
        if self.options.base_url and not re.match(r"^[a-z][a-z0-9+.-]*:", src, re.I):
            return urljoin(self.options.base_url.rstrip("/") + "/", src)
        return src
