"""HTML chunker: heading-hierarchy-aware packing of structural elements.

Noise (scripts, navigation, banners, forms, sidebars, ads ...) is removed
first. The remaining structural elements are walked in document order while
a heading stack is threaded through the loop: a heading closes the pending
chunk, pops every heading of the same or deeper level and pushes itself.
Every chunk records the heading stack of its last element as ``hierarchy``.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

from quarry.db.models import Chunk, ChunkMetadata, HeadingRef
from quarry.ingest.base import BaseChunker, ChunkingPolicy, GreedyPacker, Piece, make_unit

NOISE_SELECTORS = ", ".join(
    [
        ".cookie-banner", "#cookie-notice", ".header-banner",
        '[role="banner"]', '[role="contentinfo"]',
        "script", "style", "nav", "footer", "header", "aside", "form",
        "noscript", "iframe", "svg", 'link[rel="stylesheet"]',
        "button", "input", "select", "textarea", "label",
        ".sidebar", "#sidebar", ".comments", "#comments", ".related-posts",
        ".share-buttons", ".pagination", ".breadcrumb", ".modal", ".popup",
        '[aria-hidden="true"]', '[role="navigation"]', '[role="search"]',
        ".ad", ".advertisement", "#ad", "#advertisement",
    ]
)

STRUCTURAL_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "td", "th", "pre", "blockquote", "article"]

_HEADING_RE = re.compile(r"^h([1-6])$")
_WS_RE = re.compile(r"\s+")


def push_heading(stack: tuple[HeadingRef, ...], heading: HeadingRef) -> tuple[HeadingRef, ...]:
    """Return a new stack: ancestors shallower than *heading*, then *heading*."""
    return tuple(h for h in stack if h.level < heading.level) + (heading,)


def strip_noise(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.select(NOISE_SELECTORS):
        # Descendants of an already removed match are destroyed with it.
        if not tag.decomposed:
            tag.decompose()
    return soup


def _element_text(el: Tag) -> str:
    return _WS_RE.sub(" ", el.get_text(" ", strip=True)).strip()


def _is_container(el: Tag) -> bool:
    """True if *el* holds other structural elements, which are visited on their own."""
    return el.find(STRUCTURAL_TAGS) is not None


class HtmlChunker(BaseChunker):
    """Split an HTML document into hierarchy-tagged chunks.

    Non-heading elements shorter than ``min_element_chars`` are skipped;
    headings are always kept. ``policy.overlap_units`` counts elements.
    """

    def __init__(self, policy: ChunkingPolicy | None = None, min_element_chars: int = 15) -> None:
        super().__init__(policy)
        self.min_element_chars = min_element_chars

    def chunk(self, tenant_id: str, content: str, base: ChunkMetadata) -> list[Chunk]:
        if not content or not content.strip():
            return []
        soup = strip_noise(content)
        packer = GreedyPacker(self.policy)
        stack: tuple[HeadingRef, ...] = ()

        for el in soup.find_all(STRUCTURAL_TAGS):
            tag = el.name.lower()
            heading = _HEADING_RE.match(tag)
            if not heading and _is_container(el):
                continue
            text = _element_text(el)
            if not text:
                continue
            if heading:
                packer.section_break()
                stack = push_heading(stack, HeadingRef(level=int(heading.group(1)), text=text))
            elif len(text) < self.min_element_chars:
                continue
            unit = make_unit(text, hierarchy=stack, tag=tag)
            if unit.words:
                packer.add(unit)

        return self._make_chunks(tenant_id, base, packer.finish(), separator="\n")

    def _content_type_for(self, piece: Piece) -> str:
        return "structured_html" if piece.hierarchy else "html_content"
