"""
Post Segmenter

Stage 3 of the ingestion pipeline: split a fetched listing page into
candidate event posts.

Strategy:
1. Select nodes whose class looks like a post / event / entry container
2. Derive a title (bookmark permalink → first heading → first long link)
3. Drop fragments whose title is missing, too short/long, or still holds markup
4. Keep the first post for each exact title

This is deliberately lossy. Non-event fragments are cheap to discard
downstream, so precision matters more than recall.
"""

from __future__ import annotations

from typing import Optional

from bs4 import BeautifulSoup, Tag
from markdownify import markdownify as md

from .logging_utils import get_logger, is_debug
from .models import EventPost


POST_SELECTOR = (
    ".post, .entry, .event, .event-item, .event-card, "
    "[class*='post'], [class*='event'], [class*='entry']"
)
BOOKMARK_SELECTOR = "a[rel~='bookmark']"
HEADING_SELECTOR = "h1, h2, h3, h4, .title, .event-title, .post-title"
DESCRIPTION_SELECTOR = ".description, .excerpt, .summary, .content, p"

MIN_TITLE_LENGTH = 5
MAX_TITLE_LENGTH = 200
MIN_LINK_TITLE_LENGTH = 10
MARKUP_FRAGMENTS = ("<", ">", "img", "src=")

NON_CONTENT_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "svg", "iframe"]
MAIN_CONTENT_SELECTORS = ["main", "article", "[role='main']", ".content", "#content"]


def _text(element: Tag) -> str:
    return " ".join(element.get_text(" ").split())


def is_valid_title(title: Optional[str]) -> bool:
    """True if a derived title looks like real text rather than a failed extraction."""
    if not title:
        return False
    if len(title) < MIN_TITLE_LENGTH or len(title) > MAX_TITLE_LENGTH:
        return False
    return not any(fragment in title for fragment in MARKUP_FRAGMENTS)


class PostSegmenter:
    """Splits listing HTML into EventPost fragments."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def extract_posts(self, html: str) -> list[EventPost]:
        """Return de-duplicated event posts in document order."""
        if not html:
            return []

        soup = BeautifulSoup(html, "lxml")
        posts: list[EventPost] = []
        seen_titles: set[str] = set()
        candidates = soup.select(POST_SELECTOR)

        for element in candidates:
            title = self._derive_title(element)
            if not is_valid_title(title):
                continue
            if title in seen_titles:
                continue
            seen_titles.add(title)

            description_el = element.select_one(DESCRIPTION_SELECTOR)
            description = _text(description_el) if description_el else ""
            posts.append(
                EventPost(
                    title=title,
                    description=description or None,
                    full_text=_text(element),
                    html=element.decode_contents(),
                )
            )

        self.logger.info(
            "Found %s candidate nodes, %s unique posts", len(candidates), len(posts)
        )
        if is_debug():
            for post in posts[:5]:
                self.logger.debug("Post: %s", post.title)
        return posts

    def _derive_title(self, element: Tag) -> str:
        bookmark = element.select_one(BOOKMARK_SELECTOR)
        if bookmark is not None:
            title = _text(bookmark)
            if title:
                return title

        heading = element.select_one(HEADING_SELECTOR)
        if heading is not None:
            title = _text(heading)
            if title:
                return title

        for anchor in element.find_all("a"):
            link_text = _text(anchor)
            if MIN_LINK_TITLE_LENGTH <= len(link_text) < MAX_TITLE_LENGTH:
                return link_text

        return ""


def clean_page_text(html: str, max_length: int = 8000) -> str:
    """
    Convert a whole page to compact Markdown for page-level extraction.

    Removes scripts, navigation and other non-content elements, prefers the
    main content area and truncates to ``max_length`` characters.
    """
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()

    main_content = None
    for selector in MAIN_CONTENT_SELECTORS:
        main_content = soup.select_one(selector)
        if main_content:
            break
    content_html = str(main_content) if main_content else str(soup.body or soup)

    markdown = md(content_html, heading_style="ATX", bullets="-")
    lines = [line.strip() for line in markdown.split("\n")]
    markdown = "\n".join(line for line in lines if line)

    if len(markdown) > max_length:
        markdown = markdown[:max_length]
    return markdown
