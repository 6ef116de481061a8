"""
Content Cleaner
===============

Markup to plain text normalization for feed item titles and bodies.

This module provides:
- Removal of script, style and embed blocks together with their content
- Tag stripping and entity decoding through BeautifulSoup
- Removal of tracking and media-embed URLs left in the text
- Whitespace collapsing

``normalize_text`` is deterministic and idempotent: feeding its output back
in returns the same string.
"""

import re
import warnings
from typing import Optional

from bs4 import BeautifulSoup, Comment, MarkupResemblesLocatorWarning

from ..utils.logging import get_logger_for_component


warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)


class ContentCleaner:
    """Feed markup cleaner producing single-line plain text."""

    # HTML elements to completely remove (including content)
    REMOVED_ELEMENTS = [
        "script",
        "style",
        "iframe",
        "embed",
        "object",
        "noscript",
        "template",
    ]

    # Inline JavaScript that survives in some feeds as bare text
    SCRIPT_RESIDUE_PATTERNS = [
        re.compile(r"!function\(\)[^}]*}[^;]*;"),
        re.compile(r"function\([^)]*\)[^}]*{[^}]*}"),
        re.compile(r"window\.addEventListener[^;]*;"),
    ]

    # Media embeds and trackers that carry no reading value
    EMBED_URL_PATTERNS = [
        re.compile(r"https?://\S*youtube-nocookie\.com\S*", re.IGNORECASE),
        re.compile(r"https?://\S*datawrapper\.dwcdn\.net\S*", re.IGNORECASE),
        re.compile(r"https?://\S*substackcdn\.com\S*", re.IGNORECASE),
        re.compile(r"https?://\S*embed\S*", re.IGNORECASE),
        re.compile(r"https?://\S*soundcloud\.com\S*", re.IGNORECASE),
        re.compile(r"https?://\S*spotify\.com\S*", re.IGNORECASE),
        re.compile(r"/\"https?\S*", re.IGNORECASE),
    ]

    WHITESPACE_PATTERN = re.compile(r"\s+")

    MAX_PASSES = 8

    def __init__(self):
        self.logger = get_logger_for_component("content_cleaner")
        self.parser = "html.parser"

    def normalize(self, markup: Optional[str]) -> str:
        """Reduce markup to collapsed plain text.

        Passes repeat until the text is stable, since decoding escaped
        markup (``&lt;b&gt;``) can surface new tags.
        """
        if not markup:
            return ""

        text = markup
        for _ in range(self.MAX_PASSES):
            cleaned = self._single_pass(text)
            if cleaned == text:
                break
            text = cleaned
        return text

    def _single_pass(self, text: str) -> str:
        if "<" in text or "&" in text:
            text = self._strip_markup(text)

        for pattern in self.SCRIPT_RESIDUE_PATTERNS:
            text = pattern.sub("", text)
        for pattern in self.EMBED_URL_PATTERNS:
            text = pattern.sub("", text)

        return self.WHITESPACE_PATTERN.sub(" ", text).strip()

    def _strip_markup(self, text: str) -> str:
        soup = BeautifulSoup(text, self.parser)

        for element in soup(self.REMOVED_ELEMENTS):
            element.decompose()

        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        # get_text decodes named and numeric entities; decoded "<" and ">"
        # stay as text unless html.parser reads them as a tag next pass
        return soup.get_text(separator=" ")

    @staticmethod
    def truncate(text: str, max_chars: int) -> str:
        """Cut text to at most ``max_chars`` characters."""
        if len(text) <= max_chars:
            return text
        return text[:max_chars].rstrip()

    @staticmethod
    def count_words(text: str) -> int:
        return len(text.split())


_default_cleaner: Optional[ContentCleaner] = None


def normalize_text(markup: Optional[str]) -> str:
    """Module-level shortcut for ``ContentCleaner().normalize``."""
    global _default_cleaner
    if _default_cleaner is None:
        _default_cleaner = ContentCleaner()
    return _default_cleaner.normalize(markup)
