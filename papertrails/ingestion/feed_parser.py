"""
Feed Parser
===========

Turns raw feed payloads into canonical ``ArticleRecord`` objects using
feedparser for RSS/Atom decoding.
"""

import calendar
import io
import math
from datetime import datetime, timezone
from typing import Any, Collection, List, Optional

import feedparser

from ..catalog.catalog import detect_publication
from ..config.settings import IngestionSettings
from ..models import ArticleRecord, FeedSource
from ..utils.exceptions import ParseError
from ..utils.logging import get_logger_for_component
from .content_cleaner import ContentCleaner
from .identity import article_id, identity_key, unique_slug


PAID_MARKERS = ("subscribe", "paywall")


class FeedParser:
    """Feed payload decoding and entry conversion."""

    def __init__(
        self,
        content_max_chars: int = 5000,
        excerpt_chars: int = 200,
        words_per_minute: int = 200,
        cleaner: Optional[ContentCleaner] = None,
    ):
        self.content_max_chars = content_max_chars
        self.excerpt_chars = excerpt_chars
        self.words_per_minute = words_per_minute
        self.cleaner = cleaner or ContentCleaner()
        self.logger = get_logger_for_component("feed_parser")

    @classmethod
    def from_settings(cls, settings: IngestionSettings) -> "FeedParser":
        return cls(
            content_max_chars=settings.content_max_chars,
            excerpt_chars=settings.excerpt_chars,
            words_per_minute=settings.words_per_minute,
        )

    def parse(self, payload: bytes, feed_url: Optional[str] = None) -> Any:
        """Decode a payload with feedparser.

        Feeds with recoverable syntax problems are accepted as long as
        feedparser still found entries.

        Raises:
            ParseError: Payload is empty or not a usable feed
        """
        if not payload or not payload.strip():
            raise ParseError("Empty feed payload", feed_url=feed_url)

        # A stream keeps feedparser from treating the payload as a URL or file name
        feed_data = feedparser.parse(io.BytesIO(payload))

        if getattr(feed_data, "bozo", False):
            error_msg = f"Feed parse error: {getattr(feed_data, 'bozo_exception', 'invalid XML structure')}"
            if not feed_data.entries:
                raise ParseError(error_msg, feed_url=feed_url)
            self.logger.info(f"Feed has parse warnings but contains entries: {feed_url}")

        elif not feed_data.entries and not feed_data.get("version"):
            raise ParseError("Payload is not an RSS or Atom feed", feed_url=feed_url)

        return feed_data

    @staticmethod
    def entry_date(entry: Any) -> Optional[datetime]:
        """Publication date of an entry in UTC, if the feed carries one."""
        for field in ("published_parsed", "updated_parsed", "created_parsed"):
            date_tuple = entry.get(field)
            if date_tuple:
                try:
                    # feedparser normalizes struct_time values to UTC
                    return datetime.fromtimestamp(calendar.timegm(date_tuple), tz=timezone.utc)
                except (ValueError, OverflowError, TypeError):
                    continue
        return None

    def newest_entries(self, feed_data: Any, limit: int, fetched_at: datetime) -> List[Any]:
        """At most ``limit`` entries, newest first; undated entries count as fetch time."""
        entries = list(feed_data.entries)
        entries.sort(key=lambda e: self.entry_date(e) or fetched_at, reverse=True)
        return entries[:limit]

    @staticmethod
    def entry_id(entry: Any, source: FeedSource) -> Optional[str]:
        """Stable id of an entry, or None when it has no link, guid or title."""
        key = identity_key(entry.get("link"), entry.get("id"), entry.get("title"))
        if not key:
            return None
        return article_id(source.slug, key)

    @staticmethod
    def _raw_content(entry: Any) -> str:
        """Richest body available: Atom/content:encoded, then summary."""
        content = entry.get("content")
        if isinstance(content, list) and content:
            value = content[0].get("value", "")
            if value:
                return value
        return entry.get("summary", "") or entry.get("description", "") or ""

    def build_record(
        self,
        entry: Any,
        source: FeedSource,
        record_id: str,
        fetched_at: datetime,
        taken_slugs: Collection[str] = (),
    ) -> ArticleRecord:
        """Convert one feed entry into an article record."""
        title = self.cleaner.normalize(entry.get("title", ""))
        link = (entry.get("link") or "").strip()

        full_text = self.cleaner.normalize(self._raw_content(entry))
        content = self.cleaner.truncate(full_text, self.content_max_chars)
        excerpt = self.cleaner.truncate(content, self.excerpt_chars)
        word_count = self.cleaner.count_words(full_text)

        lowered = f"{full_text} {link}".lower()
        is_paid = any(marker in lowered for marker in PAID_MARKERS)

        author = self.cleaner.normalize(entry.get("author", "")) or source.default_author or ""

        return ArticleRecord(
            id=record_id,
            title=title,
            link=link,
            author=author,
            published_at=self.entry_date(entry) or fetched_at,
            content=content,
            excerpt=excerpt,
            word_count=word_count,
            read_time_minutes=max(1, math.ceil(word_count / self.words_per_minute)),
            is_paid=is_paid,
            publication=detect_publication(link, source),
            slug=unique_slug(title, record_id, taken_slugs),
        )
