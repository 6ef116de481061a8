"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for Paper Trails tests.

Time is always injected: the throttle runs on a ``FakeClock`` and every wait
goes through a ``RecordingSleeper`` that advances that clock instead of
sleeping, so politeness tests run instantly and deterministically.
"""

import pytest
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before any imports
os.environ["PAPERTRAILS_LOGGING__FILE_PATH"] = ""
os.environ["PAPERTRAILS_LOGGING__CONSOLE_LOGGING"] = "false"
os.environ["PAPERTRAILS_THROTTLE__JITTER_SECONDS"] = "0"


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced clock usable as both monotonic and wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleeper:
    """Async sleeper that records every wait and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def clock():
    """Fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    """Recording sleeper bound to the fake clock."""
    return RecordingSleeper(clock)


# ============================================================================
# Transport Fixtures
# ============================================================================


Response = Union[bytes, Exception]


class FakeTransport:
    """Scripted transport.

    ``responses`` maps a URL to a payload, an exception, or a list of them
    consumed one per request (the last item repeats).
    """

    name = "fake"

    def __init__(
        self,
        responses: Dict[str, Union[Response, Sequence[Response]]],
        clock: Optional[FakeClock] = None,
    ):
        self.responses = dict(responses)
        self.clock = clock
        self.requests: List[dict] = []
        self.closed = False

    def requests_for(self, url: str) -> List[dict]:
        return [r for r in self.requests if r["url"] == url]

    async def fetch(self, url, headers=None, timeout=None) -> bytes:
        self.requests.append({
            "url": url,
            "headers": dict(headers or {}),
            "at": self.clock() if self.clock else None,
        })
        scripted = self.responses[url]
        if isinstance(scripted, list):
            response = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        else:
            response = scripted
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport_factory(clock):
    """Build a FakeTransport bound to the shared fake clock."""
    def _factory(responses):
        return FakeTransport(responses, clock=clock)
    return _factory


# ============================================================================
# Feed Payload Fixtures
# ============================================================================


def build_rss(
    items: Sequence[dict],
    title: str = "Sample Feed",
    link: str = "https://example.com/",
) -> bytes:
    """RSS 2.0 document; each item dict may carry title, link, guid, author,
    description, content and pub_date."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"'
        ' xmlns:dc="http://purl.org/dc/elements/1.1/">',
        "<channel>",
        f"<title>{title}</title>",
        f"<link>{link}</link>",
        "<description>Sample</description>",
    ]
    for item in items:
        parts.append("<item>")
        if "title" in item:
            parts.append(f"<title>{item['title']}</title>")
        if "link" in item:
            parts.append(f"<link>{item['link']}</link>")
        if "guid" in item:
            parts.append(f'<guid isPermaLink="false">{item["guid"]}</guid>')
        if "author" in item:
            parts.append(f"<dc:creator>{item['author']}</dc:creator>")
        if "pub_date" in item:
            parts.append(f"<pubDate>{item['pub_date']}</pubDate>")
        if "description" in item:
            parts.append(f"<description><![CDATA[{item['description']}]]></description>")
        if "content" in item:
            parts.append(f"<content:encoded><![CDATA[{item['content']}]]></content:encoded>")
        parts.append("</item>")
    parts.extend(["</channel>", "</rss>"])
    return "\n".join(parts).encode("utf-8")


def build_atom(entries: Sequence[dict], title: str = "Sample Atom Feed") -> bytes:
    """Atom 1.0 document; each entry dict may carry title, link, id, author,
    summary and updated."""
    parts = [
        '<?xml version="1.0" encoding="utf-8"?>',
        '<feed xmlns="http://www.w3.org/2005/Atom">',
        f"<title>{title}</title>",
        "<id>urn:sample:feed</id>",
        "<updated>2024-03-01T00:00:00Z</updated>",
    ]
    for entry in entries:
        parts.append("<entry>")
        if "title" in entry:
            parts.append(f"<title>{entry['title']}</title>")
        if "link" in entry:
            parts.append(f'<link href="{entry["link"]}"/>')
        if "id" in entry:
            parts.append(f"<id>{entry['id']}</id>")
        if "author" in entry:
            parts.append(f"<author><name>{entry['author']}</name></author>")
        if "updated" in entry:
            parts.append(f"<updated>{entry['updated']}</updated>")
        if "summary" in entry:
            parts.append(f'<summary type="html"><![CDATA[{entry["summary"]}]]></summary>')
        parts.append("</entry>")
    parts.append("</feed>")
    return "\n".join(parts).encode("utf-8")


def rss_items(prefix: str, count: int, day: int = 1) -> List[dict]:
    """``count`` dated items with distinct links under ``https://{prefix}.example.com``."""
    return [
        {
            "title": f"{prefix.title()} Essay {i}",
            "link": f"https://{prefix}.example.com/essays/{i}",
            "author": "Staff Writer",
            "pub_date": f"2024-03-{day + i % 20:02d}T{i % 24:02d}:00:00Z",
            "description": f"<p>Essay number <b>{i}</b> from {prefix}.</p>",
        }
        for i in range(count)
    ]


@pytest.fixture
def rss_feed():
    """RSS document builder."""
    return build_rss


@pytest.fixture
def atom_feed():
    """Atom document builder."""
    return build_atom


@pytest.fixture
def dated_items():
    """Generator of distinct dated RSS items."""
    return rss_items


@pytest.fixture
def sample_rss():
    """RSS feed with three dated items."""
    return build_rss([
        {
            "title": "On Reading Slowly",
            "link": "https://example.com/essays/reading-slowly",
            "author": "Jane Doe",
            "pub_date": "Mon, 04 Mar 2024 10:00:00 GMT",
            "description": "<p>An essay about <em>reading</em> slowly.</p>",
        },
        {
            "title": "The Long Walk",
            "link": "https://example.com/essays/long-walk",
            "pub_date": "Sun, 03 Mar 2024 09:00:00 GMT",
            "description": "<p>Walking as a way of thinking.</p><script>track()</script>",
        },
        {
            "title": "Letters &amp; Notes",
            "link": "https://example.com/essays/letters",
            "pub_date": "Sat, 02 Mar 2024 08:00:00 GMT",
            "description": "<p>Correspondence. Subscribe to keep reading.</p>",
        },
    ])


# ============================================================================
# Model and Settings Fixtures
# ============================================================================


@pytest.fixture
def make_source():
    """Factory for FeedSource objects."""
    from papertrails.models import FeedSource

    def _make(slug="sample", url=None, **kwargs):
        return FeedSource(
            name=kwargs.pop("name", slug.replace("-", " ").title()),
            url=url or f"https://{slug}.example.com/feed",
            slug=slug,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_record():
    """Factory for ArticleRecord objects."""
    from papertrails.models import ArticleRecord, Publication

    def _make(record_id, published_at=None, **kwargs):
        return ArticleRecord(
            id=record_id,
            title=kwargs.pop("title", f"Article {record_id}"),
            link=kwargs.pop("link", f"https://example.com/{record_id}"),
            published_at=published_at or datetime(2024, 3, 1, tzinfo=timezone.utc),
            publication=kwargs.pop(
                "publication", Publication(name="Sample", slug="sample", category="Culture")
            ),
            slug=kwargs.pop("slug", f"article-{record_id}"),
            **kwargs,
        )
    return _make


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing every file into a temporary directory."""
    from papertrails.config.settings import (
        ArchiveSettings,
        BackoffSettings,
        CatalogSettings,
        LoggingSettings,
        PapertrailsSettings,
        ServiceClassSettings,
        ThrottleSettings,
    )

    data_dir = tmp_path / "data"
    data_dir.mkdir()

    return PapertrailsSettings(
        catalog=CatalogSettings(path=str(data_dir / "feeds.json")),
        throttle=ThrottleSettings(
            host_min_interval=5.0,
            jitter_seconds=0.0,
            service_classes=[
                ServiceClassSettings(
                    name="substack",
                    host_patterns=["substack.com"],
                    min_interval=30.0,
                    burst_size=5,
                    burst_pause=300.0,
                )
            ],
        ),
        backoff=BackoffSettings(skip_list_path=str(data_dir / "skip-list.json")),
        archive=ArchiveSettings(
            data_dir=str(data_dir),
            report_dir=str(tmp_path / "logs"),
            lock_dir=str(tmp_path / "locks"),
        ),
        logging=LoggingSettings(file_path=None, console_logging=False),
    )
