#!/usr/bin/env python3
"""
Ingestion Orchestrator Tests
============================

Tests for source ordering, per-source reporting, deduplication against the
archive and early termination on stop requests.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from papertrails.config.settings import DEFAULT_USER_AGENTS, ServiceClassSettings
from papertrails.ingestion.feed_parser import FeedParser
from papertrails.ingestion.transport import ClientIdentityRotator
from papertrails.models import FeedSource, SourceStatus
from papertrails.processing.orchestrator import IngestionOrchestrator, order_sources
from papertrails.recovery.backoff import BackoffController
from papertrails.recovery.retry_logic import FetchRetrier
from papertrails.recovery.throttle import DomainThrottle
from papertrails.utils.exceptions import FeedFetchError, RateLimitedError


SUBSTACK = ServiceClassSettings(name="substack", host_patterns=["substack.com"], min_interval=30.0)
NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


def general(slug):
    return FeedSource(name=slug.title(), url=f"https://{slug}.example.com/feed", slug=slug)


def defensive(slug):
    return FeedSource(
        name=slug.title(), url=f"https://{slug}.substack.com/feed", slug=slug, serviceClass="substack"
    )


@pytest.fixture
def make_orchestrator(clock, sleeper):
    """Orchestrator over a transport with fake time."""

    def _make(transport, stop_event=None, max_items=10):
        parser = FeedParser()
        retrier = FetchRetrier(
            throttle=DomainThrottle(host_min_interval=5.0, service_classes=[SUBSTACK], clock=clock, sleep=sleeper),
            backoff=BackoffController(wall_clock=clock),
            transport=transport,
            parser=parser,
            identity=ClientIdentityRotator(DEFAULT_USER_AGENTS),
            max_attempts=2,
        )
        return IngestionOrchestrator(
            retrier=retrier,
            parser=parser,
            max_items_per_source=max_items,
            defensive_interleave=3,
            defensive_classes=["substack"],
            stop_event=stop_event,
            now=lambda: NOW,
        )

    return _make


class TestOrderSources:
    """Test defensive interleaving."""

    def test_interleaves_after_every_n_general(self):
        sources = [general(s) for s in "abcdefg"] + [defensive("x"), defensive("y")]
        ordered = order_sources(sources, {"substack"}, interleave=3)
        assert [s.slug for s in ordered] == ["a", "b", "c", "x", "d", "e", "f", "y", "g"]

    def test_leftover_defensive_sources_go_last(self):
        sources = [defensive("x"), general("a"), defensive("y"), defensive("z")]
        ordered = order_sources(sources, {"substack"}, interleave=3)
        assert [s.slug for s in ordered] == ["a", "x", "y", "z"]

    def test_no_defensive_classes_keeps_order(self):
        sources = [defensive("x"), general("a"), general("b")]
        assert order_sources(sources, set()) == sources

    def test_every_source_appears_once(self):
        sources = [general(s) for s in "abcdef"] + [defensive(s) for s in "uvwxyz"]
        ordered = order_sources(sources, {"substack"}, interleave=2)
        assert sorted(s.slug for s in ordered) == sorted(s.slug for s in sources)


class TestRun:
    """Test a full orchestrator pass."""

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, make_orchestrator, fake_transport_factory, rss_feed, dated_items):
        good = general("good")
        missing = general("missing")
        stack = defensive("stack")
        transport = fake_transport_factory({
            good.url: rss_feed(dated_items("good", 4)),
            missing.url: FeedFetchError("HTTP 404", status=404),
            stack.url: RateLimitedError("HTTP 429", status=429),
        })

        result = await make_orchestrator(transport).run([good, missing, stack], existing_ids=set())

        assert result.successful == 1
        assert result.failed == 2
        assert result.skipped == 0
        assert len(result.new_records) == 4
        reasons = {r.name: r.reason for r in result.reports}
        assert reasons["Missing"] == "HTTP 404"
        assert reasons["Stack"] == "RateLimited"
        assert not result.interrupted

    @pytest.mark.asyncio
    async def test_existing_ids_are_not_new(self, make_orchestrator, fake_transport_factory, rss_feed, dated_items):
        source = general("good")
        transport = fake_transport_factory({source.url: rss_feed(dated_items("good", 3))})
        orchestrator = make_orchestrator(transport)

        first = await orchestrator.run([source], existing_ids=set())
        known = {r.id for r in first.new_records}
        second = await orchestrator.run([source], existing_ids=known)

        assert len(first.new_records) == 3
        assert second.new_records == []
        assert second.reports[0].item_count == 3
        assert second.reports[0].new_count == 0

    @pytest.mark.asyncio
    async def test_duplicates_within_feed_are_collapsed(self, make_orchestrator, fake_transport_factory, rss_feed):
        source = general("dupes")
        item = {"title": "Same", "link": "https://dupes.example.com/1"}
        transport = fake_transport_factory({source.url: rss_feed([item, dict(item)])})

        result = await make_orchestrator(transport).run([source], existing_ids=set())
        assert len(result.new_records) == 1

    @pytest.mark.asyncio
    async def test_items_per_source_limit(self, make_orchestrator, fake_transport_factory, rss_feed, dated_items):
        source = general("many")
        transport = fake_transport_factory({source.url: rss_feed(dated_items("many", 15))})

        result = await make_orchestrator(transport, max_items=10).run([source], existing_ids=set())
        assert len(result.new_records) == 10

    @pytest.mark.asyncio
    async def test_taken_slugs_are_respected(self, make_orchestrator, fake_transport_factory, rss_feed):
        source = general("slugs")
        transport = fake_transport_factory({
            source.url: rss_feed([{"title": "Old Title", "link": "https://slugs.example.com/new"}])
        })
        result = await make_orchestrator(transport).run([source], existing_ids=set(), taken_slugs={"old-title"})

        record = result.new_records[0]
        assert record.slug == f"old-title-{record.id[:8]}"

    @pytest.mark.asyncio
    async def test_skip_listed_source_is_skipped(self, make_orchestrator, fake_transport_factory):
        source = defensive("blocked")
        transport = fake_transport_factory({})
        orchestrator = make_orchestrator(transport)
        orchestrator.retrier.backoff.skip(source.host)

        result = await orchestrator.run([source], existing_ids=set())

        assert result.skipped == 1
        assert result.reports[0].status == SourceStatus.SKIPPED
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_run(
        self, make_orchestrator, fake_transport_factory, rss_feed, dated_items
    ):
        broken = general("broken")
        good = general("good")
        transport = fake_transport_factory({
            broken.url: RuntimeError("unexpected"),
            good.url: rss_feed(dated_items("good", 2)),
        })

        result = await make_orchestrator(transport).run([broken, good], existing_ids=set())

        assert result.failed == 1
        assert result.successful == 1
        assert result.reports[0].reason == "PapertrailsError"

    @pytest.mark.asyncio
    async def test_stop_before_next_source(self, make_orchestrator, fake_transport_factory, rss_feed, dated_items):
        stop = asyncio.Event()
        first = general("first")
        second = general("second")
        transport = fake_transport_factory({
            first.url: rss_feed(dated_items("first", 2)),
            second.url: rss_feed(dated_items("second", 2)),
        })
        orchestrator = make_orchestrator(transport, stop_event=stop)

        original = orchestrator.retrier.fetch_one

        async def fetch_then_stop(source):
            outcome = await original(source)
            stop.set()
            return outcome

        orchestrator.retrier.fetch_one = fetch_then_stop
        result = await orchestrator.run([first, second], existing_ids=set())

        assert result.interrupted
        assert len(result.new_records) == 2
        assert [r.name for r in result.reports] == ["First"]
