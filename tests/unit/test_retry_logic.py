#!/usr/bin/env python3
"""
Fetch Retrier Tests
===================

Tests for retry budgets, rate-limit escalation, skip list fast-fail and
relay routing. Every wait is recorded by the fake sleeper.
"""

import asyncio

import pytest

from papertrails.config.settings import DEFAULT_USER_AGENTS, ServiceClassSettings
from papertrails.ingestion.feed_parser import FeedParser
from papertrails.ingestion.transport import ClientIdentityRotator
from papertrails.models import (
    FeedSource,
    ParseFailure,
    PermanentSkip,
    RateLimited,
    Success,
    TransientError,
)
from papertrails.recovery.backoff import BackoffController
from papertrails.recovery.retry_logic import FetchRetrier
from papertrails.recovery.throttle import DomainThrottle, make_interruptible_sleep
from papertrails.utils.exceptions import (
    FeedFetchError,
    NetworkError,
    RateLimitedError,
    RunInterrupted,
)


SUBSTACK = ServiceClassSettings(
    name="substack",
    host_patterns=["substack.com"],
    min_interval=30.0,
    burst_size=5,
    burst_pause=300.0,
    relay=True,
)

SUBSTACK_URL = "https://example.substack.com/feed"
PLAIN_URL = "https://example.com/feed"


def rate_limited(retry_after=None):
    return RateLimitedError("HTTP 429: Too Many Requests", status=429, retry_after=retry_after)


@pytest.fixture
def substack_source():
    return FeedSource(name="Example Stack", url=SUBSTACK_URL, slug="example-stack", serviceClass="substack")


@pytest.fixture
def plain_source():
    return FeedSource(name="Example", url=PLAIN_URL, slug="example")


@pytest.fixture
def make_retrier(clock, sleeper):
    """Build a retrier around a transport with fake time."""

    def _make(transport, relay_transport=None, sleep=None, **kwargs):
        throttle = DomainThrottle(
            host_min_interval=5.0,
            service_classes=[SUBSTACK],
            clock=clock,
            sleep=sleep or sleeper,
        )
        backoff = BackoffController(
            base_delay=8.0, multiplier=2.0, max_delay=300.0, skip_cooldown=7200.0, wall_clock=clock
        )
        return FetchRetrier(
            throttle=throttle,
            backoff=backoff,
            transport=transport,
            parser=FeedParser(),
            identity=ClientIdentityRotator(DEFAULT_USER_AGENTS),
            relay_transport=relay_transport,
            relay_classes=["substack"] if relay_transport else [],
            **kwargs,
        )

    return _make


class TestSuccess:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, make_retrier, fake_transport_factory, plain_source, sample_rss, sleeper):
        transport = fake_transport_factory({PLAIN_URL: sample_rss})
        outcome = await make_retrier(transport).fetch_one(plain_source)

        assert isinstance(outcome, Success)
        assert outcome.attempts == 1
        assert len(outcome.feed.entries) == 3
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_rotating_client_identity(self, make_retrier, fake_transport_factory, plain_source, sample_rss):
        transport = fake_transport_factory({PLAIN_URL: sample_rss})
        retrier = make_retrier(transport)

        await retrier.fetch_one(plain_source)
        await retrier.fetch_one(plain_source)

        agents = [r["headers"]["User-Agent"] for r in transport.requests]
        assert agents[0] != agents[1]


class TestRateLimits:
    """Test 403/429 handling."""

    @pytest.mark.asyncio
    async def test_consecutive_rate_limits_escalate(
        self, make_retrier, fake_transport_factory, plain_source, sleeper, clock
    ):
        transport = fake_transport_factory({PLAIN_URL: [rate_limited()]})
        retrier = make_retrier(transport, max_attempts=3, rate_limit_retries=2)

        outcome = await retrier.fetch_one(plain_source)

        assert isinstance(outcome, RateLimited)
        assert outcome.attempts == 3
        times = [r["at"] for r in transport.requests]
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert gaps == [16.0, 64.0]
        assert retrier.backoff.is_skipped("example.com")

    @pytest.mark.asyncio
    async def test_service_class_rate_limits(
        self, make_retrier, fake_transport_factory, substack_source, sleeper
    ):
        """Class spacing and escalation combine; gaps keep growing."""
        transport = fake_transport_factory({SUBSTACK_URL: [rate_limited()]})
        retrier = make_retrier(transport, max_attempts=3, rate_limit_retries=2)

        outcome = await retrier.fetch_one(substack_source)

        assert isinstance(outcome, RateLimited)
        assert sleeper.calls == [30.0, 64.0]
        assert retrier.backoff.skip_reason("example.substack.com") == "RateLimited"

    @pytest.mark.asyncio
    async def test_skipped_host_fails_fast(
        self, make_retrier, fake_transport_factory, substack_source
    ):
        transport = fake_transport_factory({SUBSTACK_URL: [rate_limited()]})
        retrier = make_retrier(transport, max_attempts=3, rate_limit_retries=2)

        await retrier.fetch_one(substack_source)
        request_count = len(transport.requests)
        outcome = await retrier.fetch_one(substack_source)

        assert isinstance(outcome, PermanentSkip)
        assert "RateLimited" in outcome.reason
        assert outcome.attempts == 0
        assert len(transport.requests) == request_count

    @pytest.mark.asyncio
    async def test_default_budget_allows_one_rate_limit_retry(
        self, make_retrier, fake_transport_factory, plain_source
    ):
        transport = fake_transport_factory({PLAIN_URL: [rate_limited()]})
        outcome = await make_retrier(transport).fetch_one(plain_source)

        assert isinstance(outcome, RateLimited)
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(
        self, make_retrier, fake_transport_factory, plain_source, sample_rss, sleeper
    ):
        transport = fake_transport_factory({PLAIN_URL: [rate_limited(retry_after=120.0), sample_rss]})
        retrier = make_retrier(transport)

        outcome = await retrier.fetch_one(plain_source)

        assert isinstance(outcome, Success)
        assert outcome.attempts == 2
        assert sleeper.calls == [120.0]
        assert retrier.backoff.escalation("example.com") == 1.0

    @pytest.mark.asyncio
    async def test_skip_can_be_disabled(self, make_retrier, fake_transport_factory, plain_source):
        transport = fake_transport_factory({PLAIN_URL: [rate_limited()]})
        retrier = make_retrier(transport, skip_on_rate_limit=False)

        assert isinstance(await retrier.fetch_one(plain_source), RateLimited)
        assert not retrier.backoff.is_skipped("example.com")


class TestTransientFailures:
    """Test network and HTTP failures."""

    @pytest.mark.asyncio
    async def test_network_error_then_success(
        self, make_retrier, fake_transport_factory, plain_source, sample_rss, sleeper
    ):
        transport = fake_transport_factory({PLAIN_URL: [NetworkError("reset"), sample_rss]})
        outcome = await make_retrier(transport).fetch_one(plain_source)

        assert isinstance(outcome, Success)
        assert outcome.attempts == 2
        assert sleeper.calls == [8.0]

    @pytest.mark.asyncio
    async def test_persistent_network_error(
        self, make_retrier, fake_transport_factory, plain_source, sleeper
    ):
        transport = fake_transport_factory({PLAIN_URL: NetworkError("timeout")})
        outcome = await make_retrier(transport, max_attempts=3).fetch_one(plain_source)

        assert isinstance(outcome, TransientError)
        assert outcome.attempts == 3
        assert outcome.reason == "NetworkError"
        assert sleeper.calls == [8.0, 16.0]
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, make_retrier, fake_transport_factory, plain_source):
        transport = fake_transport_factory({PLAIN_URL: FeedFetchError("HTTP 404", status=404)})
        outcome = await make_retrier(transport).fetch_one(plain_source)

        assert isinstance(outcome, TransientError)
        assert outcome.reason == "HTTP 404"
        assert outcome.attempts == 1
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(
        self, make_retrier, fake_transport_factory, plain_source, sample_rss
    ):
        transport = fake_transport_factory({PLAIN_URL: [FeedFetchError("HTTP 503", status=503), sample_rss]})
        assert isinstance(await make_retrier(transport).fetch_one(plain_source), Success)

    @pytest.mark.asyncio
    async def test_parse_failure_is_not_retried(self, make_retrier, fake_transport_factory, plain_source):
        transport = fake_transport_factory({PLAIN_URL: b"<html><body>Maintenance</body></html>"})
        outcome = await make_retrier(transport).fetch_one(plain_source)

        assert isinstance(outcome, ParseFailure)
        assert outcome.reason == "ParseError"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_stop_during_backoff_propagates(
        self, make_retrier, fake_transport_factory, plain_source
    ):
        stop = asyncio.Event()

        class StoppingTransport:
            name = "stopping"

            async def fetch(self, url, headers=None, timeout=None):
                stop.set()
                raise NetworkError("reset")

            async def close(self):
                pass

        retrier = make_retrier(StoppingTransport(), sleep=make_interruptible_sleep(stop))
        with pytest.raises(RunInterrupted):
            await retrier.fetch_one(plain_source)


class TestRelayRouting:
    """Test transport selection per service class."""

    @pytest.mark.asyncio
    async def test_relay_classes_use_relay(
        self, make_retrier, fake_transport_factory, substack_source, plain_source, sample_rss
    ):
        direct = fake_transport_factory({PLAIN_URL: sample_rss})
        relay = fake_transport_factory({SUBSTACK_URL: sample_rss})
        retrier = make_retrier(direct, relay_transport=relay)

        assert isinstance(await retrier.fetch_one(substack_source), Success)
        assert isinstance(await retrier.fetch_one(plain_source), Success)
        assert [r["url"] for r in relay.requests] == [SUBSTACK_URL]
        assert [r["url"] for r in direct.requests] == [PLAIN_URL]

    def test_without_relay_everything_is_direct(self, make_retrier, fake_transport_factory, substack_source):
        direct = fake_transport_factory({})
        assert make_retrier(direct).transport_for(substack_source) is direct
