"""
Paper Trails Fetch Retrier
==========================

One source fetch and parse with bounded retries.

Every attempt goes through the domain throttle, so the same spacing rules
apply to first attempts and retries. Backoff delays are handed to the
throttle via ``defer`` instead of being slept here, which keeps a single
wait point per attempt.
"""

from typing import Collection, Optional

from ..config.settings import PapertrailsSettings
from ..ingestion.feed_parser import FeedParser
from ..ingestion.transport import ClientIdentityRotator, Transport
from ..models import (
    FeedSource,
    FetchOutcome,
    ParseFailure,
    PermanentSkip,
    RateLimited,
    Success,
    TransientError,
)
from ..utils.exceptions import FeedError, ParseError, RateLimitedError
from ..utils.logging import get_logger_for_component
from .backoff import BackoffController
from .throttle import DomainThrottle


class FetchRetrier:
    """Drives one source through throttle, transport and parser."""

    def __init__(
        self,
        throttle: DomainThrottle,
        backoff: BackoffController,
        transport: Transport,
        parser: FeedParser,
        identity: ClientIdentityRotator,
        relay_transport: Optional[Transport] = None,
        relay_classes: Collection[str] = (),
        max_attempts: int = 3,
        rate_limit_retries: int = 1,
        request_timeout: float = 30.0,
        skip_on_rate_limit: bool = True,
    ):
        self.throttle = throttle
        self.backoff = backoff
        self.transport = transport
        self.parser = parser
        self.identity = identity
        self.relay_transport = relay_transport
        self.relay_classes = set(relay_classes)
        self.max_attempts = max(1, max_attempts)
        self.rate_limit_retries = max(0, rate_limit_retries)
        self.request_timeout = request_timeout
        self.skip_on_rate_limit = skip_on_rate_limit
        self.logger = get_logger_for_component("retrier")

    @classmethod
    def from_settings(
        cls,
        settings: PapertrailsSettings,
        throttle: DomainThrottle,
        backoff: BackoffController,
        transport: Transport,
        parser: FeedParser,
        relay_transport: Optional[Transport] = None,
    ) -> "FetchRetrier":
        return cls(
            throttle=throttle,
            backoff=backoff,
            transport=transport,
            parser=parser,
            identity=ClientIdentityRotator(
                settings.ingestion.user_agents, settings.ingestion.ua_cycle_interval
            ),
            relay_transport=relay_transport,
            relay_classes=[c.name for c in settings.throttle.service_classes if c.relay],
            max_attempts=settings.retry.max_attempts,
            rate_limit_retries=settings.retry.rate_limit_retries,
            request_timeout=settings.retry.request_timeout,
            skip_on_rate_limit=settings.backoff.skip_on_rate_limit,
        )

    def transport_for(self, source: FeedSource) -> Transport:
        """Relay transport for relay-routed service classes, direct otherwise."""
        if self.relay_transport is not None and source.service_class in self.relay_classes:
            return self.relay_transport
        return self.transport

    async def fetch_one(self, source: FeedSource) -> FetchOutcome:
        """Fetch and parse ``source``.

        Returns exactly one outcome. ``RunInterrupted`` raised by a throttle
        wait propagates to the caller.
        """
        host = source.host
        logger = get_logger_for_component("retrier", source=source.name, host=host)

        skip_reason = self.backoff.skip_reason(host)
        if skip_reason is not None:
            logger.info(f"Host {host} is on the skip list ({skip_reason}), not fetching")
            return PermanentSkip(reason=f"Host on skip list ({skip_reason})")

        transport = self.transport_for(source)
        rate_limit_hits = 0
        attempt = 0

        while attempt < self.max_attempts:
            attempt += 1
            waited = await self.throttle.acquire(host, source.service_class)
            if waited:
                logger.debug(f"Waited {waited:.1f}s for clearance")

            logger.debug(f"Fetching {source.url} via {transport.name} (attempt {attempt}/{self.max_attempts})")
            try:
                payload = await transport.fetch(
                    source.url,
                    headers=self.identity.next_headers(),
                    timeout=self.request_timeout,
                )
                feed = self.parser.parse(payload, source.url)

            except RateLimitedError as e:
                rate_limit_hits += 1
                delay = self.backoff.record_rate_limit(host, attempt, e.retry_after)
                if rate_limit_hits > self.rate_limit_retries or attempt >= self.max_attempts:
                    if self.skip_on_rate_limit:
                        self.backoff.skip(host, reason=e.reason)
                    logger.warning(f"Giving up after {attempt} attempts: {e}")
                    return RateLimited(retry_after=e.retry_after, attempts=attempt)
                self.throttle.defer(host, delay, source.service_class)
                continue

            except ParseError as e:
                logger.warning(f"Unparseable feed: {e}")
                return ParseFailure(cause=e, attempts=attempt)

            except FeedError as e:
                if not e.recoverable:
                    logger.warning(f"Non-recoverable fetch error: {e}")
                    return TransientError(cause=e, attempts=attempt)
                if attempt >= self.max_attempts:
                    logger.warning(f"Giving up after {attempt} attempts: {e}")
                    return TransientError(cause=e, attempts=attempt)
                delay = self.backoff.record_failure(host, attempt)
                logger.info(f"Attempt {attempt} failed ({e.reason}), retrying in {delay:.1f}s")
                self.throttle.defer(host, delay)
                continue

            self.backoff.record_success(host)
            return Success(payload=payload, feed=feed, attempts=attempt)

        return RateLimited(attempts=attempt)
