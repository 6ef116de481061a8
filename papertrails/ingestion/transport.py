"""
Feed Transport
==============

Pluggable ``fetch(url) -> bytes`` capability.

- ``AiohttpTransport`` fetches feeds directly with aiohttp.
- ``RelayTransport`` asks a relay worker (``{relay}/api/fetch-rss?url=...``)
  to fetch on our behalf, for service classes that block direct access.
- ``ClientIdentityRotator`` cycles request headers between browser-like and
  feed-reader identities.

Transports translate HTTP and network failures into the feed error
hierarchy so the retrier never sees aiohttp exceptions.
"""

import asyncio
import ssl
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional, Sequence
from urllib.parse import quote

import aiohttp
import certifi

from ..utils.exceptions import FeedFetchError, NetworkError, RateLimitedError
from ..utils.logging import get_logger_for_component


RATE_LIMIT_STATUSES = (403, 429)

BASE_HEADERS = {
    "Accept": "application/rss+xml, application/xml, text/xml, application/atom+xml, text/html, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

BROWSER_HEADERS = {
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class ClientIdentityRotator:
    """Rotates user agents, switching every ``cycle_interval`` requests."""

    def __init__(self, user_agents: Sequence[str], cycle_interval: int = 1):
        if not user_agents:
            raise ValueError("At least one user agent is required")
        self.user_agents = list(user_agents)
        self.cycle_interval = max(1, cycle_interval)
        self._requests = 0

    @property
    def current_user_agent(self) -> str:
        index = (self._requests // self.cycle_interval) % len(self.user_agents)
        return self.user_agents[index]

    def next_headers(self) -> Dict[str, str]:
        """Headers for the next request; advances the rotation."""
        user_agent = self.current_user_agent
        self._requests += 1

        headers = {"User-Agent": user_agent, **BASE_HEADERS}
        if user_agent.startswith("Mozilla"):
            headers.update(BROWSER_HEADERS)
        return headers


class Transport(ABC):
    """Fetches raw feed payloads."""

    name = "transport"

    @abstractmethod
    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Return the response body.

        Raises:
            RateLimitedError: HTTP 403/429
            FeedFetchError: Any other non-2xx status
            NetworkError: Timeout, DNS failure, connection reset
        """

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class AiohttpTransport(Transport):
    """Direct HTTP fetch with a shared aiohttp session."""

    name = "direct"

    def __init__(self, timeout: float = 30.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self.ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._session = session
        self._owns_session = session is None
        self.logger = get_logger_for_component("transport")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                ssl=self.ssl_context,
                limit_per_host=2,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        session = self._get_session()
        request_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        try:
            async with session.get(url, headers=dict(headers or {}), timeout=request_timeout) as response:
                if response.status in RATE_LIMIT_STATUSES:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    raise RateLimitedError(
                        f"HTTP {response.status}: {response.reason}",
                        status=response.status,
                        retry_after=retry_after,
                        feed_url=url,
                    )
                if response.status >= 400:
                    raise FeedFetchError(
                        f"HTTP {response.status}: {response.reason}",
                        status=response.status,
                        feed_url=url,
                    )
                return await response.read()

        except asyncio.TimeoutError:
            raise NetworkError(f"Request timeout after {timeout or self.timeout}s", feed_url=url)
        except aiohttp.ClientError as e:
            raise NetworkError(f"{type(e).__name__}: {e}", feed_url=url)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()


class RelayTransport(Transport):
    """Fetch through a relay worker that proxies the feed request."""

    name = "relay"

    def __init__(self, relay_url: str, inner: Transport):
        self.relay_url = relay_url.rstrip("/")
        self.inner = inner

    def relay_request_url(self, url: str) -> str:
        return f"{self.relay_url}/api/fetch-rss?url={quote(url, safe='')}"

    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        # Client identity is the relay's concern; only the Accept header is forwarded
        relay_headers = {"Accept": BASE_HEADERS["Accept"]}
        return await self.inner.fetch(self.relay_request_url(url), headers=relay_headers, timeout=timeout)

    async def close(self) -> None:
        await self.inner.close()
