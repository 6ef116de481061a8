"""
Domain Throttle
===============

Per-host and per-service-class request spacing.

A host may not be contacted again before ``host_min_interval`` seconds have
passed; hosts grouped into a service class (e.g. every ``*.substack.com``
publication) additionally share the class spacing and its burst pause.
Standing backoff set through :meth:`DomainThrottle.defer` is folded into the
same clearance computation, so callers have a single place to wait.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from ..config.settings import ServiceClassSettings, ThrottleSettings
from ..utils.exceptions import RunInterrupted
from ..utils.logging import get_logger_for_component


Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class DomainState:
    """Contact bookkeeping for one host or one service class."""

    last_request_at: Optional[float] = None
    backoff_until: float = 0.0
    rate_limited_class: Optional[str] = None
    contacts: int = 0


def make_interruptible_sleep(stop_event: asyncio.Event) -> Sleeper:
    """Sleeper that wakes early and raises RunInterrupted once ``stop_event`` is set."""

    async def _sleep(seconds: float) -> None:
        if stop_event.is_set():
            raise RunInterrupted("Stop requested before wait")
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunInterrupted(f"Stop requested during {seconds:.1f}s wait")

    return _sleep


class DomainThrottle:
    """Cooldown tracker owned by a single orchestrator run."""

    def __init__(
        self,
        host_min_interval: float = 5.0,
        service_classes: Sequence[ServiceClassSettings] = (),
        jitter_seconds: float = 0.0,
        clock: Clock = time.monotonic,
        sleep: Optional[Sleeper] = None,
        rng: Optional[random.Random] = None,
    ):
        self.host_min_interval = host_min_interval
        self.jitter_seconds = jitter_seconds
        self.clock = clock
        self.sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self._class_config: Dict[str, ServiceClassSettings] = {
            c.name: c for c in service_classes
        }
        self._hosts: Dict[str, DomainState] = {}
        self._classes: Dict[str, DomainState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = get_logger_for_component("throttle")

    @classmethod
    def from_settings(
        cls,
        settings: ThrottleSettings,
        clock: Clock = time.monotonic,
        sleep: Optional[Sleeper] = None,
    ) -> "DomainThrottle":
        return cls(
            host_min_interval=settings.host_min_interval,
            service_classes=settings.service_classes,
            jitter_seconds=settings.jitter_seconds,
            clock=clock,
            sleep=sleep,
        )

    def host_state(self, host: str) -> DomainState:
        """State for ``host``, created on first use."""
        return self._hosts.setdefault(host, DomainState())

    def class_state(self, service_class: str) -> DomainState:
        return self._classes.setdefault(service_class, DomainState())

    def clearance_delay(self, host: str, service_class: Optional[str] = None) -> float:
        """Seconds until ``host`` may be contacted; 0 when clear."""
        now = self.clock()
        delays = [0.0]

        state = self._hosts.get(host)
        if state is not None:
            if state.last_request_at is not None:
                delays.append(state.last_request_at + self.host_min_interval - now)
            delays.append(state.backoff_until - now)

        config = self._class_config.get(service_class) if service_class else None
        class_state = self._classes.get(service_class) if config else None
        if config and class_state is not None:
            if class_state.last_request_at is not None:
                interval = config.min_interval
                if (
                    config.burst_size
                    and class_state.contacts
                    and class_state.contacts % config.burst_size == 0
                ):
                    interval = max(interval, config.burst_pause)
                delays.append(class_state.last_request_at + interval - now)
            delays.append(class_state.backoff_until - now)

        return max(delays)

    def record_contact(self, host: str, service_class: Optional[str] = None) -> None:
        """Record an actual request to ``host`` at the current time."""
        now = self.clock()
        state = self.host_state(host)
        state.last_request_at = now
        state.contacts += 1

        if service_class and service_class in self._class_config:
            class_state = self.class_state(service_class)
            class_state.last_request_at = now
            class_state.contacts += 1

    def defer(self, host: str, delay: float, service_class: Optional[str] = None) -> None:
        """Hold off ``host`` (and, for rate limits, its whole class) for ``delay`` seconds."""
        if delay <= 0:
            return
        until = self.clock() + delay
        state = self.host_state(host)
        state.backoff_until = max(state.backoff_until, until)

        if service_class and service_class in self._class_config:
            state.rate_limited_class = service_class
            class_state = self.class_state(service_class)
            class_state.backoff_until = max(class_state.backoff_until, until)

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _jitter(self) -> float:
        if self.jitter_seconds <= 0:
            return 0.0
        return self._rng.uniform(0.0, self.jitter_seconds)

    async def acquire(
        self,
        host: str,
        service_class: Optional[str] = None,
        sleep: Optional[Sleeper] = None,
    ) -> float:
        """Wait until ``host`` is clear, then record the contact.

        Returns:
            Total seconds slept
        """
        sleeper = sleep or self.sleep
        class_key = f"class:{service_class}" if service_class in self._class_config else None

        # Class lock first, then host lock; the order is fixed to avoid deadlock
        if class_key:
            async with self._lock(class_key):
                async with self._lock(f"host:{host}"):
                    return await self._wait_and_record(host, service_class, sleeper)
        async with self._lock(f"host:{host}"):
            return await self._wait_and_record(host, service_class, sleeper)

    async def _wait_and_record(
        self, host: str, service_class: Optional[str], sleeper: Sleeper
    ) -> float:
        waited = 0.0
        while True:
            delay = self.clearance_delay(host, service_class)
            if delay <= 0:
                break
            delay += self._jitter()
            self.logger.debug(
                f"Waiting {delay:.1f}s before contacting {host}",
                extra={"host": host, "service_class": service_class},
            )
            await sleeper(delay)
            waited += delay

        self.record_contact(host, service_class)
        return waited
