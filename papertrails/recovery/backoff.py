"""
Backoff Controller
==================

Escalating per-host delays after failures and the temporary skip list for
hosts that keep rate-limiting us.

Delays follow ``base * multiplier ** (attempt - 1) * escalation`` capped at
``max_delay``. Every rate-limit response doubles the host's escalation factor
until a success resets it. The skip list uses wall-clock time so it can be
persisted and honoured by a follow-up run.
"""

import json
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config.settings import BackoffSettings
from ..models import SkipEntry
from ..storage.atomic import write_json_atomic
from ..utils.logging import get_logger_for_component


class BackoffController:
    """Per-host failure bookkeeping owned by one orchestrator run."""

    def __init__(
        self,
        base_delay: float = 8.0,
        multiplier: float = 2.0,
        max_delay: float = 300.0,
        skip_cooldown: float = 7200.0,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.skip_cooldown = skip_cooldown
        self.wall_clock = wall_clock
        self._escalation: Dict[str, float] = {}
        self._failures: Dict[str, int] = {}
        self._skip_list: Dict[str, SkipEntry] = {}
        self.logger = get_logger_for_component("backoff")

    @classmethod
    def from_settings(
        cls, settings: BackoffSettings, wall_clock: Callable[[], float] = time.time
    ) -> "BackoffController":
        return cls(
            base_delay=settings.base_delay,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay,
            skip_cooldown=settings.skip_cooldown,
            wall_clock=wall_clock,
        )

    def _calculate_delay(self, host: str, attempt: int) -> float:
        """Exponential delay for ``attempt`` (1-based) scaled by host escalation."""
        attempt = max(1, attempt)
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        delay *= self._escalation.get(host, 1.0)
        return min(delay, self.max_delay)

    def escalation(self, host: str) -> float:
        return self._escalation.get(host, 1.0)

    def failure_count(self, host: str) -> int:
        return self._failures.get(host, 0)

    def record_failure(self, host: str, attempt: int) -> float:
        """Register a transient failure and return the delay before the next attempt."""
        self._failures[host] = self._failures.get(host, 0) + 1
        delay = self._calculate_delay(host, attempt)
        self.logger.debug(
            f"Failure #{self._failures[host]} for {host}, backing off {delay:.1f}s",
            extra={"host": host, "attempt": attempt},
        )
        return delay

    def record_rate_limit(
        self, host: str, attempt: int, retry_after: Optional[float] = None
    ) -> float:
        """Escalate after a 403/429 and return the delay before the next attempt.

        A Retry-After hint raises the delay but never beyond ``max_delay``.
        """
        self._failures[host] = self._failures.get(host, 0) + 1
        self._escalation[host] = self._escalation.get(host, 1.0) * 2
        delay = self._calculate_delay(host, attempt)
        if retry_after is not None and retry_after > 0:
            delay = max(delay, min(retry_after, self.max_delay))

        self.logger.warning(
            f"Rate limited by {host} (escalation x{self._escalation[host]:g}), "
            f"backing off {delay:.1f}s",
            extra={"host": host, "attempt": attempt, "retry_after": retry_after},
        )
        return delay

    def record_success(self, host: str) -> None:
        """Clear standing backoff for ``host``."""
        self._escalation.pop(host, None)
        self._failures.pop(host, None)

    # Skip list

    def skip(self, host: str, reason: str = "RateLimited") -> SkipEntry:
        """Place ``host`` on the skip list for ``skip_cooldown`` seconds."""
        entry = SkipEntry(host=host, until=self.wall_clock() + self.skip_cooldown, reason=reason)
        self._skip_list[host] = entry
        self.logger.warning(
            f"Skipping {host} for {self.skip_cooldown / 60:.0f} minutes ({reason})",
            extra={"host": host},
        )
        return entry

    def _active_entry(self, host: str) -> Optional[SkipEntry]:
        entry = self._skip_list.get(host)
        if entry is None:
            return None
        if not entry.is_active(self.wall_clock()):
            del self._skip_list[host]
            return None
        return entry

    def is_skipped(self, host: str) -> bool:
        return self._active_entry(host) is not None

    def skip_reason(self, host: str) -> Optional[str]:
        entry = self._active_entry(host)
        return entry.reason if entry else None

    def skip_entries(self) -> List[SkipEntry]:
        """Active skip entries, soonest expiry first."""
        now = self.wall_clock()
        return sorted(
            (e for e in self._skip_list.values() if e.is_active(now)),
            key=lambda e: e.until,
        )

    def load_skip_list(self, path: str) -> int:
        """Merge active entries from a skip list file.

        A missing file is normal; an unreadable one is logged and ignored
        since the skip list is only an optimisation.

        Returns:
            Number of active entries loaded
        """
        skip_path = Path(path)
        if not skip_path.exists():
            return 0

        try:
            with open(skip_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = [SkipEntry.from_dict(item) for item in data.get("entries", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.warning(f"Ignoring unreadable skip list {skip_path}: {e}")
            return 0

        now = self.wall_clock()
        loaded = 0
        for entry in entries:
            if entry.is_active(now):
                self._skip_list[entry.host] = entry
                loaded += 1

        if loaded:
            self.logger.info(f"Loaded {loaded} active skip list entries from {skip_path}")
        return loaded

    def save_skip_list(self, path: str) -> None:
        """Write active entries atomically."""
        payload = {"entries": [e.to_dict() for e in self.skip_entries()]}
        write_json_atomic(path, payload)
