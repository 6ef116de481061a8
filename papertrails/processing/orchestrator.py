"""
Ingestion Orchestrator
======================

Walks the catalog in a politeness-aware order, drives the fetch retrier for
each source, converts entries of successful fetches into new article
records and produces a per-source report.

Sources are processed strictly one at a time. A failing source never stops
the run; a stop request ends it early with the records gathered so far.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Collection, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from ..config.settings import PapertrailsSettings
from ..ingestion.feed_parser import FeedParser
from ..models import (
    ArticleRecord,
    FeedSource,
    IngestionResult,
    PermanentSkip,
    SourceReport,
    SourceStatus,
    Success,
)
from ..recovery.retry_logic import FetchRetrier
from ..utils.exceptions import RunInterrupted, handle_exception
from ..utils.logging import get_logger_for_component


def order_sources(
    sources: Iterable[FeedSource],
    defensive_classes: Collection[str],
    interleave: int = 3,
) -> List[FeedSource]:
    """Interleave defensive-class sources among general ones.

    One defensive source follows every ``interleave`` general sources; any
    defensive sources left over go at the end. Relative order inside each
    group is preserved.
    """
    interleave = max(1, interleave)
    general: List[FeedSource] = []
    defensive: List[FeedSource] = []
    for source in sources:
        if source.service_class in defensive_classes:
            defensive.append(source)
        else:
            general.append(source)

    ordered: List[FeedSource] = []
    pending = iter(defensive)
    remaining = len(defensive)
    for index, source in enumerate(general, 1):
        ordered.append(source)
        if index % interleave == 0 and remaining:
            ordered.append(next(pending))
            remaining -= 1
    ordered.extend(pending)
    return ordered


class IngestionOrchestrator:
    """Sequential ingestion over the catalog."""

    def __init__(
        self,
        retrier: FetchRetrier,
        parser: FeedParser,
        max_items_per_source: int = 10,
        defensive_interleave: int = 3,
        defensive_classes: Collection[str] = (),
        stop_event: Optional[asyncio.Event] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.retrier = retrier
        self.parser = parser
        self.max_items_per_source = max_items_per_source
        self.defensive_interleave = defensive_interleave
        self.defensive_classes = set(defensive_classes)
        self.stop_event = stop_event or asyncio.Event()
        self.now = now
        self.logger = get_logger_for_component("orchestrator")

    @classmethod
    def from_settings(
        cls,
        settings: PapertrailsSettings,
        retrier: FetchRetrier,
        parser: FeedParser,
        stop_event: Optional[asyncio.Event] = None,
    ) -> "IngestionOrchestrator":
        return cls(
            retrier=retrier,
            parser=parser,
            max_items_per_source=settings.ingestion.max_items_per_source,
            defensive_interleave=settings.ingestion.defensive_interleave,
            defensive_classes=[c.name for c in settings.throttle.service_classes if c.defensive],
            stop_event=stop_event,
        )

    async def run(
        self,
        catalog: Iterable[FeedSource],
        existing_ids: Collection[str],
        taken_slugs: Iterable[str] = (),
    ) -> IngestionResult:
        """Ingest every catalog source once.

        Args:
            catalog: Sources to process
            existing_ids: Ids already in the archive; matching entries are skipped
            taken_slugs: Slugs already in use, so new slugs stay unique

        Returns:
            IngestionResult with new records in processing order
        """
        result = IngestionResult()
        run_ids: Set[str] = set()
        slugs: Set[str] = set(taken_slugs)
        ordered = order_sources(catalog, self.defensive_classes, self.defensive_interleave)

        self.logger.info(f"Starting ingestion of {len(ordered)} sources")

        for index, source in enumerate(ordered, 1):
            if self.stop_event.is_set():
                result.interrupted = True
                break

            logger = get_logger_for_component("orchestrator", source=source.name)
            logger.info(f"[{index}/{len(ordered)}] Processing {source.name}")

            try:
                outcome = await self.retrier.fetch_one(source)
            except RunInterrupted:
                logger.warning("Stop requested, ending run early")
                result.reports.append(self._report(source, SourceStatus.FAILED, reason="Interrupted"))
                result.interrupted = True
                break
            except Exception as e:
                error = handle_exception(e, logger, {"source": source.name})
                result.reports.append(
                    self._report(source, SourceStatus.FAILED, reason=type(error).__name__)
                )
                continue

            if isinstance(outcome, Success):
                new_records, item_count = self._collect(source, outcome, existing_ids, run_ids, slugs)
                result.new_records.extend(new_records)
                result.reports.append(
                    self._report(
                        source,
                        SourceStatus.SUCCESS,
                        item_count=item_count,
                        new_count=len(new_records),
                        attempts=outcome.attempts,
                    )
                )
                logger.info(f"{item_count} items, {len(new_records)} new")
            elif isinstance(outcome, PermanentSkip):
                result.reports.append(
                    self._report(source, SourceStatus.SKIPPED, reason=outcome.reason)
                )
            else:
                logger.warning(f"Failed after {outcome.attempts} attempts: {outcome.reason}")
                result.reports.append(
                    self._report(
                        source,
                        SourceStatus.FAILED,
                        reason=outcome.reason,
                        attempts=outcome.attempts,
                    )
                )

        self.logger.info(
            f"Ingestion {'interrupted' if result.interrupted else 'complete'}: "
            f"{result.successful} successful, {result.failed} failed, "
            f"{result.skipped} skipped, {len(result.new_records)} new articles"
        )
        return result

    def _collect(
        self,
        source: FeedSource,
        outcome: Success,
        existing_ids: Collection[str],
        run_ids: Set[str],
        slugs: Set[str],
    ) -> Tuple[List[ArticleRecord], int]:
        """Convert up to ``max_items_per_source`` entries into new records."""
        fetched_at = self.now()
        entries = self.parser.newest_entries(outcome.feed, self.max_items_per_source, fetched_at)
        new_records: List[ArticleRecord] = []

        for entry in entries:
            record_id = self.parser.entry_id(entry, source)
            if record_id is None:
                self.logger.debug(f"Entry without link, guid or title in {source.name}, skipping")
                continue
            if record_id in existing_ids or record_id in run_ids:
                continue

            try:
                record = self.parser.build_record(entry, source, record_id, fetched_at, slugs)
            except (ValidationError, ValueError) as e:
                self.logger.warning(
                    f"Failed to convert entry in {source.name}: {e}",
                    extra={"entry_title": entry.get("title", "Unknown")},
                )
                continue

            run_ids.add(record_id)
            slugs.add(record.slug)
            new_records.append(record)

        return new_records, len(entries)

    @staticmethod
    def _report(source: FeedSource, status: SourceStatus, **kwargs) -> SourceReport:
        return SourceReport(
            name=source.name,
            url=source.url,
            status=status,
            service_class=source.service_class,
            **kwargs,
        )
