"""
Ingestion Pipeline
==================

One complete ingestion run: catalog, archive load, orchestrated fetching,
merge, a single atomic archive save, skip list persistence and the run
report. A stop request (SIGINT/SIGTERM) still merges and saves whatever was
gathered before it arrived.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..catalog.catalog import PublicationCatalog
from ..config.settings import PapertrailsSettings, get_settings
from ..ingestion.feed_parser import FeedParser
from ..ingestion.transport import AiohttpTransport, RelayTransport, Transport
from ..monitoring.run_report import RunReport, RunReportWriter
from ..recovery.backoff import BackoffController
from ..recovery.retry_logic import FetchRetrier
from ..recovery.throttle import DomainThrottle, Sleeper, make_interruptible_sleep
from ..storage.archive_store import ArchiveStore
from ..storage.merger import merge
from ..utils.logging import PerformanceLogger, get_logger_for_component
from ..utils.process_lock import ingestion_lock
from .orchestrator import IngestionOrchestrator


class IngestionPipeline:
    """Wires the ingestion components together for a single run."""

    def __init__(
        self,
        settings: Optional[PapertrailsSettings] = None,
        transport: Optional[Transport] = None,
        relay_transport: Optional[Transport] = None,
        stop_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Optional[Sleeper] = None,
        use_lock: bool = True,
    ):
        """Initialize pipeline.

        Args:
            settings: Application settings (default: global settings)
            transport: Direct transport (default: aiohttp transport owned by the run)
            relay_transport: Relay transport (default: built from ``transport.relay_url``)
            stop_event: Event that ends the run early when set
            clock: Monotonic clock used by the throttle
            wall_clock: Epoch clock used by the skip list
            sleep: Wait implementation (default: sleeps that wake on ``stop_event``)
            use_lock: Hold the process lock for the duration of the run
        """
        self.settings = settings or get_settings()
        self.stop_event = stop_event or asyncio.Event()
        self.clock = clock
        self.wall_clock = wall_clock
        self.sleep = sleep
        self.use_lock = use_lock
        self.logger = get_logger_for_component("pipeline")

        self._transport = transport
        self._relay_transport = relay_transport

    def request_stop(self) -> None:
        """Ask the running pipeline to finish after the current wait or source."""
        if not self.stop_event.is_set():
            self.logger.warning("Stop requested, saving gathered articles before exit")
            self.stop_event.set()

    async def run(self) -> RunReport:
        """Execute one ingestion run.

        Returns:
            RunReport for the run

        Raises:
            CatalogError: Catalog is missing or malformed
            ArchiveError: Archive is corrupt or cannot be written
            RunLockedError: Another run holds the process lock
        """
        if not self.use_lock:
            return await self._run_unlocked()

        archive_settings = self.settings.archive
        with ingestion_lock(archive_settings.lock_dir, archive_settings.data_dir):
            return await self._run_unlocked()

    async def _run_unlocked(self) -> RunReport:
        settings = self.settings
        started_at = datetime.now(timezone.utc)

        with PerformanceLogger(self.logger, "ingestion run"):
            catalog = PublicationCatalog.load(settings.catalog.path, settings.throttle.service_classes)

            store = ArchiveStore.from_settings(settings.archive)
            archive = store.load()

            backoff = BackoffController.from_settings(settings.backoff, wall_clock=self.wall_clock)
            backoff.load_skip_list(settings.backoff.skip_list_path)

            throttle = DomainThrottle.from_settings(
                settings.throttle,
                clock=self.clock,
                sleep=self.sleep or make_interruptible_sleep(self.stop_event),
            )
            parser = FeedParser.from_settings(settings.ingestion)

            owns_transport = self._transport is None
            transport = self._transport or AiohttpTransport(timeout=settings.retry.request_timeout)
            relay_transport = self._relay_transport
            if relay_transport is None and settings.transport.relay_url:
                relay_transport = RelayTransport(settings.transport.relay_url, transport)

            retrier = FetchRetrier.from_settings(
                settings, throttle, backoff, transport, parser, relay_transport=relay_transport
            )
            orchestrator = IngestionOrchestrator.from_settings(
                settings, retrier, parser, stop_event=self.stop_event
            )

            try:
                result = await orchestrator.run(
                    catalog,
                    existing_ids=archive,
                    taken_slugs={record.slug for record in archive.values()},
                )
            finally:
                if owns_transport:
                    await transport.close()

            max_age_days = settings.archive.display_max_age_days
            merge_result = merge(
                archive,
                result.new_records,
                display_limit=settings.archive.display_limit,
                max_age=timedelta(days=max_age_days) if max_age_days else None,
            )
            store.save(merge_result, total_feeds=len(catalog))
            backoff.save_skip_list(settings.backoff.skip_list_path)

            report = RunReport.from_ingestion(
                result,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                archive_total=len(merge_result.archive),
                display_total=len(merge_result.display),
            )
            RunReportWriter(settings.archive.report_dir).append(report)

        self.logger.info(
            f"Run finished: {report.successful} successful, {report.failed} failed, "
            f"{report.skipped} skipped, {report.new_article_count} new articles"
            + (" (interrupted)" if report.interrupted else "")
        )
        return report
