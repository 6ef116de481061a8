"""
Run Report
==========

Outcome summary of one ingestion run, consumed by the notification step of
the scheduled job and appended to a per-day JSON log under ``logs/``.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import IngestionResult, SourceReport, SourceStatus
from ..storage.atomic import write_json_atomic
from ..utils.logging import get_logger_for_component


@dataclass
class RunReport:
    """Aggregated outcome of one run."""

    successful: int
    failed: int
    skipped: int
    new_article_count: int
    per_source_failures: List[Dict[str, str]] = field(default_factory=list)
    interrupted: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    archive_total: int = 0
    display_total: int = 0
    sources: List[SourceReport] = field(default_factory=list)

    @classmethod
    def from_source_reports(
        cls,
        reports: List[SourceReport],
        new_article_count: int,
        interrupted: bool = False,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
        archive_total: int = 0,
        display_total: int = 0,
    ) -> "RunReport":
        """Summarize per-source reports; skipped sources count as failures too."""
        failures = [
            {"name": r.name, "reason": r.reason or r.status.value}
            for r in reports
            if r.status != SourceStatus.SUCCESS
        ]
        return cls(
            successful=sum(1 for r in reports if r.status == SourceStatus.SUCCESS),
            failed=sum(1 for r in reports if r.status == SourceStatus.FAILED),
            skipped=sum(1 for r in reports if r.status == SourceStatus.SKIPPED),
            new_article_count=new_article_count,
            per_source_failures=failures,
            interrupted=interrupted,
            started_at=started_at,
            finished_at=finished_at,
            archive_total=archive_total,
            display_total=display_total,
            sources=list(reports),
        )

    @classmethod
    def from_ingestion(cls, result: IngestionResult, **kwargs) -> "RunReport":
        return cls.from_source_reports(
            result.reports,
            new_article_count=len(result.new_records),
            interrupted=result.interrupted,
            **kwargs,
        )

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        """camelCase representation for the notification collaborator."""
        return {
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "newArticleCount": self.new_article_count,
            "perSourceFailures": list(self.per_source_failures),
            "interrupted": self.interrupted,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationSeconds": round(self.duration_seconds, 2),
            "archiveTotal": self.archive_total,
            "displayTotal": self.display_total,
            "sources": [r.to_dict() for r in self.sources],
        }


class RunReportWriter:
    """Appends run summaries to ``{report_dir}/ingest-YYYY-MM-DD.json``."""

    def __init__(self, report_dir: str = "logs"):
        self.report_dir = Path(report_dir)
        self.logger = get_logger_for_component("run_report")

    def path_for(self, day: datetime) -> Path:
        return self.report_dir / f"ingest-{day.strftime('%Y-%m-%d')}.json"

    def append(self, report: RunReport) -> Path:
        """Add ``report`` to the file of its start day and return the file path."""
        day = report.started_at or datetime.now(timezone.utc)
        path = self.path_for(day)

        entries: List[Dict[str, Any]] = []
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, list):
                    entries = loaded
                else:
                    self.logger.warning(f"Replacing malformed report file {path}")
            except (OSError, json.JSONDecodeError) as e:
                self.logger.warning(f"Replacing unreadable report file {path}: {e}")

        entries.append(report.to_dict())
        write_json_atomic(path, entries)
        self.logger.info(f"Run report written to {path}")
        return path
