"""
Archive Store
=============

JSON persistence of the two archive artifacts:

- display file (``data/articles.json``)::

    {"articles": [...], "lastUpdated", "totalFeeds", "totalArticles", "fromArchive"}

- archive file (``data/articles-archive.json``)::

    {"articles": {id: record}, "lastUpdated", "totalArticles",
     "oldestArticle", "newestArticle"}

Older archive files stored ``articles`` as a list, or were a bare list;
both shapes are still read. Both artifacts are replaced atomically.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..config.settings import ArchiveSettings
from ..models import ArticleRecord
from ..utils.exceptions import ArchiveError, ErrorCode
from ..utils.logging import get_logger_for_component
from .atomic import write_json_atomic
from .merger import MergeResult


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ArchiveStore:
    """Reads and writes the display and archive JSON files."""

    def __init__(self, archive_path: Path, display_path: Path):
        self.archive_path = Path(archive_path)
        self.display_path = Path(display_path)
        self.logger = get_logger_for_component("archive_store")

    @classmethod
    def from_settings(cls, settings: ArchiveSettings) -> "ArchiveStore":
        return cls(archive_path=settings.archive_path, display_path=settings.display_path)

    def load(self) -> Dict[str, ArticleRecord]:
        """Read the archive keyed by id.

        Returns:
            Archive mapping; empty when the file does not exist yet

        Raises:
            ArchiveError: File exists but is not a readable archive
        """
        if not self.archive_path.exists():
            self.logger.info(f"No archive at {self.archive_path}, starting empty")
            return {}

        try:
            with open(self.archive_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ArchiveError(f"Cannot read archive: {e}", path=str(self.archive_path))

        raw_records = self._raw_records(data)
        archive: Dict[str, ArticleRecord] = {}
        try:
            for raw in raw_records:
                record = ArticleRecord.model_validate(raw)
                archive.setdefault(record.id, record)
        except ValidationError as e:
            raise ArchiveError(
                f"Invalid archive record: {e.errors()[0]['msg']}",
                path=str(self.archive_path),
            )

        self.logger.info(f"Loaded archive with {len(archive)} historical articles")
        return archive

    def _raw_records(self, data: Any) -> Iterable[Any]:
        """Records from any supported archive shape."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            articles = data.get("articles", {})
            if isinstance(articles, dict):
                return articles.values()
            if isinstance(articles, list):
                return articles
        raise ArchiveError(
            "Unrecognized archive shape",
            path=str(self.archive_path),
            error_code=ErrorCode.ARCHIVE_CORRUPT,
        )

    def save(self, result: MergeResult, total_feeds: int, now: Optional[datetime] = None) -> None:
        """Write the display file and the archive file.

        Raises:
            ArchiveError: Either file could not be written
        """
        updated = _isoformat(now or datetime.now(timezone.utc))
        ordered: List[ArticleRecord] = result.ordered

        archive_payload = {
            "articles": {record.id: record.to_json_dict() for record in ordered},
            "lastUpdated": updated,
            "totalArticles": len(ordered),
            "oldestArticle": _isoformat(ordered[-1].published_at) if ordered else None,
            "newestArticle": _isoformat(ordered[0].published_at) if ordered else None,
        }
        display_payload = {
            "articles": [record.to_json_dict() for record in result.display],
            "lastUpdated": updated,
            "totalFeeds": total_feeds,
            "totalArticles": len(result.display),
            "fromArchive": len(ordered),
        }

        try:
            write_json_atomic(self.archive_path, archive_payload)
            write_json_atomic(self.display_path, display_payload)
        except OSError as e:
            raise ArchiveError(
                f"Cannot write archive: {e}",
                path=str(self.archive_path),
                error_code=ErrorCode.ARCHIVE_UNWRITABLE,
            )

        self.logger.info(
            f"Saved {len(result.display)} display articles to {self.display_path} "
            f"and {len(ordered)} archived articles to {self.archive_path}"
        )
