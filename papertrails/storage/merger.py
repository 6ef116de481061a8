"""
Archive Merger
==============

Pure union of the existing archive with newly ingested records.

- First write wins: a record already in the archive is never replaced.
- Ordering is ``published_at`` descending, ties broken by id.
- The display set is the first ``display_limit`` records of that order,
  optionally restricted to records younger than ``max_age``.

Merging the same batch twice yields the same result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from ..models import ArticleRecord


@dataclass(frozen=True)
class MergeResult:
    """Merged archive and the display set derived from it."""

    archive: Dict[str, ArticleRecord]
    display: List[ArticleRecord]
    # Count of records new to this merge; not part of the merged state
    added: int = field(default=0, compare=False)

    @property
    def ordered(self) -> List[ArticleRecord]:
        return sort_records(self.archive.values())

    @property
    def oldest(self) -> Optional[ArticleRecord]:
        return min(self.archive.values(), key=_sort_key, default=None)

    @property
    def newest(self) -> Optional[ArticleRecord]:
        return max(self.archive.values(), key=_sort_key, default=None)


def _sort_key(record: ArticleRecord):
    return (record.published_at, record.id)


def sort_records(records: Iterable[ArticleRecord]) -> List[ArticleRecord]:
    """Newest first; equal timestamps ordered by id descending."""
    return sorted(records, key=_sort_key, reverse=True)


def merge(
    archive: Mapping[str, ArticleRecord],
    new_records: Iterable[ArticleRecord],
    display_limit: int = 500,
    max_age: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> MergeResult:
    """Union ``new_records`` into ``archive`` and derive the display set.

    Args:
        archive: Existing records keyed by id (not modified)
        new_records: Candidate records in ingestion order
        display_limit: Maximum size of the display set
        max_age: Drop records older than this from the display set
        now: Reference time for ``max_age`` (defaults to current UTC time)

    Returns:
        MergeResult with the new archive mapping and display list
    """
    merged: Dict[str, ArticleRecord] = dict(archive)
    added = 0
    for record in new_records:
        if record.id not in merged:
            merged[record.id] = record
            added += 1

    ordered = sort_records(merged.values())

    if max_age is not None:
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        ordered = [r for r in ordered if r.published_at >= cutoff]

    return MergeResult(archive=merged, display=ordered[:max(0, display_limit)], added=added)
