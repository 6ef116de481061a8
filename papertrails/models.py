"""
Paper Trails Data Models
========================

Pydantic models for records that are persisted (catalog entries and
articles) and dataclasses for the transient results passed between the
fetch, orchestration and reporting stages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_host(url: str) -> str:
    """Lower-cased host of a URL with a leading 'www.' removed."""
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


class Publication(BaseModel):
    """Publication an article is attributed to."""
    name: str = Field(..., min_length=1, description="Publication display name")
    slug: str = Field(..., description="URL-safe publication slug")
    category: str = Field(default="", description="Editorial category")

    model_config = ConfigDict(frozen=True)


class FeedSource(BaseModel):
    """One syndication endpoint from the catalog. Immutable for a run."""
    name: str = Field(..., min_length=1, description="Source display name")
    url: str = Field(..., description="Feed URL")
    slug: str = Field(..., min_length=1, description="Source slug, part of every article id")
    category: str = Field(default="", description="Editorial category")
    default_author: Optional[str] = Field(default=None, alias="defaultAuthor", description="Author when items carry none")
    aggregator: bool = Field(default=False, description="Items link to other publications")
    service_class: Optional[str] = Field(default=None, alias="serviceClass", description="Throttle group assigned by the catalog")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Only http(s) feed URLs are accepted."""
        v = v.strip()
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid feed URL: {v!r}")
        return v

    @property
    def host(self) -> str:
        return normalize_host(self.url)

    @property
    def publication(self) -> Publication:
        return Publication(name=self.name, slug=self.slug, category=self.category)

    def __str__(self) -> str:
        return f"FeedSource({self.name}:{self.host})"


class ArticleRecord(BaseModel):
    """Canonical article record. Created once, never mutated."""
    id: str = Field(..., min_length=1, description="Stable content hash")
    title: str = Field(default="", description="Plain-text title")
    link: str = Field(default="", description="Article URL")
    author: str = Field(default="", description="Author name")
    published_at: datetime = Field(..., alias="publishedAt", description="Source date, or fetch time")
    content: str = Field(default="", description="Normalized plain-text body")
    excerpt: str = Field(default="", description="Leading part of the content")
    word_count: int = Field(default=0, ge=0, alias="wordCount")
    read_time_minutes: int = Field(default=1, ge=1, alias="readTime")
    is_paid: bool = Field(default=False, alias="isPaid")
    publication: Publication
    slug: str = Field(..., min_length=1, description="Unique URL-safe slug")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator('published_at')
    @classmethod
    def ensure_timezone(cls, v):
        """Naive datetimes are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_json_dict(self) -> Dict[str, Any]:
        """Archive representation with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    def __str__(self) -> str:
        return f"ArticleRecord({self.title[:50]}...)"


# Fetch outcomes: exactly one per fetch_one call.

@dataclass(frozen=True)
class Success:
    """Payload fetched and parsed."""
    payload: bytes
    feed: Any
    attempts: int = 1


@dataclass(frozen=True)
class RateLimited:
    """Host kept answering 403/429; it is now on the skip list."""
    retry_after: Optional[float] = None
    attempts: int = 1

    @property
    def reason(self) -> str:
        return "RateLimited"


@dataclass(frozen=True)
class TransientError:
    """Network or HTTP failure after the retry budget was spent."""
    cause: Exception
    attempts: int = 1

    @property
    def reason(self) -> str:
        return getattr(self.cause, "reason", type(self.cause).__name__)


@dataclass(frozen=True)
class PermanentSkip:
    """Host is on the skip list; no request was made."""
    reason: str = "PermanentSkip"

    @property
    def attempts(self) -> int:
        return 0


@dataclass(frozen=True)
class ParseFailure:
    """Payload could not be parsed as a feed."""
    cause: Exception
    attempts: int = 1

    @property
    def reason(self) -> str:
        return "ParseError"


FetchOutcome = Union[Success, RateLimited, TransientError, PermanentSkip, ParseFailure]


class SourceStatus(str, Enum):
    """Per-source result category."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SourceReport:
    """Outcome of one catalog source within a run."""

    name: str
    url: str
    status: SourceStatus
    item_count: int = 0
    new_count: int = 0
    reason: Optional[str] = None
    service_class: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "status": self.status.value,
            "itemCount": self.item_count,
            "newCount": self.new_count,
            "reason": self.reason,
            "serviceClass": self.service_class,
            "attempts": self.attempts,
        }


@dataclass
class IngestionResult:
    """New records and per-source reports gathered by one orchestrator run."""

    new_records: List[ArticleRecord] = field(default_factory=list)
    reports: List[SourceReport] = field(default_factory=list)
    interrupted: bool = False

    def _count(self, status: SourceStatus) -> int:
        return sum(1 for r in self.reports if r.status == status)

    @property
    def successful(self) -> int:
        return self._count(SourceStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(SourceStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(SourceStatus.SKIPPED)


@dataclass
class SkipEntry:
    """Host temporarily excluded from fetching."""

    host: str
    until: float
    reason: str = "RateLimited"

    def is_active(self, now: float) -> bool:
        return now < self.until

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "until": self.until, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkipEntry":
        return cls(
            host=str(data["host"]),
            until=float(data["until"]),
            reason=str(data.get("reason", "RateLimited")),
        )

    @property
    def until_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.until, tz=timezone.utc)
