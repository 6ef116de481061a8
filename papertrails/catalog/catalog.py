"""
Publication Catalog
===================

Static roster of feed sources read from ``data/feeds.json``. Each source is
assigned the service class whose host patterns match its host, and aggregator
sources get article-level publication detection.
"""

import json
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from ..config.settings import ServiceClassSettings
from ..models import FeedSource, Publication, normalize_host
from ..utils.exceptions import CatalogError, ErrorCode
from ..utils.logging import get_logger_for_component


# Publications linked from aggregator feeds, keyed by article domain.
PUBLICATION_MAP: Dict[str, Publication] = {
    domain: Publication(name=name, slug=slug, category=category)
    for domain, (name, slug, category) in {
        "lrb.co.uk": ("London Review of Books", "london-review-of-books", "Culture"),
        "wsj.com": ("Wall Street Journal", "wall-street-journal", "Economics"),
        "ft.com": ("Financial Times", "financial-times", "Economics"),
        "economist.com": ("The Economist", "economist", "Economics"),
        "nytimes.com": ("New York Times", "new-york-times", "Politics"),
        "washingtonpost.com": ("Washington Post", "washington-post", "Politics"),
        "theatlantic.com": ("The Atlantic", "atlantic", "Culture"),
        "newyorker.com": ("The New Yorker", "new-yorker", "Culture"),
        "harpers.org": ("Harper's Magazine", "harpers", "Culture"),
        "newrepublic.com": ("The New Republic", "new-republic", "Politics"),
        "nationalreview.com": ("National Review", "national-review", "Politics"),
        "spectator.org": ("The American Spectator", "american-spectator", "Politics"),
        "prospect.org": ("The American Prospect", "american-prospect", "Politics"),
        "foreignaffairs.com": ("Foreign Affairs", "foreign-affairs", "Politics"),
        "foreignpolicy.com": ("Foreign Policy", "foreign-policy", "Politics"),
        "theguardian.com": ("The Guardian", "guardian", "Politics"),
        "bbc.com": ("BBC", "bbc", "Politics"),
        "reuters.com": ("Reuters", "reuters", "Politics"),
        "apnews.com": ("Associated Press", "associated-press", "Politics"),
        "bloomberg.com": ("Bloomberg", "bloomberg", "Economics"),
        "quantamagazine.org": ("Quanta Magazine", "quanta-magazine", "Science"),
        "scientificamerican.com": ("Scientific American", "scientific-american", "Science"),
        "nature.com": ("Nature", "nature", "Science"),
        "science.org": ("Science", "science-magazine", "Science"),
        "aeon.co": ("Aeon", "aeon", "Philosophy"),
    }.items()
}


def match_service_class(
    host: str, service_classes: Sequence[ServiceClassSettings]
) -> Optional[str]:
    """Return the first service class whose host pattern matches ``host``.

    A pattern matches the host itself or any subdomain of it, so
    ``substack.com`` covers ``example.substack.com``.
    """
    for service_class in service_classes:
        for pattern in service_class.host_patterns:
            if host == pattern or host.endswith("." + pattern):
                return service_class.name
    return None


def detect_publication(link: str, source: FeedSource) -> Publication:
    """Publication for an article, resolving aggregator links by domain."""
    if source.aggregator and link:
        publication = PUBLICATION_MAP.get(normalize_host(link))
        if publication:
            return publication
    return source.publication


class PublicationCatalog:
    """Ordered, immutable roster of feed sources."""

    def __init__(self, sources: List[FeedSource]):
        self._sources = list(sources)

    def __iter__(self) -> Iterator[FeedSource]:
        return iter(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def sources(self) -> List[FeedSource]:
        return list(self._sources)

    def by_service_class(self) -> Dict[Optional[str], List[FeedSource]]:
        """Group sources by service class, preserving catalog order."""
        groups: Dict[Optional[str], List[FeedSource]] = {}
        for source in self._sources:
            groups.setdefault(source.service_class, []).append(source)
        return groups

    @classmethod
    def from_entries(
        cls,
        entries: List[dict],
        service_classes: Sequence[ServiceClassSettings] = (),
    ) -> "PublicationCatalog":
        """Build a catalog from raw JSON entries.

        Invalid entries and duplicate slugs are logged and dropped; the
        rest of the roster is still usable.
        """
        logger = get_logger_for_component("catalog")
        sources: List[FeedSource] = []
        seen_slugs = set()

        for index, entry in enumerate(entries):
            try:
                source = FeedSource.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Dropping invalid catalog entry #{index}: {e.errors()[0]['msg']}")
                continue

            if source.slug in seen_slugs:
                logger.warning(f"Dropping duplicate catalog slug '{source.slug}' ({source.name})")
                continue
            seen_slugs.add(source.slug)

            if source.service_class is None:
                service_class = match_service_class(source.host, service_classes)
                if service_class:
                    source = source.model_copy(update={"service_class": service_class})

            sources.append(source)

        return cls(sources)

    @classmethod
    def load(
        cls,
        path: str,
        service_classes: Sequence[ServiceClassSettings] = (),
    ) -> "PublicationCatalog":
        """Load the catalog file.

        Raises:
            CatalogError: If the file is missing, unreadable or not a list
        """
        catalog_path = Path(path)
        try:
            with open(catalog_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise CatalogError(f"Catalog file not found: {catalog_path}", path=str(catalog_path))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Cannot read catalog: {e}", path=str(catalog_path))

        if isinstance(data, dict):
            data = data.get("feeds")
        if not isinstance(data, list):
            raise CatalogError(
                "Catalog must be a list of feed sources",
                path=str(catalog_path),
                error_code=ErrorCode.CATALOG_INVALID,
            )

        catalog = cls.from_entries(data, service_classes)
        get_logger_for_component("catalog").info(
            f"Loaded {len(catalog)} feed sources from {catalog_path}"
        )
        return catalog
