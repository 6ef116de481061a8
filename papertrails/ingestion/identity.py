"""
Article Identity
================

Stable article ids and URL-safe slugs.

An id depends only on the source slug and the item's link (falling back to
guid, then title), so re-ingesting the same item in a later run yields the
same id and is recognised as a duplicate.
"""

import hashlib
import re
import unicodedata
from typing import Collection, Optional

ID_LENGTH = 16
SLUG_MAX_LENGTH = 60

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_SLUG_SEPARATORS = re.compile(r"[\s-]+")


def identity_key(
    link: Optional[str], guid: Optional[str] = None, title: Optional[str] = None
) -> str:
    """First non-empty of link, guid and title."""
    for candidate in (link, guid, title):
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def article_id(source_slug: str, key: str) -> str:
    """Deterministic article id.

    >>> article_id("aeon", "https://aeon.co/essays/x") == article_id("aeon", "https://aeon.co/essays/x")
    True
    """
    digest = hashlib.sha256(f"{source_slug}::{key}".encode("utf-8")).hexdigest()
    return digest[:ID_LENGTH]


def slugify(text: Optional[str], max_length: int = SLUG_MAX_LENGTH) -> str:
    """Lower-case ASCII slug; may be empty for punctuation-only input."""
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _NON_SLUG_CHARS.sub("", text.lower())
    text = _SLUG_SEPARATORS.sub("-", text).strip("-")
    return text[:max_length].rstrip("-")


def unique_slug(title: Optional[str], record_id: str, taken: Collection[str] = ()) -> str:
    """Never-empty slug for a record, disambiguated against ``taken``.

    Empty titles fall back to ``untitled-{id}``; a slug that is already
    in use gets the first eight characters of the id appended.
    """
    slug = slugify(title)
    if not slug:
        return f"untitled-{record_id}"
    if slug in taken:
        return f"{slug}-{record_id[:8]}"
    return slug
