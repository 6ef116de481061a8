"""
Paper Trails Storage Layer
==========================

Archive merge and JSON persistence of the display and archive artifacts.
"""

from .archive_store import ArchiveStore
from .merger import MergeResult, merge

__all__ = [
    "ArchiveStore",
    "MergeResult",
    "merge",
]
