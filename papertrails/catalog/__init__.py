"""
Paper Trails Catalog
====================

Feed source roster and publication detection for aggregator feeds.
"""

from .catalog import PublicationCatalog, detect_publication, match_service_class

__all__ = ["PublicationCatalog", "detect_publication", "match_service_class"]
