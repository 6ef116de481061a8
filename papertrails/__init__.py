"""
Paper Trails - Feed Ingestion Pipeline
======================================

Polite RSS/Atom ingestion into a deduplicated, freshness-ordered archive.

Main Components:
- Catalog: static roster of feed sources with service classes
- Ingestion: transports, feed parsing, text normalization, article identity
- Recovery: domain throttle, backoff controller, fetch retrier
- Processing: orchestrator and the end-to-end run pipeline
- Storage: archive merge and atomic JSON persistence
"""

__version__ = "1.0.0"
__author__ = "Paper Trails Development Team"
__description__ = "Rate-limit aware feed ingestion pipeline"

# Core imports for easy access
from .config.settings import get_settings
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import PapertrailsError

__all__ = [
    "get_settings",
    "configure_application_logging",
    "get_logger_for_component",
    "PapertrailsError",
]
