"""
Paper Trails Processing Module
==============================

Sequential ingestion over the catalog and the complete run pipeline.
"""

from .orchestrator import IngestionOrchestrator, order_sources
from .pipeline import IngestionPipeline

__all__ = [
    'IngestionOrchestrator',
    'IngestionPipeline',
    'order_sources',
]
