"""
Paper Trails Ingestion Module
=============================

Feed fetching and conversion components.

This module handles:
- Direct and relay transports with rotating client identity
- Feed payload parsing into article records
- Markup normalization and stable article identity
"""
