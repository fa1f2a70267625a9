"""Concurrent NDJSON bulk loader for Elasticsearch."""

__version__ = "0.1.0"
