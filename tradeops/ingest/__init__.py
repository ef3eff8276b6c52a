"""Event ingestion — market-data and order events into the metrics recorder."""

from tradeops.ingest.ingestor import EventIngestor

__all__ = ["EventIngestor"]
