"""Rate-card ingestion, conflict resolution and settlement prediction."""

__version__ = "0.1.0"
