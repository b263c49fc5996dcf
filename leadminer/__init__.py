"""LeadMiner - lead discovery, enrichment and deduplication service."""

__version__ = "0.4.0"
