"""Meeting ingestion and aggregation worker."""

__version__ = "0.3.0"
