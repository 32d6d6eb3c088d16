"""FastAPI routers for the worker.

Routers are grouped by domain (meetings ingestion, aggregation runs).
"""

from .aggregate import router as aggregate_router
from .meetings import router as meetings_router

__all__ = ["aggregate_router", "meetings_router"]
