"""Scalability layer: bounded worker pool for dispatch. No FastAPI."""

from app.scalability.bulkhead import BulkheadExecutor, BulkheadFullError

__all__ = [
    "BulkheadExecutor",
    "BulkheadFullError",
]
