"""API routers."""

from pattern_recall.routers import health, study

__all__ = ["health", "study"]
