"""
Middleware Package

Provides FastAPI middleware for error handling and the service error taxonomy.

Usage:
    from pattern_recall.middleware import setup_error_handling, NotFoundError
"""

from pattern_recall.middleware.error_handling import (
    ErrorHandlingMiddleware,
    GradingError,
    NotFoundError,
    PersistenceError,
    ReplenishError,
    ServiceError,
    ValidationError,
    setup_error_handling,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "GradingError",
    "NotFoundError",
    "PersistenceError",
    "ReplenishError",
    "ServiceError",
    "ValidationError",
    "setup_error_handling",
]
