"""
Health Check Endpoints

Endpoints:
- GET /api/health - Basic health check
- GET /api/health/detailed - Health with database connectivity
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_recall.config import settings
from pattern_recall.db.base import get_db

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """
    Basic health check.

    Returns a simple status response indicating the API is running.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@router.get("/detailed")
async def detailed_health_check(db: AsyncSession = Depends(get_db)):
    """Health check including PostgreSQL connectivity."""
    health = {"status": "healthy", "service": settings.APP_NAME, "dependencies": {}}

    try:
        await db.execute(text("SELECT 1"))
        health["dependencies"]["postgres"] = {"status": "healthy"}
    except Exception as e:
        health["dependencies"]["postgres"] = {"status": "unhealthy", "error": str(e)}
        health["status"] = "degraded"

    return health
