"""
Health check endpoints.
The only routes reachable without credentials.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from user_directory.api.deps import require
from user_directory.core.authorization import Action
from user_directory.core.config import get_settings
from user_directory.core.database import engine
from user_directory.core.logging import get_logger

router = APIRouter(tags=["Health"], dependencies=[Depends(require(Action.HEALTH_CHECK))])
logger = get_logger("health")
settings = get_settings()


@router.get("/health")
async def health_check():
    """
    Basic health check.
    Returns service status including database connectivity.
    """
    health = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": "unknown",
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health["database"] = "connected"
    except Exception as e:
        health["database"] = f"error: {str(e)}"
        health["status"] = "degraded"
        logger.error("Database health check failed: %s", str(e))

    return health


@router.get("/ping")
async def ping():
    """Simple ping endpoint for load balancers."""
    return {"ping": "pong"}
