"""Health check endpoints."""

from app.config import settings
from app.services.database import check_db_health, get_db
from app.services.redis_client import check_redis_health
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "autoshop-api", "environment": settings.APP_ENV}


@router.get("/health/db")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    """Database health check."""
    if await check_db_health(db):
        return {"status": "healthy", "database": "connected"}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "database": "disconnected"},
    )


@router.get("/health/redis")
async def redis_health_check():
    """Redis health check."""
    if await check_redis_health():
        return {"status": "healthy", "redis": "connected"}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "redis": "disconnected"},
    )
