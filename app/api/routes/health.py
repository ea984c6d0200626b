from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from app.config import settings
from app.core.database import check_database_health

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Liveness plus which billing vendors are configured."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "stripe_configured": settings.stripe_configured,
        "stripe_webhook_configured": bool(settings.stripe_webhook_secret),
        "paypal_configured": settings.paypal_configured,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check endpoint that includes database connectivity."""
    if not await check_database_health():
        logger.warning("health.ready.database_unavailable")
        raise HTTPException(status_code=503, detail="Database is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
    }
