"""Health check endpoint."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from t333watch import __version__
from t333watch.config import Config
from t333watch.config.supabase_config import get_initialization_status
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(cache: PremiumStatusCache = Depends(get_premium_cache)):
    """Liveness plus database client state; never touches the network."""
    db_status = get_initialization_status()
    return {
        "status": "degraded" if db_status["has_error"] else "healthy",
        "version": __version__,
        "environment": Config.APP_ENV,
        "billing_configured": Config.is_billing_configured(),
        "database": db_status,
        "premium_cache": cache.stats(),
        "timestamp": datetime.now(UTC).isoformat(),
    }
