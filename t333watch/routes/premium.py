"""
Premium Routes
Premium status verification and feature limits
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from t333watch.schemas.premium import (
    PremiumUserSummary,
    PremiumVerifyResponse,
    ValidateFeatureRequest,
    VerifyFeatures,
)
from t333watch.security.deps import get_current_user, require_premium
from t333watch.services.analytics import AnalyticsRecorder, get_analytics_recorder
from t333watch.services.premium import premium_feature_catalog, validate_premium_limits, verify_features
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/premium", tags=["Premium"])


@router.get("/verify", response_model=PremiumVerifyResponse)
async def verify_premium_status(
    current_user: dict[str, Any] = Depends(get_current_user),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    """Premium status for the caller, served from the premium status cache."""
    is_premium = cache.get(current_user["id"])
    analytics.feature_used("premium_status_check", {"user_id": current_user["id"], "is_premium": is_premium})

    return PremiumVerifyResponse(
        success=True,
        isPremium=is_premium,
        user=PremiumUserSummary(
            id=current_user["id"],
            display_name=current_user.get("display_name"),
            premium_flag=bool(current_user.get("premium_flag")),
        ),
        features=VerifyFeatures(**verify_features(is_premium)),
    )


@router.post("/verify")
async def refresh_premium_status(
    current_user: dict[str, Any] = Depends(get_current_user),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    """Drop the caller's cached status and recompute it from the database."""
    cache.invalidate(current_user["id"])
    is_premium = cache.get(current_user["id"])
    analytics.feature_used("premium_status_refresh", {"user_id": current_user["id"], "is_premium": is_premium})

    return {"success": True, "isPremium": is_premium, "refreshed": True}


@router.get("/features")
async def get_premium_features(
    current_user: dict[str, Any] = Depends(require_premium),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    analytics.feature_used("premium_features_access", {"user_id": current_user["id"]})
    return {"success": True, "features": premium_feature_catalog()}


@router.post("/features/validate")
async def validate_feature_usage(
    body: ValidateFeatureRequest,
    current_user: dict[str, Any] = Depends(require_premium),
    cache: PremiumStatusCache = Depends(get_premium_cache),
    analytics: AnalyticsRecorder = Depends(get_analytics_recorder),
):
    """Check a usage count against the caller's tier limits; 403 when exceeded."""
    allowed, error = validate_premium_limits(cache.get(current_user["id"]), body.feature, body.currentUsage)
    analytics.feature_used(
        "premium_limit_validation",
        {
            "user_id": current_user["id"],
            "feature": body.feature,
            "current_usage": body.currentUsage,
            "allowed": allowed,
        },
    )

    if not allowed:
        return JSONResponse(
            status_code=403,
            content={
                "error": error,
                "allowed": False,
                "feature": body.feature,
                "currentUsage": body.currentUsage,
            },
        )

    return {"success": True, "allowed": True, "feature": body.feature, "currentUsage": body.currentUsage}
