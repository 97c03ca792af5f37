"""
Admin Routes
Subscription analytics dashboard data
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query

from t333watch.security.deps import require_admin
from t333watch.services.analytics import build_admin_overview
from t333watch.utils.exceptions import APIExceptions, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def _parse_date(value: str | None, name: str) -> str | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid {name}; expected an ISO 8601 date") from None


@router.get("/analytics")
async def get_admin_analytics(
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    admin_user: dict[str, Any] = Depends(require_admin),
):
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")

    try:
        return build_admin_overview(start, end)
    except Exception as e:
        logger.error(f"Error building admin analytics: {e}", exc_info=True)
        raise APIExceptions.internal_error("fetch analytics") from e
