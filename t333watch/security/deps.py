"""
FastAPI Security Dependencies
Dependency injection functions for authentication and authorization
"""

import logging
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from t333watch.db.users import create_user, get_user_by_twitch_id, update_user
from t333watch.security.authorization import ensure_admin
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache
from t333watch.services.twitch_client import TwitchClient, get_twitch_client
from t333watch.utils.exceptions import AuthenticationError, PremiumRequiredError

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme with auto_error=False so the cookie fallback can run
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_COOKIE = "twitch_access_token"


async def get_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """
    Extract the Twitch access token from the Authorization header or the session cookie.

    Raises:
        AuthenticationError: 401 when neither is present
    """
    if credentials and credentials.credentials:
        return credentials.credentials

    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token

    raise AuthenticationError("Authentication required")


def _sync_user(twitch_user: dict[str, Any]) -> dict[str, Any]:
    """Get or create the user row for a Twitch profile, refreshing its avatar."""
    twitch_id = twitch_user["id"]
    user = get_user_by_twitch_id(twitch_id)

    if user is None:
        user = create_user(
            {
                "twitch_id": twitch_id,
                "login": twitch_user.get("login"),
                "display_name": twitch_user.get("display_name"),
                "profile_image_url": twitch_user.get("profile_image_url"),
            }
        )
    elif twitch_user.get("profile_image_url") and twitch_user["profile_image_url"] != user.get(
        "profile_image_url"
    ):
        user = update_user(user["id"], {"profile_image_url": twitch_user["profile_image_url"]})

    return user


async def get_current_user(
    access_token: str = Depends(get_access_token),
    twitch: TwitchClient = Depends(get_twitch_client),
) -> dict[str, Any]:
    """
    Resolve the authenticated user.

    Returns:
        The user record, plus the transient ``email`` from the Twitch profile

    Raises:
        AuthenticationError: 401 if Twitch rejects the token
    """
    twitch_user = twitch.get_user(access_token)
    user = dict(_sync_user(twitch_user))
    user["email"] = twitch_user.get("email")
    return user


async def require_premium(
    user: dict[str, Any] = Depends(get_current_user),
    cache: PremiumStatusCache = Depends(get_premium_cache),
) -> dict[str, Any]:
    """
    Require an authenticated premium user.

    Raises:
        PremiumRequiredError: 403 with code PREMIUM_REQUIRED and the upgrade URL
    """
    if not cache.get(user["id"]):
        raise PremiumRequiredError()
    return user


async def require_admin(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    ensure_admin(user)
    return user


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    twitch: TwitchClient = Depends(get_twitch_client),
) -> dict[str, Any] | None:
    """Authenticated user when a valid token is present, otherwise None."""
    token = credentials.credentials if credentials and credentials.credentials else None
    token = token or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return None

    try:
        return await get_current_user(access_token=token, twitch=twitch)
    except AuthenticationError:
        return None
