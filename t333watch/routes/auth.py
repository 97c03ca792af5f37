"""
Auth Routes
Twitch OAuth code exchange, kept server-side so the client secret never reaches the browser
"""

import logging

from fastapi import APIRouter, Depends

from t333watch.schemas.auth import TokenExchangeRequest
from t333watch.services.twitch_client import TwitchClient, get_twitch_client
from t333watch.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/token")
async def exchange_token(body: TokenExchangeRequest, twitch: TwitchClient = Depends(get_twitch_client)):
    if not body.code:
        raise ValidationError("Authorization code is required")
    return twitch.exchange_code(body.code)
