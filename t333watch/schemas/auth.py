"""Schema definitions for Twitch authentication."""

from pydantic import BaseModel


class TokenExchangeRequest(BaseModel):
    code: str | None = None
