"""Schema definitions for premium status and feature limits."""

from pydantic import BaseModel, Field


class ValidateFeatureRequest(BaseModel):
    feature: str = Field(min_length=1)
    currentUsage: int = Field(ge=0)


class PremiumUserSummary(BaseModel):
    id: str
    display_name: str | None = None
    premium_flag: bool


class VerifyFeatures(BaseModel):
    maxStreams: int
    unlimitedPacks: bool
    customLayouts: bool
    streamPinning: bool
    layoutSaving: bool


class PremiumVerifyResponse(BaseModel):
    success: bool = True
    isPremium: bool
    user: PremiumUserSummary
    features: VerifyFeatures
