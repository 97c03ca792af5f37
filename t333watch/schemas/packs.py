"""Schema definitions for packs and their streams."""

from enum import Enum

from pydantic import BaseModel, Field


class PackVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class PublicPackSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    POPULAR = "popular"
    ALPHABETICAL = "alphabetical"


class PackStreamInput(BaseModel):
    """A channel supplied while creating or editing a pack."""

    twitch_channel: str = Field(min_length=1)
    offset_seconds: int = Field(default=0, ge=0)


class CreatePackRequest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    visibility: PackVisibility = PackVisibility.PRIVATE
    streams: list[PackStreamInput] = Field(default_factory=list)


class UpdatePackRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = None
    visibility: PackVisibility | None = None


class UpdateVisibilityRequest(BaseModel):
    visibility: PackVisibility


class AddStreamRequest(BaseModel):
    channel: str = Field(min_length=1)
    order: int | None = Field(default=None, ge=0)
    offset_seconds: int = Field(default=0, ge=0)
