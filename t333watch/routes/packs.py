"""
Pack Routes
Saved channel sets: CRUD, visibility, streams and public discovery
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from t333watch.db import packs as packs_db
from t333watch.schemas.packs import (
    AddStreamRequest,
    CreatePackRequest,
    PublicPackSort,
    UpdatePackRequest,
    UpdateVisibilityRequest,
)
from t333watch.security.authorization import ensure_owner, is_owner
from t333watch.security.deps import get_current_user, get_optional_user
from t333watch.services.premium import validate_premium_limits
from t333watch.services.premium_cache import PremiumStatusCache, get_premium_cache
from t333watch.utils.exceptions import AuthorizationError, NotFoundError, ValidationError
from t333watch.utils.security_validators import (
    is_valid_channel_name,
    normalize_channel_name,
    sanitize_for_logging,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/packs", tags=["Packs"])

DUPLICATE_WINDOW_SECONDS = 60


def _load_pack(pack_id: str) -> dict[str, Any]:
    pack = packs_db.get_pack(pack_id)
    if not pack:
        raise NotFoundError("Pack not found")
    return pack


def _channel(raw: str) -> str:
    channel = normalize_channel_name(raw)
    if not is_valid_channel_name(channel):
        raise ValidationError(f"Invalid Twitch channel name: {sanitize_for_logging(raw)}")
    return channel


def _check_limit(cache: PremiumStatusCache, user_id: str, feature: str, usage: int) -> None:
    allowed, error = validate_premium_limits(cache.get(user_id), feature, usage)
    if not allowed:
        raise AuthorizationError(error, code="LIMIT_REACHED", upgradeUrl="/pricing")


@router.get("")
async def list_my_packs(current_user: dict[str, Any] = Depends(get_current_user)):
    return {"packs": packs_db.get_user_packs(current_user["id"])}


@router.post("", status_code=201)
async def create_pack(
    body: CreatePackRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    cache: PremiumStatusCache = Depends(get_premium_cache),
):
    """
    Create a pack.

    Resubmitting the same title within a minute returns the pack created by
    the first submission instead of a duplicate.
    """
    user_id = current_user["id"]
    title = body.title.strip()
    if not title:
        raise ValidationError("Title is required")

    existing = packs_db.find_recent_pack_by_title(user_id, title, DUPLICATE_WINDOW_SECONDS)
    if existing:
        logger.info(f"Preventing duplicate pack creation for user {user_id}")
        return {"pack": existing}

    _check_limit(cache, user_id, "packs", packs_db.count_user_packs(user_id))
    channels = [(_channel(stream.twitch_channel), stream.offset_seconds) for stream in body.streams]
    if channels:
        _check_limit(cache, user_id, "pack_streams", len(channels))

    pack = packs_db.create_pack(
        {
            "owner_id": user_id,
            "title": title,
            "description": body.description,
            "tags": body.tags,
            "visibility": body.visibility.value,
        }
    )
    pack["pack_streams"] = [
        packs_db.add_stream_to_pack(
            {"pack_id": pack["id"], "twitch_channel": channel, "order": order, "offset_seconds": offset}
        )
        for order, (channel, offset) in enumerate(channels)
    ]
    return {"pack": pack}


@router.get("/public")
async def list_public_packs(
    sort: PublicPackSort = PublicPackSort.NEWEST,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tag: str | None = None,
    search: str | None = None,
):
    packs = packs_db.get_public_packs(sort=sort.value, limit=limit, offset=offset, tag=tag, search=search)
    return {"packs": packs}


@router.get("/trending")
async def list_trending_packs(limit: int = Query(10, ge=1, le=50)):
    return {"packs": packs_db.get_trending_packs(limit)}


@router.get("/{pack_id}")
async def get_pack(pack_id: str, current_user: dict[str, Any] | None = Depends(get_optional_user)):
    pack = _load_pack(pack_id)
    # Private packs are invisible to everyone but their owner
    if pack.get("visibility") != "public" and not is_owner(current_user, pack):
        raise NotFoundError("Pack not found")
    return {"pack": pack}


@router.put("/{pack_id}")
async def update_pack(
    pack_id: str,
    body: UpdatePackRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
):
    pack = _load_pack(pack_id)
    ensure_owner(current_user, pack)

    fields = body.model_dump(exclude_unset=True)
    if "title" in fields:
        if fields["title"] is None or not fields["title"].strip():
            raise ValidationError("Title is required")
        fields["title"] = fields["title"].strip()
    if "visibility" in fields:
        if body.visibility is None:
            raise ValidationError("Visibility must be 'public' or 'private'")
        fields["visibility"] = body.visibility.value
    if not fields:
        return {"pack": pack}

    return {"pack": packs_db.update_pack(pack_id, fields)}


@router.delete("/{pack_id}")
async def delete_pack(pack_id: str, current_user: dict[str, Any] = Depends(get_current_user)):
    pack = _load_pack(pack_id)
    ensure_owner(current_user, pack)
    packs_db.delete_pack(pack_id)
    return {"success": True}


@router.get("/{pack_id}/visibility")
async def get_pack_visibility(pack_id: str, current_user: dict[str, Any] | None = Depends(get_optional_user)):
    pack = _load_pack(pack_id)
    if pack.get("visibility") != "public" and not is_owner(current_user, pack):
        raise NotFoundError("Pack not found")
    return {"visibility": pack.get("visibility", "private")}


@router.patch("/{pack_id}/visibility")
async def update_pack_visibility(
    pack_id: str,
    body: UpdateVisibilityRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
):
    pack = _load_pack(pack_id)
    ensure_owner(current_user, pack)
    return {"pack": packs_db.update_pack(pack_id, {"visibility": body.visibility.value})}


@router.post("/{pack_id}/streams", status_code=201)
async def add_stream(
    pack_id: str,
    body: AddStreamRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    cache: PremiumStatusCache = Depends(get_premium_cache),
):
    pack = _load_pack(pack_id)
    ensure_owner(current_user, pack)

    current_count = len(pack.get("pack_streams") or [])
    _check_limit(cache, current_user["id"], "pack_streams", current_count + 1)

    stream = packs_db.add_stream_to_pack(
        {
            "pack_id": pack_id,
            "twitch_channel": _channel(body.channel),
            "order": body.order if body.order is not None else current_count,
            "offset_seconds": body.offset_seconds,
        }
    )
    return {"stream": stream}


@router.delete("/{pack_id}/streams/{stream_id}")
async def remove_stream(
    pack_id: str,
    stream_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
):
    pack = _load_pack(pack_id)
    ensure_owner(current_user, pack)

    stream = packs_db.get_pack_stream(stream_id)
    if not stream or str(stream.get("pack_id")) != str(pack_id):
        raise NotFoundError("Stream not found")

    packs_db.remove_stream_from_pack(stream_id)
    return {"success": True}
