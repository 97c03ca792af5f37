"""
Pack and pack stream storage.

A pack is an owner's saved set of Twitch channels. Streams are stored in
``pack_streams`` and are returned nested under their pack.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from t333watch.config.supabase_config import execute_with_retry
from t333watch.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

PACKS_TABLE = "packs"
STREAMS_TABLE = "pack_streams"
PACK_WITH_STREAMS = f"*, {STREAMS_TABLE}(*)"

PUBLIC_SORTS = {
    "newest": ("created_at", True),
    "oldest": ("created_at", False),
    "alphabetical": ("title", False),
    # No view counters yet; recently edited packs stand in for popular ones
    "popular": ("updated_at", True),
}


def _now() -> datetime:
    return datetime.now(UTC)


def _sort_streams(pack: dict[str, Any]) -> dict[str, Any]:
    streams = pack.get(STREAMS_TABLE)
    if isinstance(streams, list):
        pack[STREAMS_TABLE] = sorted(streams, key=lambda s: s.get("order", 0))
    return pack


def get_pack(pack_id: str) -> dict[str, Any] | None:
    def _get(client):
        return client.table(PACKS_TABLE).select(PACK_WITH_STREAMS).eq("id", pack_id).limit(1).execute()

    result = execute_with_retry(_get, operation_name="get_pack")
    return _sort_streams(result.data[0]) if result.data else None


def get_user_packs(owner_id: str) -> list[dict[str, Any]]:
    def _list(client):
        return (
            client.table(PACKS_TABLE)
            .select(PACK_WITH_STREAMS)
            .eq("owner_id", owner_id)
            .order("created_at", desc=True)
            .execute()
        )

    result = execute_with_retry(_list, operation_name="get_user_packs")
    return [_sort_streams(p) for p in result.data or []]


def count_user_packs(owner_id: str) -> int:
    def _count(client):
        return client.table(PACKS_TABLE).select("id", count="exact").eq("owner_id", owner_id).execute()

    result = execute_with_retry(_count, operation_name="count_user_packs")
    return result.count if result.count is not None else len(result.data or [])


def find_recent_pack_by_title(
    owner_id: str, title: str, within_seconds: int = 60
) -> dict[str, Any] | None:
    """Return the owner's newest pack with this title created inside the window."""
    cutoff = (_now() - timedelta(seconds=within_seconds)).isoformat()

    def _find(client):
        return (
            client.table(PACKS_TABLE)
            .select(PACK_WITH_STREAMS)
            .eq("owner_id", owner_id)
            .eq("title", title)
            .gte("created_at", cutoff)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

    result = execute_with_retry(_find, operation_name="find_recent_pack_by_title")
    return _sort_streams(result.data[0]) if result.data else None


def create_pack(data: dict[str, Any]) -> dict[str, Any]:
    now = _now().isoformat()
    row = {"visibility": "private", "tags": [], **data, "created_at": now, "updated_at": now}

    def _insert(client):
        return client.table(PACKS_TABLE).insert(row).execute()

    result = execute_with_retry(_insert, operation_name="create_pack")
    if not result.data:
        raise RuntimeError("Failed to create pack")

    pack = result.data[0]
    pack.setdefault(STREAMS_TABLE, [])
    logger.info(f"Created pack {pack.get('id')} for owner {pack.get('owner_id')}")
    return pack


def update_pack(pack_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    payload = {**fields, "updated_at": _now().isoformat()}

    def _update(client):
        return client.table(PACKS_TABLE).update(payload).eq("id", pack_id).execute()

    result = execute_with_retry(_update, operation_name="update_pack")
    if not result.data:
        raise NotFoundError("Pack not found")
    return result.data[0]


def delete_pack(pack_id: str) -> None:
    def _delete_streams(client):
        return client.table(STREAMS_TABLE).delete().eq("pack_id", pack_id).execute()

    def _delete_pack(client):
        return client.table(PACKS_TABLE).delete().eq("id", pack_id).execute()

    execute_with_retry(_delete_streams, operation_name="delete_pack_streams")
    execute_with_retry(_delete_pack, operation_name="delete_pack")
    logger.info(f"Deleted pack {pack_id}")


def get_public_packs(
    sort: str = "newest",
    limit: int = 20,
    offset: int = 0,
    tag: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    """
    List public packs.

    Args:
        sort: One of ``newest``, ``oldest``, ``alphabetical``, ``popular``
        limit: Page size
        offset: Number of packs to skip
        tag: Only packs carrying this tag
        search: Case-insensitive substring of the title
    """
    column, desc = PUBLIC_SORTS.get(sort, PUBLIC_SORTS["newest"])

    def _list(client):
        query = client.table(PACKS_TABLE).select(PACK_WITH_STREAMS).eq("visibility", "public")
        if tag:
            query = query.contains("tags", [tag])
        if search:
            query = query.ilike("title", f"%{search}%")
        return query.order(column, desc=desc).range(offset, offset + limit - 1).execute()

    result = execute_with_retry(_list, operation_name="get_public_packs")
    return [_sort_streams(p) for p in result.data or []]


def get_trending_packs(limit: int = 10) -> list[dict[str, Any]]:
    def _list(client):
        return (
            client.table(PACKS_TABLE)
            .select(PACK_WITH_STREAMS)
            .eq("visibility", "public")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )

    result = execute_with_retry(_list, operation_name="get_trending_packs")
    return [_sort_streams(p) for p in result.data or []]


def add_stream_to_pack(data: dict[str, Any]) -> dict[str, Any]:
    row = {"offset_seconds": 0, **data}

    def _insert(client):
        return client.table(STREAMS_TABLE).insert(row).execute()

    result = execute_with_retry(_insert, operation_name="add_stream_to_pack")
    if not result.data:
        raise RuntimeError("Failed to add stream to pack")
    return result.data[0]


def get_pack_stream(stream_id: str) -> dict[str, Any] | None:
    def _get(client):
        return client.table(STREAMS_TABLE).select("*").eq("id", stream_id).limit(1).execute()

    result = execute_with_retry(_get, operation_name="get_pack_stream")
    return result.data[0] if result.data else None


def remove_stream_from_pack(stream_id: str) -> None:
    def _delete(client):
        return client.table(STREAMS_TABLE).delete().eq("id", stream_id).execute()

    execute_with_retry(_delete, operation_name="remove_stream_from_pack")
