"""
Processed Stripe event ledger.

A row is written only after the reconciler has applied an event, keyed by
the Stripe event id. Every function here degrades instead of raising:
lookups answer "not processed" and writes answer False, so a ledger outage
means redeliveries are applied again. That is harmless because the premium
flag writes they trigger are idempotent.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from t333watch.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

TABLE = "stripe_webhook_events"

_schema_hint_logged = False


def _log_failure(action: str, error: Exception) -> None:
    global _schema_hint_logged

    logger.error(f"Webhook ledger could not {action}: {error}", exc_info=True)

    message = str(error)
    # PGRST205: table absent from the PostgREST schema cache
    if not _schema_hint_logged and (TABLE in message or "PGRST205" in message):
        logger.warning(f"Table {TABLE} is missing; Stripe redeliveries will be reprocessed until it is created")
        _schema_hint_logged = True


def is_event_processed(event_id: str) -> bool:
    def _lookup(client):
        return client.table(TABLE).select("event_id").eq("event_id", event_id).limit(1).execute()

    try:
        result = execute_with_retry(_lookup, operation_name="is_event_processed")
    except Exception as e:
        _log_failure(f"look up {event_id}", e)
        return False

    if result.data:
        logger.info(f"Stripe event {event_id} was already applied")
        return True
    return False


def record_processed_event(
    event_id: str,
    event_type: str,
    user_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Mark a Stripe event as applied.

    Args:
        event_id: Stripe event id (``evt_...``)
        event_type: e.g. ``customer.subscription.deleted``
        user_id: Affected user, when the event resolved to one
        metadata: Extra fields kept for support lookups

    Returns:
        Whether the row was written
    """
    row = {
        "event_id": event_id,
        "event_type": event_type,
        "user_id": user_id,
        "metadata": metadata or {},
        "processed_at": datetime.now(UTC).isoformat(),
    }

    def _insert(client):
        return client.table(TABLE).insert(row).execute()

    try:
        result = execute_with_retry(_insert, operation_name="record_processed_event")
    except Exception as e:
        _log_failure(f"record {event_id}", e)
        return False

    if not result.data:
        logger.error(f"Webhook ledger insert for {event_id} returned no row")
        return False

    logger.info(f"Ledgered Stripe event {event_id} ({event_type})")
    return True


def get_processed_event(event_id: str) -> dict[str, Any] | None:
    def _fetch(client):
        return client.table(TABLE).select("*").eq("event_id", event_id).limit(1).execute()

    try:
        result = execute_with_retry(_fetch, operation_name="get_processed_event")
    except Exception as e:
        _log_failure(f"fetch {event_id}", e)
        return None
    return result.data[0] if result.data else None


def cleanup_old_events(days: int = 90) -> int:
    """Delete ledger rows processed more than ``days`` ago; returns how many went."""
    cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()

    def _purge(client):
        return client.table(TABLE).delete().lt("processed_at", cutoff).execute()

    try:
        result = execute_with_retry(_purge, operation_name="cleanup_old_events")
    except Exception as e:
        _log_failure("purge old events", e)
        return 0

    removed = len(result.data or [])
    logger.info(f"Purged {removed} Stripe events older than {days} days")
    return removed
