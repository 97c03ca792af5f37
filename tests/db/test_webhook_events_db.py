"""Tests for the webhook event ledger."""

from datetime import UTC, datetime, timedelta

from t333watch.db import webhook_events


def test_event_not_processed_until_recorded(fake_db):
    assert webhook_events.is_event_processed("evt_1") is False

    assert webhook_events.record_processed_event("evt_1", "checkout.session.completed", user_id="u1")

    assert webhook_events.is_event_processed("evt_1") is True
    stored = webhook_events.get_processed_event("evt_1")
    assert stored["event_type"] == "checkout.session.completed"
    assert stored["user_id"] == "u1"
    assert stored["metadata"] == {}


def test_lookup_fails_open_when_table_unavailable(fake_db):
    fake_db.failing_tables.add(webhook_events.TABLE)

    assert webhook_events.is_event_processed("evt_2") is False
    assert webhook_events.get_processed_event("evt_2") is None


def test_record_never_raises(fake_db):
    fake_db.failing_tables.add(webhook_events.TABLE)

    assert webhook_events.record_processed_event("evt_3", "invoice.payment_failed") is False


def test_cleanup_old_events(fake_db):
    old = (datetime.now(UTC) - timedelta(days=120)).isoformat()
    fake_db.rows(webhook_events.TABLE).append(
        {"event_id": "evt_old", "event_type": "invoice.payment_succeeded", "processed_at": old}
    )
    webhook_events.record_processed_event("evt_new", "invoice.payment_succeeded")

    assert webhook_events.cleanup_old_events(days=90) == 1
    assert webhook_events.is_event_processed("evt_old") is False
    assert webhook_events.is_event_processed("evt_new") is True


def test_missing_table_hint_logged_once(fake_db, monkeypatch, caplog):
    monkeypatch.setattr(webhook_events, "_schema_hint_logged", False)
    fake_db.failing_tables.add(webhook_events.TABLE)

    webhook_events.is_event_processed("evt_4")
    webhook_events.record_processed_event("evt_4", "invoice.payment_failed")

    hints = [r for r in caplog.records if r.levelname == "WARNING" and "is missing" in r.getMessage()]
    assert len(hints) == 1
