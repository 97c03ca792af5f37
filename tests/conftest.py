"""
Shared fixtures.

Config reads the environment when ``t333watch.config`` is first imported, so
the variables below are set before anything from the package is imported.
"""

import hashlib
import hmac
import json
import os
import time
import uuid
from datetime import UTC, datetime

os.environ["APP_ENV"] = "testing"
os.environ["SUPABASE_URL"] = "https://test-project.supabase.co"
os.environ["SUPABASE_KEY"] = "test-service-role-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_MONTHLY_PRICE_ID"] = "price_monthly"
os.environ["STRIPE_YEARLY_PRICE_ID"] = "price_yearly"
os.environ["BASE_URL"] = "https://t333.watch"
os.environ["TWITCH_CLIENT_ID"] = "twitch-client-id"
os.environ["TWITCH_CLIENT_SECRET"] = "twitch-client-secret"
os.environ["TWITCH_REDIRECT_URI"] = "https://t333.watch/auth/callback"
os.environ["SENTRY_ENABLED"] = "false"

import pytest  # noqa: E402

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


# ==================== In-memory Supabase ====================


class _Result:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class _Query:
    """Just enough of the postgrest query builder for the db layer."""

    def __init__(self, db, table):
        self.db = db
        self.table_name = table
        self._op = "select"
        self._columns = "*"
        self._count = None
        self._payload = None
        self._filters = []
        self._order = None
        self._limit = None
        self._range = None

    # operations
    def select(self, columns="*", count=None):
        self._op = "select"
        self._columns = columns
        self._count = count
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def delete(self):
        self._op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def gte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def gt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def lte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def lt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def in_(self, column, values):
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def ilike(self, column, pattern):
        needle = pattern.strip("%").lower()
        self._filters.append(lambda row: needle in (row.get(column) or "").lower())
        return self

    def contains(self, column, values):
        self._filters.append(lambda row: all(v in (row.get(column) or []) for v in values))
        return self

    # modifiers
    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def _matches(self, row):
        return all(check(row) for check in self._filters)

    def _embed(self, row):
        out = dict(row)
        if "pack_streams(" in self._columns:
            out["pack_streams"] = [
                dict(stream) for stream in self.db.rows("pack_streams") if stream.get("pack_id") == row.get("id")
            ]
        return out

    def execute(self):
        if self.table_name in self.db.failing_tables:
            raise RuntimeError(f"relation {self.table_name} unavailable")

        rows = self.db.rows(self.table_name)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in payload:
                row = dict(item)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", datetime.now(UTC).isoformat())
                rows.append(row)
                inserted.append(dict(row))
            return _Result(inserted)

        matched = [row for row in rows if self._matches(row)]

        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return _Result([dict(row) for row in matched])

        if self._op == "delete":
            for row in matched:
                rows.remove(row)
            return _Result([dict(row) for row in matched])

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        count = len(matched) if self._count == "exact" else None
        if self._range:
            start, end = self._range
            matched = matched[start : end + 1]
        if self._limit is not None:
            matched = matched[: self._limit]
        return _Result([self._embed(row) for row in matched], count=count)


class _RPC:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        if self.name in self.db.failing_tables:
            raise RuntimeError(f"function {self.name} unavailable")
        return _Result(self.db.rpc_results.get(self.name))


class FakeSupabase:
    def __init__(self):
        self.store: dict[str, list[dict]] = {}
        self.rpc_calls: list[tuple[str, dict]] = []
        self.failing_tables: set[str] = set()
        self.rpc_results: dict[str, list[dict]] = {}

    def rows(self, table):
        return self.store.setdefault(table, [])

    def table(self, name):
        return _Query(self, name)

    def rpc(self, name, params):
        return _RPC(self, name, params)


@pytest.fixture
def fake_db(monkeypatch):
    """In-memory Supabase wired in behind ``execute_with_retry``."""
    db = FakeSupabase()
    monkeypatch.setattr("t333watch.config.supabase_config.get_supabase_client", lambda: db)
    return db


@pytest.fixture(autouse=True)
def _reset_premium_cache():
    from t333watch.services.premium_cache import get_premium_cache

    get_premium_cache().clear()
    yield
    get_premium_cache().clear()


# ==================== Users ====================


@pytest.fixture
def make_user(fake_db):
    """Insert a user row and return it."""

    def _make(**fields):
        row = {
            "id": str(uuid.uuid4()),
            "twitch_id": fields.pop("twitch_id", str(uuid.uuid4().int)[:9]),
            "login": "viewer",
            "display_name": "Viewer",
            "premium_flag": False,
            "admin_flag": False,
            "stripe_customer_id": None,
            "created_at": datetime.now(UTC).isoformat(),
            **fields,
        }
        fake_db.rows("users").append(row)
        return dict(row)

    return _make


# ==================== Stripe webhooks ====================


def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp if timestamp is not None else int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload():
    """Build a ``Stripe-Signature`` header value for a raw payload."""
    return _sign


@pytest.fixture
def stripe_event():
    """Serialize a Stripe event envelope around ``data.object``."""

    def _event(event_type: str, obj: dict, event_id: str | None = None) -> str:
        return json.dumps(
            {
                "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
                "object": "event",
                "type": event_type,
                "created": int(time.time()),
                "livemode": False,
                "data": {"object": obj},
            }
        )

    return _event
