"""
Process-wide Supabase client.

The client is created on first use. A failed initialization is remembered
for ``ERROR_CACHE_TTL`` seconds so a misconfigured deployment answers quickly
instead of retrying the connection on every request.
"""

import logging
import time

import httpx
from supabase import Client, create_client
from supabase.client import ClientOptions

from t333watch.config.config import Config
from t333watch.utils.sentry_context import capture_error

logger = logging.getLogger(__name__)

ERROR_CACHE_TTL = 60.0

# Lowercased fragments of h2/httpcore messages raised after the server drops a connection
HTTP2_ERROR_MARKERS = (
    "streaminputs.send_headers",
    "streaminputs.recv_data",
    "connectioninputs.recv_data",
    "connectionstate.closed",
    "stream closed",
    "connection reset by peer",
    "goaway",
    "h2_error",
    "http2 error",
)

_supabase_client: Client | None = None
_init_error: Exception | None = None
_init_error_at: float = 0.0


def _raise_if_recently_failed() -> None:
    global _init_error, _init_error_at

    if _init_error is None:
        return

    age = time.time() - _init_error_at
    if age >= ERROR_CACHE_TTL:
        logger.info("Retrying Supabase initialization after cached failure")
        _init_error, _init_error_at = None, 0.0
        return

    wait = int(ERROR_CACHE_TTL - age)
    raise RuntimeError(f"Database unavailable, next attempt in {wait}s: {_init_error}") from _init_error


def _postgrest_session(rest_url: str) -> httpx.Client:
    # PostgREST builds relative paths, so the session needs base_url and auth headers
    return httpx.Client(
        base_url=rest_url,
        headers={"apikey": Config.SUPABASE_KEY, "Authorization": f"Bearer {Config.SUPABASE_KEY}"},
        timeout=httpx.Timeout(30.0, connect=10.0),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20, keepalive_expiry=60.0),
        http2=True,
    )


def _create_client() -> Client:
    Config.validate()
    if not Config.SUPABASE_URL.startswith(("http://", "https://")):
        raise RuntimeError("SUPABASE_URL must be an http(s) URL")

    logger.info(f"Connecting to Supabase at {Config.SUPABASE_URL[:30]}")
    client = create_client(
        supabase_url=Config.SUPABASE_URL,
        supabase_key=Config.SUPABASE_KEY,
        options=ClientOptions(
            postgrest_client_timeout=30,
            schema="public",
            headers={"X-Client-Info": "t333watch-api/1.0"},
        ),
    )

    postgrest = getattr(client, "postgrest", None)
    if postgrest is not None and hasattr(postgrest, "session"):
        postgrest.session = _postgrest_session(f"{Config.SUPABASE_URL}/rest/v1")
    return client


def get_supabase_client() -> Client:
    global _supabase_client, _init_error, _init_error_at

    if _supabase_client is not None:
        return _supabase_client

    _raise_if_recently_failed()

    try:
        _supabase_client = _create_client()
    except Exception as e:
        _init_error, _init_error_at = e, time.time()
        logger.error(f"Supabase client initialization failed: {type(e).__name__}: {e}", exc_info=True)
        capture_error(
            e,
            context_type="supabase_config",
            context_data={
                "supabase_url_set": bool(Config.SUPABASE_URL),
                "supabase_key_set": bool(Config.SUPABASE_KEY),
            },
            tags={"component": "supabase_client"},
        )
        raise RuntimeError(f"Supabase client initialization failed: {e}") from e

    return _supabase_client


def get_initialization_status() -> dict:
    """Client state for the health endpoint."""
    return {
        "initialized": _supabase_client is not None,
        "has_error": _init_error is not None,
        "error_message": str(_init_error) if _init_error else None,
        "error_type": type(_init_error).__name__ if _init_error else None,
    }


def reset_supabase_client() -> bool:
    """
    Drop the cached client so the next call opens a new connection pool.

    Returns False when there was nothing to reset.
    """
    global _supabase_client, _init_error, _init_error_at

    if _supabase_client is None:
        return False

    session = getattr(getattr(_supabase_client, "postgrest", None), "session", None)
    try:
        if session is not None:
            session.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing PostgREST session: {e}")

    _supabase_client = None
    _init_error, _init_error_at = None, 0.0
    logger.info("Supabase client discarded after connection failure")
    return True


def is_http2_protocol_error(error: Exception) -> bool:
    """True for errors that leave the pooled HTTP/2 connection unusable."""
    if "protocolerror" in type(error).__name__.lower():
        return True

    message = str(error).lower()
    if any(marker in message for marker in HTTP2_ERROR_MARKERS):
        return True
    return "connection closed" in message and ("http2" in message or "h2" in message)


def execute_with_retry(operation, max_retries: int = 2, operation_name: str = "database operation"):
    """
    Run ``operation(client)`` against the shared Supabase client.

    A broken HTTP/2 connection is discarded and the operation retried up to
    ``max_retries`` times. Any other error propagates on the first attempt.

    Example:
        def _insert(client):
            return client.table("packs").insert(row).execute()

        execute_with_retry(_insert, operation_name="create_pack")
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return operation(get_supabase_client())
        except Exception as e:
            if not is_http2_protocol_error(e) or attempt == attempts:
                if attempt > 1:
                    logger.error(f"{operation_name} still failing after {attempt} attempts: {e}")
                raise
            logger.warning(f"{operation_name}: connection dropped on attempt {attempt}/{attempts} ({e}), reconnecting")
            reset_supabase_client()
            time.sleep(0.1)
