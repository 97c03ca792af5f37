"""
Request ID Middleware

Generates or propagates a request ID for every API request. The ID is
attached to ``request.state``, echoed in the ``X-Request-ID`` response
header and published through a context variable so log records emitted
while handling the request carry it.

Usage:
    from t333watch.middleware.request_id_middleware import RequestIDMiddleware

    app.add_middleware(RequestIDMiddleware)
"""

import contextvars
import logging
import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Maximum length for client-supplied request IDs
_MAX_REQUEST_ID_LENGTH = 128

# Control characters enable log injection
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_VALID_REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9._-]{1,128}$")

_current_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "t333watch_request_id", default=None
)


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def current_request_id() -> str | None:
    """Request ID of the request being handled in this context, if any."""
    return _current_request_id.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to generate and attach request IDs to all requests.

    The middleware:
    1. Checks for an existing X-Request-ID header
    2. Validates it, or generates a new ID
    3. Attaches it to request.state.request_id and the logging context
    4. Adds X-Request-ID to the response headers
    """

    async def dispatch(self, request: Request, call_next):
        raw_request_id = request.headers.get("X-Request-ID") or ""

        if raw_request_id:
            sanitized = _CONTROL_CHARS_RE.sub("", raw_request_id)[:_MAX_REQUEST_ID_LENGTH]
            if _VALID_REQUEST_ID_RE.match(sanitized):
                request_id = sanitized
            else:
                logger.debug(
                    "Client-supplied request ID failed validation and was replaced with a generated one"
                )
                request_id = _new_request_id()
        else:
            request_id = _new_request_id()

        if not request_id.startswith("req_"):
            request_id = f"req_{request_id}"

        request.state.request_id = request_id
        token = _current_request_id.set(request_id)

        logger.debug(f"Request ID: {request_id} | {request.method} {request.url.path}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request ID: {request_id} | Error during request processing: {e}",
                exc_info=True,
            )
            raise
        finally:
            _current_request_id.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """
    Get the request ID from the request state.

    Args:
        request: FastAPI Request object

    Returns:
        Request ID string, or a freshly generated one if the middleware did not run
    """
    return getattr(request.state, "request_id", _new_request_id())
