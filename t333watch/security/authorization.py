"""
Authorization checks.

Ownership is a single capability check shared by every pack and stream
mutation, so the rule lives in one place instead of being re-derived per
route.
"""

import logging
from typing import Any

from t333watch.utils.exceptions import AuthorizationError

logger = logging.getLogger(__name__)


def is_owner(actor: dict[str, Any] | None, resource: dict[str, Any], owner_field: str = "owner_id") -> bool:
    if not actor or not actor.get("id"):
        return False
    owner_id = resource.get(owner_field)
    return owner_id is not None and str(owner_id) == str(actor["id"])


def ensure_owner(actor: dict[str, Any] | None, resource: dict[str, Any], owner_field: str = "owner_id") -> None:
    """
    Require ``actor`` to own ``resource``.

    Raises:
        AuthorizationError: When the actor is anonymous or another user owns the resource
    """
    if not is_owner(actor, resource, owner_field):
        logger.info(
            f"Ownership check failed for user {actor.get('id') if actor else None} "
            f"on resource {resource.get('id')}"
        )
        raise AuthorizationError("You do not have permission to modify this resource")


def ensure_admin(actor: dict[str, Any] | None) -> None:
    if not actor or not actor.get("admin_flag"):
        raise AuthorizationError("Admin access required")
