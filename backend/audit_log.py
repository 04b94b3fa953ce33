"""
Audit logging for user management.

Every invitation and user change is recorded twice:
- a row in `user_management_audit` (read back by the analytics pages)
- a one-line `AUDIT:` log record
"""
import logging
from typing import Optional, Dict, Any

from fastapi import Request

logger = logging.getLogger("lesson_admin")

AUDIT_ACTIONS = frozenset({
    "invite_sent",
    "invite_accepted",
    "invite_cancelled",
    "invite_resent",
    "user_role_changed",
    "user_activated",
    "user_deactivated",
    "user_deleted",
    "user_profile_updated",
    "permissions_changed",
})


def log_user_management_action(
    actor_id: str,
    action: str,
    target_user_id: Optional[str] = None,
    target_email: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> None:
    """
    Record a user-management audit event.

    Args:
        actor_id: User who performed the action
        action: One of AUDIT_ACTIONS
        target_user_id: Affected user, if any
        target_email: Affected email (invitations have no user yet)
        old_values / new_values: Changed fields before and after
        metadata: Extra context (e.g. {"bulk": True, "count": 3})
        request: Used for client ip / user agent when available

    Raises:
        ValueError for an action outside AUDIT_ACTIONS. Storage failures
        are logged and never raised.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    client_ip = getattr(request.state, "client_ip", None) if request is not None else None
    user_agent = request.headers.get("user-agent") if request is not None else None

    logger.info(
        f"AUDIT: {action} | actor={actor_id} | target={target_user_id or target_email} | "
        f"request={getattr(request.state, 'request_id', None) if request is not None else None}"
    )

    try:
        from db_postgres import execute_update

        execute_update(
            """
            INSERT INTO user_management_audit
                (actor_id, action, target_user_id, target_email, old_values, new_values, metadata, ip_address, user_agent)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                actor_id,
                action,
                target_user_id,
                target_email,
                old_values,
                new_values,
                metadata or {},
                client_ip if client_ip and client_ip != "unknown" else None,
                user_agent,
            ),
        )
    except Exception as e:
        # Never fail the request due to audit logging
        logger.warning(f"Failed to write audit event {action}: {e}")
