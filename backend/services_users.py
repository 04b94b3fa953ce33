"""
User profile management for admins.

Profiles live in `user_profiles`; login emails live with the identity provider
and are joined in memory through the `get_user_emails` stored procedure.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Request

from audit_log import log_user_management_action
from config import USERS_PER_PAGE
from db_postgres import execute_query, execute_update
from models_users import NO_EMAIL, UserProfile, UserStats

logger = logging.getLogger("lesson_admin")

SORTABLE_COLUMNS = ("created_at", "full_name", "role", "last_login_at")
REQUIRED_FIELDS = ("role", "is_active")
PROFILE_FIELDS = (
    "full_name",
    "school_name",
    "school_borough",
    "grades_taught",
    "subjects_taught",
    "notes",
)
DELETED_MARKER = " [DELETED]"


class UserNotFoundError(LookupError):
    pass


class SelfModificationError(ValueError):
    """An admin tried to deactivate or delete their own account."""


def fetch_user_emails(user_ids: List[str]) -> Dict[str, str]:
    if not user_ids:
        return {}
    try:
        rows = execute_query("SELECT * FROM get_user_emails(%s::uuid[])", (list(user_ids),)) or []
    except Exception as e:
        logger.warning(f"Could not fetch user emails: {e}")
        return {}
    return {str(row["id"]): row["email"] for row in rows if row.get("email")}


def user_from_row(row: Dict[str, Any], email: Optional[str] = None) -> UserProfile:
    return UserProfile(
        id=str(row["id"]),
        email=email or row.get("email") or NO_EMAIL,
        full_name=row.get("full_name"),
        role=row.get("role") or "teacher",
        is_active=row.get("is_active", True),
        school_name=row.get("school_name"),
        school_borough=row.get("school_borough"),
        grades_taught=row.get("grades_taught") or [],
        subjects_taught=row.get("subjects_taught") or [],
        notes=row.get("notes"),
        created_at=row.get("created_at"),
        last_login_at=row.get("last_login_at"),
    )


def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    school_borough: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    page_size: int = USERS_PER_PAGE,
) -> Tuple[List[UserProfile], int]:
    """
    One page of users plus the total matching count.

    Sorting by email happens after the email join, within the page.
    """
    where: List[str] = []
    params: List[Any] = []
    if search:
        where.append("(full_name ILIKE %s OR school_name ILIKE %s OR email ILIKE %s)")
        pattern = f"%{search}%"
        params.extend([pattern, pattern, pattern])
    if role:
        where.append("role = %s")
        params.append(role)
    if is_active is not None:
        where.append("is_active = %s")
        params.append(is_active)
    if school_borough:
        where.append("school_borough = %s")
        params.append(school_borough)

    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    direction = "ASC" if sort_order == "asc" else "DESC"
    order_column = sort_by if sort_by in SORTABLE_COLUMNS else "created_at"

    count_rows = execute_query(f"SELECT COUNT(*) AS total FROM user_profiles {where_sql}", tuple(params)) or []
    total = int(count_rows[0]["total"]) if count_rows else 0

    rows = execute_query(
        f"""
        SELECT * FROM user_profiles
        {where_sql}
        ORDER BY {order_column} {direction} NULLS LAST
        LIMIT %s OFFSET %s
        """,
        tuple(params) + (page_size, (page - 1) * page_size),
    ) or []

    emails = fetch_user_emails([str(row["id"]) for row in rows])
    users = [user_from_row(row, emails.get(str(row["id"]))) for row in rows]

    if sort_by == "email":
        users.sort(key=lambda u: u.email.lower(), reverse=(sort_order != "asc"))
    return users, total


def _get_profile_row(user_id: str) -> Dict[str, Any]:
    rows = execute_query("SELECT * FROM user_profiles WHERE id = %s", (user_id,))
    if not rows:
        raise UserNotFoundError(f"User not found: {user_id}")
    return rows[0]


def get_user(user_id: str) -> UserProfile:
    row = _get_profile_row(user_id)
    return user_from_row(row, fetch_user_emails([user_id]).get(user_id))


def get_user_activity(user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    return execute_query(
        """
        SELECT * FROM user_management_audit
        WHERE target_user_id = %s
        ORDER BY created_at DESC
        LIMIT %s
        """,
        (user_id, limit),
    ) or []


def get_user_submission_stats(user_id: str) -> UserStats:
    rows = execute_query(
        "SELECT status FROM lesson_submissions WHERE teacher_id = %s",
        (user_id,),
    ) or []
    return UserStats(
        total_submissions=len(rows),
        approved_submissions=sum(1 for r in rows if r["status"] == "approved"),
        pending_submissions=sum(1 for r in rows if r["status"] in ("submitted", "in_review")),
    )


def update_user(
    actor_id: str,
    user_id: str,
    updates: Dict[str, Any],
    request: Optional[Request] = None,
) -> UserProfile:
    """
    Apply a partial update and record one audit entry per kind of change:
    role, active flag, and everything else as a profile update.
    """
    # role and is_active are NOT NULL; an explicit null leaves them unchanged
    updates = {k: v for k, v in updates.items() if not (k in REQUIRED_FIELDS and v is None)}
    current = _get_profile_row(user_id)
    if updates.get("is_active") is False and user_id == actor_id:
        raise SelfModificationError("You cannot deactivate your own account")

    changed = {k: v for k, v in updates.items() if current.get(k) != v}
    if not changed:
        return get_user(user_id)

    assignments = ", ".join(f"{field} = %s" for field in changed)
    execute_update(
        f"UPDATE user_profiles SET {assignments}, updated_at = NOW() WHERE id = %s",
        tuple(changed.values()) + (user_id,),
    )

    target_email = current.get("email")
    if "role" in changed:
        log_user_management_action(
            actor_id,
            "user_role_changed",
            target_user_id=user_id,
            target_email=target_email,
            old_values={"role": current.get("role")},
            new_values={"role": changed["role"]},
            request=request,
        )
    if "is_active" in changed:
        log_user_management_action(
            actor_id,
            "user_activated" if changed["is_active"] else "user_deactivated",
            target_user_id=user_id,
            target_email=target_email,
            old_values={"is_active": current.get("is_active")},
            new_values={"is_active": changed["is_active"]},
            request=request,
        )
    profile_changes = {k: v for k, v in changed.items() if k in PROFILE_FIELDS}
    if profile_changes:
        log_user_management_action(
            actor_id,
            "user_profile_updated",
            target_user_id=user_id,
            target_email=target_email,
            old_values={k: current.get(k) for k in profile_changes},
            new_values=profile_changes,
            request=request,
        )

    logger.info(f"User {user_id} updated by {actor_id}: {sorted(changed)}")
    return get_user(user_id)


def bulk_update_users(
    actor_id: str,
    action: str,
    user_ids: List[str],
    request: Optional[Request] = None,
) -> int:
    """
    Activate, deactivate or soft-delete several users in one statement.

    Delete keeps the row: the user is deactivated and their notes are marked.
    """
    user_ids = list(dict.fromkeys(user_ids))
    if action in ("deactivate", "delete") and actor_id in user_ids:
        raise SelfModificationError(f"You cannot {action} your own account")

    if action == "activate":
        query = "UPDATE user_profiles SET is_active = TRUE, updated_at = NOW() WHERE id = ANY(%s::uuid[])"
        params: Tuple = (user_ids,)
        audit_action = "user_activated"
    elif action == "deactivate":
        query = "UPDATE user_profiles SET is_active = FALSE, updated_at = NOW() WHERE id = ANY(%s::uuid[])"
        params = (user_ids,)
        audit_action = "user_deactivated"
    elif action == "delete":
        query = (
            "UPDATE user_profiles SET is_active = FALSE, notes = COALESCE(notes, '') || %s, "
            "updated_at = NOW() WHERE id = ANY(%s::uuid[])"
        )
        params = (DELETED_MARKER, user_ids)
        audit_action = "user_deleted"
    else:
        raise ValueError(f"Invalid bulk action: {action}")

    execute_update(query, params)
    log_user_management_action(
        actor_id,
        audit_action,
        metadata={"bulk": True, "action": action, "user_ids": user_ids, "count": len(user_ids)},
        request=request,
    )
    logger.info(f"Bulk {action} of {len(user_ids)} users by {actor_id}")
    return len(user_ids)
