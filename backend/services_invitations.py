"""
User invitations: create, list, resend, cancel and accept.

An invitation is pending until accepted or until `expires_at` passes. Emails
are not sent from here; callers schedule them once the write has committed.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Request
from passlib.context import CryptContext

from audit_log import log_user_management_action
from config import INVITATION_EXPIRY_DAYS, MIN_PASSWORD_LENGTH
from db_postgres import execute_query, execute_update, transaction
from models_users import AcceptInvitationRequest, Invitation, InvitationCreateRequest

logger = logging.getLogger("lesson_admin")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class InvitationNotFoundError(LookupError):
    pass


class InvitationConflictError(ValueError):
    """A user or a pending invitation already exists for this email."""


class InvitationStateError(ValueError):
    """The invitation can no longer be used (accepted or expired)."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def invitation_status(row: Dict[str, Any], now: Optional[datetime] = None) -> str:
    now = now or _now()
    if row.get("accepted_at"):
        return "accepted"
    if row["expires_at"] <= now:
        return "expired"
    return "pending"


def invitation_from_row(row: Dict[str, Any], now: Optional[datetime] = None) -> Invitation:
    return Invitation(
        id=str(row["id"]),
        email=row["email"],
        role=row["role"],
        invited_by=str(row["invited_by"]) if row.get("invited_by") else None,
        invited_at=row["invited_at"],
        expires_at=row["expires_at"],
        accepted_at=row.get("accepted_at"),
        school_name=row.get("school_name"),
        school_borough=row.get("school_borough"),
        message=row.get("message"),
        status=invitation_status(row, now),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def create_invitation(
    actor_id: str,
    payload: InvitationCreateRequest,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    """Insert a pending invitation. Returns the stored row (including the token)."""
    email = payload.email.lower()

    if execute_query("SELECT id FROM user_profiles WHERE lower(email) = %s LIMIT 1", (email,)):
        raise InvitationConflictError("User already exists")
    pending = execute_query(
        "SELECT id FROM user_invitations WHERE lower(email) = %s AND accepted_at IS NULL AND expires_at > NOW() LIMIT 1",
        (email,),
    )
    if pending:
        raise InvitationConflictError("An invitation has already been sent to this email")

    rows = execute_query(
        """
        INSERT INTO user_invitations
            (email, role, invited_by, expires_at, token, school_name, school_borough, message, metadata)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            email,
            payload.role,
            actor_id,
            _now() + timedelta(days=INVITATION_EXPIRY_DAYS),
            secrets.token_urlsafe(32),
            payload.school_name or None,
            payload.school_borough or None,
            payload.message or None,
            {
                "grades_taught": payload.grades_taught,
                "subjects_taught": payload.subjects_taught,
                "invited_by_id": actor_id,
            },
        ),
        commit=True,
    )
    invitation = rows[0]

    log_user_management_action(
        actor_id,
        "invite_sent",
        target_email=email,
        new_values={
            "role": payload.role,
            "school_name": payload.school_name,
            "school_borough": payload.school_borough,
        },
        request=request,
    )
    logger.info(f"Invitation created for {email} as {payload.role} by {actor_id}")
    return invitation


def list_invitations(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Invitation], int]:
    where: List[str] = []
    params: List[Any] = []
    if search:
        pattern = f"%{_escape_like(search)}%"
        where.append("(email ILIKE %s OR school_name ILIKE %s)")
        params.extend([pattern, pattern])
    if status == "pending":
        where.append("accepted_at IS NULL AND expires_at > NOW()")
    elif status == "accepted":
        where.append("accepted_at IS NOT NULL")
    elif status == "expired":
        where.append("accepted_at IS NULL AND expires_at <= NOW()")

    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    count_rows = execute_query(f"SELECT COUNT(*) AS total FROM user_invitations {where_sql}", tuple(params)) or []
    total = int(count_rows[0]["total"]) if count_rows else 0

    rows = execute_query(
        f"""
        SELECT * FROM user_invitations
        {where_sql}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        tuple(params) + (page_size, (page - 1) * page_size),
    ) or []
    now = _now()
    return [invitation_from_row(row, now) for row in rows], total


def get_invitation_row(invitation_id: str) -> Dict[str, Any]:
    rows = execute_query("SELECT * FROM user_invitations WHERE id = %s", (invitation_id,))
    if not rows:
        raise InvitationNotFoundError("Invitation not found")
    return rows[0]


def resend_invitation(actor_id: str, invitation_id: str, request: Optional[Request] = None) -> Dict[str, Any]:
    """Push the expiry out again. Returns the updated row for the email."""
    invitation = get_invitation_row(invitation_id)
    if invitation.get("accepted_at"):
        raise InvitationStateError("Invitation already accepted")

    rows = execute_query(
        "UPDATE user_invitations SET expires_at = %s WHERE id = %s RETURNING *",
        (_now() + timedelta(days=INVITATION_EXPIRY_DAYS), invitation_id),
        commit=True,
    )
    log_user_management_action(actor_id, "invite_resent", target_email=invitation["email"], request=request)
    return rows[0]


def cancel_invitation(actor_id: str, invitation_id: str, request: Optional[Request] = None) -> None:
    invitation = get_invitation_row(invitation_id)
    if invitation.get("accepted_at"):
        raise InvitationStateError("Invitation already accepted")

    execute_update("DELETE FROM user_invitations WHERE id = %s", (invitation_id,))
    log_user_management_action(actor_id, "invite_cancelled", target_email=invitation["email"], request=request)


def get_invitation_by_token(token: str) -> Dict[str, Any]:
    """Look up a usable invitation by token."""
    rows = execute_query("SELECT * FROM user_invitations WHERE token = %s", (token,))
    if not rows:
        raise InvitationNotFoundError("Invalid invitation link")
    invitation = rows[0]
    status = invitation_status(invitation)
    if status == "accepted":
        raise InvitationStateError("This invitation has already been accepted")
    if status == "expired":
        raise InvitationStateError("This invitation has expired")
    return invitation


def accept_invitation(payload: AcceptInvitationRequest, request: Optional[Request] = None) -> Dict[str, Any]:
    """
    Create the invited user's profile and mark the invitation accepted.

    Returns the invitation row with `user_id` set to the new profile id.
    """
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not payload.full_name.strip():
        raise ValueError("Full name is required")

    invitation = get_invitation_by_token(payload.token)
    if execute_query("SELECT id FROM user_profiles WHERE lower(email) = %s LIMIT 1", (invitation["email"].lower(),)):
        raise InvitationConflictError("Email already registered")

    user_id = str(uuid.uuid4())
    accepted_at = _now()
    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO user_profiles
                (id, user_id, email, full_name, role, school_name, school_borough, grades_taught,
                 subjects_taught, password_hash, invited_by, invited_at, accepted_at, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, TRUE)
            """,
            (
                user_id,
                user_id,
                invitation["email"],
                payload.full_name.strip(),
                invitation["role"],
                invitation.get("school_name"),
                invitation.get("school_borough"),
                payload.grades_taught or None,
                payload.subjects_taught or None,
                pwd_context.hash(payload.password),
                invitation.get("invited_by"),
                invitation["invited_at"],
                accepted_at,
            ),
        )
        cur.execute(
            "UPDATE user_invitations SET accepted_at = %s WHERE id = %s",
            (accepted_at, invitation["id"]),
        )

    log_user_management_action(
        user_id,
        "invite_accepted",
        target_user_id=user_id,
        target_email=invitation["email"],
        request=request,
    )
    logger.info(f"Invitation {invitation['id']} accepted by new user {user_id}")
    return {**invitation, "accepted_at": accepted_at, "user_id": user_id, "full_name": payload.full_name.strip()}
