"""
API endpoints for user invitations.

Admin routes live under /admin/invitations; accepting an invitation is public
and authenticated by the invitation token itself.
"""
import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request

from auth import get_permissions_for_role, require_roles
from config import USER_ADMIN_ROLES
from models_users import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    Invitation,
    InvitationCreateRequest,
    InvitationListResponse,
)
from pagination import PaginationParams
from services_email import send_invitation_email, send_welcome_email
from services_invitations import (
    InvitationConflictError,
    InvitationNotFoundError,
    InvitationStateError,
    accept_invitation,
    cancel_invitation,
    create_invitation,
    get_invitation_by_token,
    invitation_from_row,
    list_invitations,
    resend_invitation,
)

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/admin/invitations", tags=["invitations"])
public_router = APIRouter(prefix="/invitations", tags=["invitations"])

require_user_admin = require_roles(*USER_ADMIN_ROLES)


@router.post("", response_model=Invitation)
def create_invitation_endpoint(
    payload: InvitationCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    """Invite a new user. The email goes out in the background."""
    try:
        row = create_invitation(auth["user_id"], payload, request=request)
    except InvitationConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(
        send_invitation_email,
        row,
        auth.get("email") or auth["user_id"],
        get_permissions_for_role(row["role"]),
    )
    return invitation_from_row(row)


@router.get("", response_model=InvitationListResponse)
def list_invitations_endpoint(
    status: Literal["pending", "accepted", "expired", "all"] = Query("all"),
    search: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(PaginationParams.from_query),
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    invitations, total = list_invitations(
        status=None if status == "all" else status,
        search=search,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return InvitationListResponse(invitations=invitations, total=total)


@router.post("/{invitation_id}/resend", response_model=Invitation)
def resend_invitation_endpoint(
    invitation_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    try:
        row = resend_invitation(auth["user_id"], invitation_id, request=request)
    except InvitationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvitationStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(
        send_invitation_email,
        row,
        auth.get("email") or auth["user_id"],
        get_permissions_for_role(row["role"]),
    )
    return invitation_from_row(row)


@router.delete("/{invitation_id}")
def cancel_invitation_endpoint(
    invitation_id: str,
    request: Request,
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    try:
        cancel_invitation(auth["user_id"], invitation_id, request=request)
    except InvitationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvitationStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}


@public_router.get("/validate", response_model=Invitation)
def validate_invitation(token: str = Query(..., min_length=1)):
    """Check an invitation link before showing the sign-up form."""
    try:
        return invitation_from_row(get_invitation_by_token(token))
    except InvitationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvitationStateError as e:
        raise HTTPException(status_code=410, detail=str(e))


@public_router.post("/accept", response_model=AcceptInvitationResponse)
def accept_invitation_endpoint(
    payload: AcceptInvitationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
):
    try:
        accepted = accept_invitation(payload, request=request)
    except InvitationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvitationStateError as e:
        raise HTTPException(status_code=410, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(send_welcome_email, accepted["email"], accepted["full_name"], accepted["role"])
    return AcceptInvitationResponse(success=True, user_id=accepted["user_id"], role=accepted["role"])
