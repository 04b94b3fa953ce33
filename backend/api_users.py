"""
API endpoints for admin user management.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from auth import get_permissions_for_role, require_roles
from config import USER_ADMIN_ROLES, USERS_PER_PAGE
from models_users import (
    Borough,
    BulkUserActionRequest,
    BulkUserActionResponse,
    UserDetailResponse,
    UserListResponse,
    UserProfile,
    UserRole,
    UserSortField,
    UserUpdateRequest,
)
from pagination import PaginatedResponse
from services_users import (
    SelfModificationError,
    UserNotFoundError,
    bulk_update_users,
    get_user,
    get_user_activity,
    get_user_submission_stats,
    list_users,
    update_user,
)

logger = logging.getLogger("lesson_admin")

router = APIRouter(prefix="/admin/users", tags=["users"])

require_user_admin = require_roles(*USER_ADMIN_ROLES)


@router.get("", response_model=UserListResponse)
def list_users_endpoint(
    search: Optional[str] = Query(None, description="Match name, school or email"),
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    school_borough: Optional[Borough] = Query(None),
    sort_by: UserSortField = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    try:
        users, total = list_users(
            search=search,
            role=role,
            is_active=is_active,
            school_borough=school_borough,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=USERS_PER_PAGE,
        )
    except Exception as e:
        logger.error(f"Error loading users: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list users: {str(e)}")

    paged = PaginatedResponse.create(items=users, total=total, page=page, page_size=USERS_PER_PAGE)
    return UserListResponse(
        users=users,
        total=paged.total,
        page=paged.page,
        page_size=paged.page_size,
        total_pages=paged.total_pages,
    )


@router.post("/bulk", response_model=BulkUserActionResponse)
def bulk_user_action(
    payload: BulkUserActionRequest,
    request: Request,
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    """Activate, deactivate or delete the selected users."""
    try:
        affected = bulk_update_users(auth["user_id"], payload.action, payload.user_ids, request=request)
    except SelfModificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BulkUserActionResponse(success=True, action=payload.action, affected=affected)


@router.get("/{user_id}", response_model=UserDetailResponse)
def get_user_endpoint(user_id: str, auth: Dict[str, Any] = Depends(require_user_admin)):
    try:
        user = get_user(user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return UserDetailResponse(
        user=user,
        permissions=get_permissions_for_role(user.role),
        activity=get_user_activity(user_id),
        stats=get_user_submission_stats(user_id),
    )


@router.patch("/{user_id}", response_model=UserProfile)
def update_user_endpoint(
    user_id: str,
    payload: UserUpdateRequest,
    request: Request,
    auth: Dict[str, Any] = Depends(require_user_admin),
):
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("role") == "super_admin" and auth.get("role") != "super_admin":
        raise HTTPException(status_code=403, detail="Only super admins can grant the super_admin role")
    try:
        return update_user(auth["user_id"], user_id, updates, request=request)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except SelfModificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
