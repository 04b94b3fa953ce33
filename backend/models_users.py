# User management and invitation models.
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, EmailStr, Field

UserRole = Literal["teacher", "reviewer", "admin", "super_admin"]
InvitableRole = Literal["teacher", "reviewer", "admin"]
Borough = Literal["Manhattan", "Brooklyn", "Queens", "Bronx", "Staten Island"]
InvitationStatus = Literal["pending", "accepted", "expired"]
BulkAction = Literal["activate", "deactivate", "delete"]
UserSortField = Literal["created_at", "full_name", "email", "role", "last_login_at"]

NO_EMAIL = "No email"


class UserProfile(BaseModel):
    id: str
    email: str = NO_EMAIL
    full_name: Optional[str] = None
    role: UserRole = "teacher"
    is_active: bool = True
    school_name: Optional[str] = None
    school_borough: Optional[str] = None
    grades_taught: List[str] = Field(default_factory=list)
    subjects_taught: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class UserListResponse(BaseModel):
    users: List[UserProfile]
    total: int
    page: int
    page_size: int
    total_pages: int


class UserStats(BaseModel):
    total_submissions: int = 0
    approved_submissions: int = 0
    pending_submissions: int = 0


class UserDetailResponse(BaseModel):
    user: UserProfile
    permissions: List[str]
    activity: List[Dict[str, Any]] = Field(default_factory=list)
    stats: UserStats = Field(default_factory=UserStats)


class UserUpdateRequest(BaseModel):
    """Only fields that are present are changed."""
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    full_name: Optional[str] = None
    school_name: Optional[str] = None
    school_borough: Optional[Borough] = None
    grades_taught: Optional[List[str]] = None
    subjects_taught: Optional[List[str]] = None
    notes: Optional[str] = None


class BulkUserActionRequest(BaseModel):
    action: BulkAction
    user_ids: List[str] = Field(..., min_length=1)


class BulkUserActionResponse(BaseModel):
    success: bool
    action: BulkAction
    affected: int


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: InvitableRole = "teacher"
    school_name: Optional[str] = None
    school_borough: Optional[Borough] = None
    message: Optional[str] = None
    grades_taught: List[str] = Field(default_factory=list)
    subjects_taught: List[str] = Field(default_factory=list)


class Invitation(BaseModel):
    id: str
    email: str
    role: InvitableRole
    invited_by: Optional[str] = None
    invited_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    school_name: Optional[str] = None
    school_borough: Optional[str] = None
    message: Optional[str] = None
    status: InvitationStatus


class InvitationListResponse(BaseModel):
    invitations: List[Invitation]
    total: int


class AcceptInvitationRequest(BaseModel):
    token: str
    full_name: str
    password: str
    grades_taught: List[str] = Field(default_factory=list)
    subjects_taught: List[str] = Field(default_factory=list)


class AcceptInvitationResponse(BaseModel):
    success: bool
    user_id: str
    role: InvitableRole
    navigate_to: str = "/"
