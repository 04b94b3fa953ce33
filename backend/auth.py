"""
Authentication and authorization module.

Tokens are issued by the identity provider and verified here:
- Bearer token authentication (HS256 JWT)
- User id / role extraction from tokens
- FastAPI dependencies for route protection by role
- Role -> permission mapping
"""
import datetime
from typing import Optional, Dict, Any, Callable, List

import jwt
from fastapi import HTTPException, Request, Security, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import API_TOKEN_SECRET, ENVIRONMENT

# Security scheme for Bearer token authentication
security = HTTPBearer(auto_error=False)

ALL_PERMISSIONS: List[str] = [
    "view_lessons",
    "submit_lessons",
    "review_lessons",
    "approve_lessons",
    "delete_lessons",
    "view_users",
    "invite_users",
    "edit_users",
    "delete_users",
    "manage_roles",
    "view_analytics",
    "manage_duplicates",
    "export_data",
    "system_settings",
]

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "teacher": ["view_lessons", "submit_lessons"],
    "reviewer": [
        "view_lessons",
        "submit_lessons",
        "review_lessons",
        "approve_lessons",
        "view_analytics",
    ],
    "admin": [
        "view_lessons",
        "submit_lessons",
        "review_lessons",
        "approve_lessons",
        "delete_lessons",
        "view_users",
        "invite_users",
        "edit_users",
        "view_analytics",
        "manage_duplicates",
        "export_data",
    ],
    "super_admin": ALL_PERMISSIONS,
}


def get_api_token_secret() -> str:
    """Get API token secret from environment or fall back to a dev default."""
    if API_TOKEN_SECRET:
        return API_TOKEN_SECRET
    if ENVIRONMENT == "production":
        raise RuntimeError("API_TOKEN_SECRET must be set in production")
    return "dev-secret-key-change-in-production"


def get_permissions_for_role(role: Optional[str]) -> List[str]:
    """Permissions granted to a role; unknown roles get the teacher set."""
    return list(ROLE_PERMISSIONS.get(role or "", ROLE_PERMISSIONS["teacher"]))


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        HTTPException if token is invalid or expired
    """
    try:
        return jwt.decode(token, get_api_token_secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def create_token(user_id: str, role: str, email: Optional[str] = None, expires_in_days: int = 30) -> str:
    """
    Create a JWT token for a user.

    In production tokens come from the identity provider; this is used by
    local tooling and tests.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "user_id": user_id,
        "role": role,
        "email": email,
        "exp": now + datetime.timedelta(days=expires_in_days),
        "iat": now,
    }
    return jwt.encode(payload, get_api_token_secret(), algorithm="HS256")


def extract_token_from_request(request: Request) -> Optional[str]:
    """Extract token from the `Authorization: Bearer <token>` header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def _context_from_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    role = payload.get("role")
    return {
        "user_id": payload.get("user_id"),
        "role": role,
        "email": payload.get("email"),
        "permissions": get_permissions_for_role(role),
        "is_authenticated": True,
    }


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    request: Request = None,
) -> Dict[str, Any]:
    """FastAPI dependency that requires a valid bearer token."""
    token = credentials.credentials if credentials else None
    if not token and request is not None:
        token = extract_token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    context = _context_from_payload(verify_token(token))
    if not context["user_id"]:
        raise HTTPException(status_code=401, detail="Invalid token")
    if request is not None:
        request.state.user_id = context["user_id"]
        request.state.role = context["role"]
    return context


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    """
    Build a dependency that admits only the given roles.

        @router.get("/x")
        def x(auth: dict = Depends(require_roles("admin", "super_admin"))): ...
    """
    allowed = set(roles)

    def dependency(auth: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
        if auth.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="You need admin privileges to access this page.")
        return auth

    return dependency


def has_permission(auth: Dict[str, Any], permission: str) -> bool:
    return permission in auth.get("permissions", [])


def require_permission(permission: str) -> Callable[..., Dict[str, Any]]:
    """Build a dependency that admits any role granted `permission`."""

    def dependency(auth: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
        if not has_permission(auth, permission):
            raise HTTPException(status_code=403, detail="You don't have permission to view this page.")
        return auth

    return dependency
